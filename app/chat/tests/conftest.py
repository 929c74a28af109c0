"""
Test configuration and fixtures for chat tests.

This module provides:
- Users: alice and bob share a conversation, carol is an outsider
- API clients authenticated as each of them
- A fresh channel layer and broadcast registry per test

Usage:
    def test_example(alice_client, conversation):
        response = alice_client.get(f"/api/v1/chat/messages/{conversation.id}/")
        assert response.status_code == 200
"""

import pytest
from channels.layers import channel_layers
from rest_framework.test import APIClient

from authentication.tests.factories import ProfileFactory, UserFactory
from chat import broadcast
from chat.broadcast import BroadcastRegistry
from chat.tests.factories import ConversationFactory


# =============================================================================
# Broadcast Registry
# =============================================================================


@pytest.fixture(autouse=True)
def broadcast_registry(monkeypatch):
    """Start every test on a new layer and registry so no groups are shared."""
    monkeypatch.setattr(channel_layers, "backends", {})
    registry = BroadcastRegistry()
    monkeypatch.setattr(broadcast, "_registry", registry)
    return registry


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def alice(db):
    user = UserFactory()
    ProfileFactory(user=user, first_name="Alice", last_name="Nguyen")
    return user


@pytest.fixture
def bob(db):
    user = UserFactory()
    ProfileFactory(user=user, first_name="Bob", last_name="Okafor")
    return user


@pytest.fixture
def carol(db):
    """A user who takes part in none of the fixture conversations."""
    return UserFactory()


# =============================================================================
# Conversation Fixtures
# =============================================================================


@pytest.fixture
def conversation(alice, bob):
    return ConversationFactory(user_lower=alice, user_higher=bob)


# =============================================================================
# API Clients
# =============================================================================


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def alice_client(alice):
    client = APIClient()
    client.force_authenticate(user=alice)
    return client


@pytest.fixture
def bob_client(bob):
    client = APIClient()
    client.force_authenticate(user=bob)
    return client


@pytest.fixture
def carol_client(carol):
    client = APIClient()
    client.force_authenticate(user=carol)
    return client
