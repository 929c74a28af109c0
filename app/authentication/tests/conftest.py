"""
Test configuration and fixtures for authentication tests.
"""

import pytest
from rest_framework.test import APIClient

from authentication.tests.factories import UserFactory


@pytest.fixture
def user(db):
    """Create a user with auto-created profile."""
    return UserFactory()


@pytest.fixture
def api_client():
    return APIClient()
