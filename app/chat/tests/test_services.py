"""
Tests for chat service layer.

This module tests:
- ConversationService: get-or-create, summaries, participant checks
- MessageService: append validation, ordering, live publish on commit
- ReadStateService: mark read, unread counts

Test Organization:
    - Each service has its own test class
    - Tests use descriptive names: test_<scenario>_<expected_outcome>
    - Live publishing is checked against a mocked registry
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from django.db import IntegrityError, connection, transaction
from django.utils import timezone

from core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    TransientStoreError,
    ValidationError,
)

from authentication.tests.factories import UserFactory
from chat.constants import ATTACHMENT_CONFIG, MESSAGE_CONFIG
from chat.models import Conversation, Message, MessageAttachment
from chat.services import (
    AttachmentPayload,
    ConversationService,
    MessageService,
    ReadStateService,
)
from chat.tests.factories import ConversationFactory


# =============================================================================
# ConversationService Tests
# =============================================================================


class TestGetOrCreateConversation:
    """
    Tests for ConversationService.get_or_create_conversation.

    Verifies:
        - A new pair creates exactly one conversation
        - Argument order does not matter
        - Invalid pairs are rejected
        - A lost creation race returns the winner
    """

    def test_new_pair_creates_conversation(self, db, alice, bob):
        conversation, created = ConversationService.get_or_create_conversation(
            alice.id, bob.id
        )

        assert created is True
        assert conversation.participant_ids == tuple(sorted([alice.id, bob.id]))
        assert conversation.last_message_at is None

    def test_existing_pair_returned(self, db, conversation, alice, bob):
        found, created = ConversationService.get_or_create_conversation(alice.id, bob.id)

        assert created is False
        assert found.id == conversation.id

    def test_argument_order_does_not_matter(self, db, alice, bob):
        """
        Why it matters: whichever participant writes first, both must end
        up in the same conversation.
        """
        first, _ = ConversationService.get_or_create_conversation(alice.id, bob.id)
        second, created = ConversationService.get_or_create_conversation(
            bob.id, alice.id
        )

        assert created is False
        assert first.id == second.id
        assert Conversation.objects.count() == 1

    def test_same_user_rejected(self, db, alice):
        with pytest.raises(ValidationError) as exc_info:
            ConversationService.get_or_create_conversation(alice.id, alice.id)

        assert exc_info.value.error_code == "SAME_USER"
        assert Conversation.objects.count() == 0

    def test_unknown_user_rejected(self, db, alice):
        with pytest.raises(NotFoundError) as exc_info:
            ConversationService.get_or_create_conversation(alice.id, 999_999)

        assert exc_info.value.error_code == "USER_NOT_FOUND"
        assert exc_info.value.details == {"user_ids": [999_999]}

    def test_lost_race_returns_existing_conversation(self, db, conversation, alice, bob):
        """
        A concurrent creator inserted the pair between our lookup and insert.

        Why it matters: the unique constraint decides the winner; the loser
        must hand back that row instead of failing.
        """
        with patch.object(ConversationService, "_find_conversation", return_value=None):
            found, created = ConversationService.get_or_create_conversation(
                bob.id, alice.id
            )

        assert created is False
        assert found.id == conversation.id
        assert Conversation.objects.count() == 1

    def test_lost_race_without_winner_raises_conflict(self, db, alice, bob):
        with patch.object(
            Conversation.objects, "create", side_effect=IntegrityError("duplicate")
        ):
            with pytest.raises(ConflictError) as exc_info:
                ConversationService.get_or_create_conversation(alice.id, bob.id)

        assert exc_info.value.error_code == "CONVERSATION_CONFLICT"


@pytest.mark.django_db(transaction=True)
class TestConcurrentGetOrCreate:
    """
    Two request threads open the same new pair at once.

    Rows must be committed to be seen across connections, so this class
    uses transactional database access.
    """

    @staticmethod
    def _get_or_create(barrier, user_a_id, user_b_id):
        try:
            barrier.wait(timeout=5)
            # SQLite's shared-cache test database reports lock contention
            # as a transient store error
            for _ in range(20):
                try:
                    return ConversationService.get_or_create_conversation(
                        user_a_id, user_b_id
                    )
                except TransientStoreError:
                    time.sleep(0.01)
            raise AssertionError("store stayed unavailable")
        finally:
            connection.close()

    def test_racing_threads_share_one_conversation(self, alice, bob):
        barrier = threading.Barrier(2)

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [
                pool.submit(self._get_or_create, barrier, alice.id, bob.id),
                pool.submit(self._get_or_create, barrier, bob.id, alice.id),
            ]
            results = [future.result(timeout=30) for future in futures]

        (first, first_created), (second, second_created) = results
        assert first.id == second.id
        assert sorted([first_created, second_created]) == [False, True]
        assert Conversation.objects.count() == 1


class TestConversationLookup:
    def test_get_conversation_unknown_id(self, db):
        with pytest.raises(NotFoundError) as exc_info:
            ConversationService.get_conversation(424242)

        assert exc_info.value.error_code == "CONVERSATION_NOT_FOUND"

    def test_require_participant_allows_member(self, db, conversation, bob):
        assert ConversationService.require_participant(conversation.id, bob.id) == conversation

    def test_require_participant_rejects_outsider(self, db, conversation, carol):
        with pytest.raises(PermissionDeniedError) as exc_info:
            ConversationService.require_participant(conversation.id, carol.id)

        assert exc_info.value.error_code == "NOT_PARTICIPANT"


class TestListConversationsForUser:
    """
    Tests for ConversationService.list_conversations_for_user.

    Verifies:
        - Only the user's conversations are listed
        - Counterpart, last message and unread count are filled in
        - Ordering by last activity, silent conversations last
    """

    def test_user_without_conversations_gets_empty_list(self, db, carol):
        assert ConversationService.list_conversations_for_user(carol.id) == []

    def test_summary_describes_counterpart_and_last_message(
        self, db, conversation, alice, bob
    ):
        MessageService.append_message(conversation.id, bob.id, "Lab at 3?")
        MessageService.append_message(conversation.id, bob.id, "Room 204")

        [summary] = ConversationService.list_conversations_for_user(alice.id)

        assert summary.conversation_id == conversation.id
        assert summary.counterpart_id == bob.id
        assert summary.counterpart_name == "Bob Okafor"
        assert summary.last_message == "Room 204"
        assert summary.unread_count == 2

    def test_own_messages_are_not_unread(self, db, conversation, alice):
        MessageService.append_message(conversation.id, alice.id, "hello")

        [summary] = ConversationService.list_conversations_for_user(alice.id)

        assert summary.unread_count == 0

    def test_ordered_by_last_activity_with_silent_last(self, db, alice, bob, carol):
        quiet = ConversationFactory(user_lower=alice, user_higher=carol)
        older = ConversationFactory(user_lower=alice, user_higher=bob)
        third = UserFactory()
        recent = ConversationFactory(user_lower=alice, user_higher=third)

        MessageService.append_message(older.id, bob.id, "first")
        MessageService.append_message(recent.id, third.id, "second")

        summaries = ConversationService.list_conversations_for_user(alice.id)

        assert [s.conversation_id for s in summaries] == [recent.id, older.id, quiet.id]
        assert summaries[-1].last_message is None
        assert summaries[-1].last_message_at is None

    def test_outsider_conversations_not_listed(self, db, conversation, carol):
        ConversationFactory(user_lower=carol)

        summaries = ConversationService.list_conversations_for_user(carol.id)

        assert conversation.id not in [s.conversation_id for s in summaries]


# =============================================================================
# MessageService Tests
# =============================================================================


class TestAppendMessage:
    """
    Tests for MessageService.append_message.

    Verifies:
        - Text and attachments are stored
        - Empty or oversized content is rejected without writing
        - sent_at never goes backwards within a conversation
        - last_message_at tracks the newest message
    """

    def test_text_message_stored_stripped(self, db, conversation, alice):
        message = MessageService.append_message(conversation.id, alice.id, "  hi  ")

        assert message.text == "hi"
        assert message.sender_id == alice.id
        assert message.is_read is False

    def test_updates_last_message_at(self, db, conversation, alice):
        message = MessageService.append_message(conversation.id, alice.id, "hi")

        conversation.refresh_from_db()
        assert conversation.last_message_at == message.sent_at

    @pytest.mark.parametrize("text", ["", "   \n\t", None])
    def test_empty_message_rejected(self, db, conversation, alice, text):
        """
        Why it matters: blank bubbles in the UI are a bug, not a message.
        """
        with pytest.raises(ValidationError) as exc_info:
            MessageService.append_message(conversation.id, alice.id, text)

        assert exc_info.value.error_code == "EMPTY_MESSAGE"
        assert Message.objects.count() == 0

    def test_attachment_only_message_allowed(self, db, conversation, alice):
        message = MessageService.append_message(
            conversation.id,
            alice.id,
            "",
            [AttachmentPayload(file_name="timetable.png", data=b"\x89PNG")],
        )

        [attachment] = message.attachments.all()
        assert message.text == ""
        assert attachment.file_name == "timetable.png"
        assert attachment.content_type == "image/png"
        assert attachment.size == 4

    def test_unknown_content_type_falls_back(self, db, conversation, alice):
        message = MessageService.append_message(
            conversation.id,
            alice.id,
            "",
            [AttachmentPayload(file_name="blob", data=b"abc")],
        )

        assert message.attachments.get().content_type == "application/octet-stream"

    def test_explicit_content_type_kept(self, db, conversation, alice):
        message = MessageService.append_message(
            conversation.id,
            alice.id,
            "notes",
            [AttachmentPayload(file_name="a.bin", data=b"abc", content_type="text/plain")],
        )

        assert message.attachments.get().content_type == "text/plain"

    def test_text_too_long_rejected(self, db, conversation, alice):
        with pytest.raises(ValidationError) as exc_info:
            MessageService.append_message(
                conversation.id, alice.id, "x" * (MESSAGE_CONFIG.MAX_TEXT_LENGTH + 1)
            )

        assert exc_info.value.error_code == "TEXT_TOO_LONG"

    def test_too_many_attachments_rejected(self, db, conversation, alice):
        attachments = [
            AttachmentPayload(file_name=f"{i}.txt", data=b"x")
            for i in range(ATTACHMENT_CONFIG.MAX_ATTACHMENTS_PER_MESSAGE + 1)
        ]

        with pytest.raises(ValidationError) as exc_info:
            MessageService.append_message(conversation.id, alice.id, "hi", attachments)

        assert exc_info.value.error_code == "TOO_MANY_ATTACHMENTS"
        assert MessageAttachment.objects.count() == 0

    def test_oversized_attachment_rejected(self, db, conversation, alice):
        big = AttachmentPayload(
            file_name="lecture.mp4",
            data=b"\0" * (ATTACHMENT_CONFIG.MAX_ATTACHMENT_SIZE_BYTES + 1),
        )

        with pytest.raises(ValidationError) as exc_info:
            MessageService.append_message(conversation.id, alice.id, "", [big])

        assert exc_info.value.error_code == "ATTACHMENT_TOO_LARGE"
        assert Message.objects.count() == 0

    def test_blank_attachment_name_rejected(self, db, conversation, alice):
        with pytest.raises(ValidationError) as exc_info:
            MessageService.append_message(
                conversation.id, alice.id, "", [AttachmentPayload(file_name=" ", data=b"x")]
            )

        assert exc_info.value.error_code == "INVALID_ATTACHMENT"

    def test_unknown_conversation_rejected(self, db, alice):
        with pytest.raises(NotFoundError) as exc_info:
            MessageService.append_message(424242, alice.id, "hi")

        assert exc_info.value.error_code == "CONVERSATION_NOT_FOUND"

    def test_outsider_cannot_send(self, db, conversation, carol):
        with pytest.raises(PermissionDeniedError) as exc_info:
            MessageService.append_message(conversation.id, carol.id, "hi")

        assert exc_info.value.error_code == "NOT_PARTICIPANT"
        assert Message.objects.count() == 0

    def test_sent_at_never_goes_backwards(self, db, conversation, alice, bob):
        """
        The clock stepping back must not reorder history.

        Why it matters: clients render in (sent_at, id) order; a message
        appended later must never sort before an earlier one.
        """
        future = timezone.now() + timedelta(minutes=5)
        Conversation.objects.filter(pk=conversation.pk).update(last_message_at=future)

        message = MessageService.append_message(conversation.id, bob.id, "late")

        assert message.sent_at == future

    def test_consecutive_messages_keep_append_order(self, db, conversation, alice, bob):
        sent = [
            MessageService.append_message(conversation.id, sender.id, f"m{i}")
            for i, sender in enumerate([alice, bob, alice, bob])
        ]

        history = MessageService.list_messages(conversation.id)

        assert [m.id for m in history] == [m.id for m in sent]
        assert all(a.sent_at <= b.sent_at for a, b in zip(history, history[1:]))


class TestSendMessage:
    """
    Tests for MessageService.send_message.

    Verifies:
        - The stored message is published to the conversation's group
        - Publishing waits for the transaction to commit
    """

    def test_publishes_after_commit(
        self, db, conversation, alice, django_capture_on_commit_callbacks
    ):
        registry = MagicMock()
        with patch("chat.broadcast.get_registry", return_value=registry):
            with django_capture_on_commit_callbacks(execute=True):
                message = MessageService.send_message(conversation.id, alice.id, "hey")

        registry.publish.assert_called_once()
        conversation_id, event = registry.publish.call_args.args
        assert conversation_id == conversation.id
        assert event["type"] == "message_received"
        assert event["message"]["id"] == message.id
        assert event["message"]["text"] == "hey"
        assert event["message"]["sender"] == alice.id

    def test_not_published_before_commit(
        self, db, conversation, alice, django_capture_on_commit_callbacks
    ):
        registry = MagicMock()
        with patch("chat.broadcast.get_registry", return_value=registry):
            with django_capture_on_commit_callbacks(execute=False) as callbacks:
                MessageService.send_message(conversation.id, alice.id, "hey")

        assert len(callbacks) == 1
        registry.publish.assert_not_called()

    def test_not_published_on_rollback(
        self, db, conversation, alice, django_capture_on_commit_callbacks
    ):
        """
        Why it matters: subscribers must never see a message that was
        never stored.
        """
        registry = MagicMock()
        with patch("chat.broadcast.get_registry", return_value=registry):
            with django_capture_on_commit_callbacks(execute=True):
                with pytest.raises(RuntimeError):
                    with transaction.atomic():
                        MessageService.send_message(conversation.id, alice.id, "hey")
                        raise RuntimeError("abort")

        registry.publish.assert_not_called()
        assert Message.objects.count() == 0

    def test_rejected_message_not_published(
        self, db, conversation, alice, django_capture_on_commit_callbacks
    ):
        registry = MagicMock()
        with patch("chat.broadcast.get_registry", return_value=registry):
            with django_capture_on_commit_callbacks(execute=True) as callbacks:
                with pytest.raises(ValidationError):
                    MessageService.send_message(conversation.id, alice.id, "  ")

        assert callbacks == []
        registry.publish.assert_not_called()


class TestListMessages:
    def test_empty_conversation_returns_empty_list(self, db, conversation):
        assert MessageService.list_messages(conversation.id) == []

    def test_unknown_conversation_rejected(self, db):
        with pytest.raises(NotFoundError):
            MessageService.list_messages(424242)


# =============================================================================
# ReadStateService Tests
# =============================================================================


class TestMarkRead:
    """
    Tests for ReadStateService.mark_read.

    Verifies:
        - Only the counterpart's messages are marked
        - read_at is stamped
        - Repeating the call changes nothing
    """

    def test_marks_counterpart_messages(self, db, conversation, alice, bob):
        MessageService.append_message(conversation.id, bob.id, "one")
        MessageService.append_message(conversation.id, bob.id, "two")
        own = MessageService.append_message(conversation.id, alice.id, "mine")

        updated = ReadStateService.mark_read(conversation.id, alice.id)

        assert updated == 2
        own.refresh_from_db()
        assert own.is_read is False
        for message in Message.objects.filter(sender=bob):
            assert message.is_read is True
            assert message.read_at is not None

    def test_second_call_is_noop(self, db, conversation, alice, bob):
        """
        Why it matters: clients call mark-read on every focus event.
        """
        MessageService.append_message(conversation.id, bob.id, "one")
        ReadStateService.mark_read(conversation.id, alice.id)
        first_read_at = Message.objects.get().read_at

        assert ReadStateService.mark_read(conversation.id, alice.id) == 0
        assert Message.objects.get().read_at == first_read_at

    def test_clears_unread_count(self, db, conversation, alice, bob):
        MessageService.append_message(conversation.id, bob.id, "one")

        ReadStateService.mark_read(conversation.id, alice.id)

        [summary] = ConversationService.list_conversations_for_user(alice.id)
        assert summary.unread_count == 0
        assert ReadStateService.unread_count(conversation.id, alice.id) == 0

    def test_outsider_rejected(self, db, conversation, bob, carol):
        MessageService.append_message(conversation.id, bob.id, "one")

        with pytest.raises(PermissionDeniedError):
            ReadStateService.mark_read(conversation.id, carol.id)

        assert Message.objects.filter(is_read=True).count() == 0

    def test_unknown_conversation_rejected(self, db, alice):
        with pytest.raises(NotFoundError):
            ReadStateService.mark_read(424242, alice.id)


class TestUnreadCount:
    def test_counts_only_counterpart_unread(self, db, conversation, alice, bob):
        MessageService.append_message(conversation.id, bob.id, "one")
        MessageService.append_message(conversation.id, alice.id, "two")

        assert ReadStateService.unread_count(conversation.id, alice.id) == 1
        assert ReadStateService.unread_count(conversation.id, bob.id) == 1

    def test_outsider_rejected(self, db, conversation, carol):
        with pytest.raises(PermissionDeniedError):
            ReadStateService.unread_count(conversation.id, carol.id)
