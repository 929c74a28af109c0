"""
Conversation groups on the Channels layer.

Every conversation has a channel-layer group named chat_<conversation_id>.
Connections join the group of each conversation they are viewing, and a
stored message is fanned out with group_send. The consumer's
chat_message_received handler writes the event to its socket.

Group lifecycle:
    Empty --join--> Active --join/leave--> Active --last leave--> Empty

Membership index:
    The layer cannot list a group's members, so the registry also keeps a
    process-local index of which connections (channel names) joined which
    conversations. It backs inspection (members, groups_for, group_count)
    and lets unregister discard a closing connection from all its groups.
    Each conversation's entry has its own lock; unrelated conversations
    never contend.

Delivery:
    The layer queues events per channel up to its configured capacity and
    drops events for a channel that is full without affecting the other
    members. A socket that fails is closed by Channels, and its disconnect
    unregisters it.

Usage:
    from chat.broadcast import get_registry

    await get_registry().join(self.channel_name, conversation_id)
    get_registry().publish(conversation_id, {"type": "message_received", ...})
    await get_registry().unregister(self.channel_name)
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

if TYPE_CHECKING:
    from typing import Any

    from channels.layers import BaseChannelLayer

logger = logging.getLogger(__name__)

# Channel layer message type; dispatched to ChatConsumer.chat_message_received
MESSAGE_RECEIVED_EVENT = "chat.message_received"


class _Group:
    """Index entry for one conversation's live group."""

    def __init__(self, conversation_id: int):
        self.conversation_id = conversation_id
        self.lock = threading.Lock()
        self.members: set[str] = set()
        # Set once the last member leaves; a closed entry is never reused
        self.closed = False


class BroadcastRegistry:
    """
    Conversation group membership and fan-out over a channel layer.

    Args:
        channel_layer: Layer to use; defaults to the configured default layer
    """

    def __init__(self, channel_layer: BaseChannelLayer | None = None):
        self._channel_layer = channel_layer
        self._map_lock = threading.Lock()
        self._groups: dict[int, _Group] = {}
        self._connections: dict[str, set[int]] = {}

    @property
    def channel_layer(self) -> BaseChannelLayer:
        return self._channel_layer or get_channel_layer()

    @staticmethod
    def group_name(conversation_id: int) -> str:
        return f"chat_{conversation_id}"

    # -------------------------------------------------------------------------
    # Group membership
    # -------------------------------------------------------------------------

    async def join(self, channel_name: str, conversation_id: int) -> None:
        """
        Add a connection to a conversation's group.

        Idempotent. Authorization is the caller's job.
        """
        await self.channel_layer.group_add(
            self.group_name(conversation_id), channel_name
        )
        self._add_member(conversation_id, channel_name)

    async def leave(self, channel_name: str, conversation_id: int) -> bool:
        """
        Remove a connection from a conversation's group.

        Returns False if the connection was not a member.
        """
        removed = self._remove_member(conversation_id, channel_name)
        await self.channel_layer.group_discard(
            self.group_name(conversation_id), channel_name
        )
        return removed

    async def unregister(self, channel_name: str) -> set[int]:
        """
        Remove a closing connection from every group it joined.

        Idempotent. Returns the conversation ids it was removed from.
        """
        with self._map_lock:
            conversation_ids = set(self._connections.get(channel_name, ()))

        for conversation_id in conversation_ids:
            await self.leave(channel_name, conversation_id)

        if conversation_ids:
            logger.debug(
                f"Connection {channel_name} left {len(conversation_ids)} group(s)"
            )
        return conversation_ids

    # -------------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------------

    async def group_send(self, conversation_id: int, event: dict[str, Any]) -> int:
        """
        Send event to the conversation's group.

        Returns the number of connections in this process that were members
        when it was sent. A group nobody has joined is a no-op.
        """
        reached = len(self.members(conversation_id))
        await self.channel_layer.group_send(
            self.group_name(conversation_id),
            {"type": MESSAGE_RECEIVED_EVENT, "event": event},
        )
        return reached

    def publish(self, conversation_id: int, event: dict[str, Any]) -> int:
        """Sync entry point to group_send, for request and database threads."""
        return async_to_sync(self.group_send)(conversation_id, event)

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def members(self, conversation_id: int) -> set[str]:
        with self._map_lock:
            group = self._groups.get(conversation_id)
        if group is None:
            return set()
        with group.lock:
            return set(group.members)

    def groups_for(self, channel_name: str) -> set[int]:
        with self._map_lock:
            return set(self._connections.get(channel_name, ()))

    def group_count(self) -> int:
        with self._map_lock:
            return len(self._groups)

    # -------------------------------------------------------------------------
    # Index
    # -------------------------------------------------------------------------

    def _add_member(self, conversation_id: int, channel_name: str) -> None:
        while True:
            with self._map_lock:
                group = self._groups.get(conversation_id)
                if group is None or group.closed:
                    group = _Group(conversation_id)
                    self._groups[conversation_id] = group
            with group.lock:
                if group.closed:
                    continue
                if not group.members:
                    logger.debug(f"Group for conversation {conversation_id} is active")
                group.members.add(channel_name)
                break

        with self._map_lock:
            self._connections.setdefault(channel_name, set()).add(conversation_id)

    def _remove_member(self, conversation_id: int, channel_name: str) -> bool:
        with self._map_lock:
            joined = self._connections.get(channel_name)
            if joined is not None:
                joined.discard(conversation_id)
                if not joined:
                    del self._connections[channel_name]
            group = self._groups.get(conversation_id)
        if group is None:
            return False

        with group.lock:
            if channel_name not in group.members:
                return False
            group.members.discard(channel_name)
            if group.members:
                return True
            group.closed = True
            with self._map_lock:
                if self._groups.get(conversation_id) is group:
                    del self._groups[conversation_id]
        logger.debug(f"Group for conversation {conversation_id} is empty")
        return True


_registry: BroadcastRegistry | None = None
_registry_lock = threading.Lock()


def get_registry() -> BroadcastRegistry:
    """Return the process-wide registry on the default channel layer."""
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = BroadcastRegistry()
    return _registry
