"""Rolling message history, sent-message registry and reply threads."""

import logging
from collections import OrderedDict, deque
from collections.abc import Iterable, Sequence

from alfafrens_bot.gateway.models import ChannelMessage

logger = logging.getLogger(__name__)

NO_HISTORY = "No previous messages."


class RollingHistory:
    """Most recent channel messages, oldest first, capped at ``max_size``."""

    def __init__(self, max_size: int = 50):
        self._messages: deque[ChannelMessage] = deque(maxlen=max_size)

    def extend(self, messages: Iterable[ChannelMessage]) -> None:
        """Append messages, evicting the oldest beyond capacity."""
        self._messages.extend(messages)

    def recent(self, count: int | None = None) -> list[ChannelMessage]:
        """Get recent messages.

        Args:
            count: Number of messages to get. None = all

        Returns:
            List of messages, oldest first
        """
        if count is None:
            return list(self._messages)
        if count <= 0:
            return []
        return list(self._messages)[-count:]

    def __len__(self) -> int:
        return len(self._messages)


class SentMessageRegistry:
    """Ids of messages this process sent, with LRU eviction past ``capacity``."""

    def __init__(self, capacity: int = 1000):
        self._capacity = capacity
        self._ids: OrderedDict[str, None] = OrderedDict()

    def add(self, message_id: str) -> None:
        self._ids[message_id] = None
        self._ids.move_to_end(message_id)
        while len(self._ids) > self._capacity:
            evicted, _ = self._ids.popitem(last=False)
            logger.debug(f"Sent registry evicted {evicted}")

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)


def normalize_handle(handle: str | None) -> str:
    """Handle with a leading ``@`` removed."""
    return (handle or "").removeprefix("@")


def is_self_authored(
    message: ChannelMessage,
    sent: SentMessageRegistry,
    user_id: str,
    username: str,
) -> bool:
    """Whether the message came from us: by sent id, sender id or normalized handle."""
    if message.id in sent:
        return True
    if user_id and message.sender_id == user_id:
        return True
    ours = normalize_handle(username)
    theirs = normalize_handle(message.sender_handle)
    return bool(ours and theirs and ours == theirs)


def format_history(messages: Sequence[ChannelMessage], agent_user_id: str) -> str:
    """Format messages as prompt context.

    Returns a string like:
        USER (alice): What's new?

        ASSISTANT: Not much.
    """
    if not messages:
        return NO_HISTORY

    lines = []
    for msg in messages:
        if agent_user_id and msg.sender_id == agent_user_id:
            role = "ASSISTANT"
        else:
            role = f"USER ({msg.sender_handle})"
        lines.append(f"{role}: {msg.body}")
    return "\n\n".join(lines)


def reconstruct_thread(
    messages: Sequence[ChannelMessage],
    leaf_id: str,
    max_history: int = 5,
) -> list[ChannelMessage]:
    """Walk ``in_reply_to`` links back from ``leaf_id``.

    Returns at most ``max_history`` messages, oldest first, ending with the
    leaf. Unknown ids end the walk; cycles are not followed twice.
    """
    by_id = {m.id: m for m in messages}
    thread: list[ChannelMessage] = []
    seen: set[str] = set()

    current = by_id.get(leaf_id)
    while current is not None and len(thread) < max_history and current.id not in seen:
        seen.add(current.id)
        thread.insert(0, current)
        current = by_id.get(current.in_reply_to) if current.in_reply_to else None

    return thread
