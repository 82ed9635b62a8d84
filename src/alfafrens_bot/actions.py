"""Actions a host can trigger out-of-band, bypassing the evaluator."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from alfafrens_bot.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

SEND_MESSAGE = "ALFAFRENS_SEND_MESSAGE"
REPLY = "ALFAFRENS_REPLY"
CREATE_POST = "ALFAFRENS_CREATE_POST"
RESPOND = "ALFAFRENS_RESPOND"


class ActionPayload(BaseModel):
    """Content a host passes to an action."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    text: str = ""
    message_id: str | None = Field(default=None, alias="messageId")
    in_reply_to: str | None = Field(default=None, alias="inReplyTo")

    @property
    def target_id(self) -> str | None:
        """Message the action should reply to."""
        return self.message_id or self.in_reply_to


@dataclass
class Action:
    """A named, host-invokable operation."""

    name: str
    description: str
    validate: Callable[[ActionPayload], bool]
    handler: Callable[[ActionPayload], Awaitable[bool]]
    similes: list[str] = field(default_factory=list)


class ActionRegistry(Protocol):
    """Where actions are registered for the host to find."""

    def register(self, action: Action) -> None: ...


class SimpleActionRegistry:
    """In-process action registry keyed by name."""

    def __init__(self) -> None:
        self._actions: dict[str, Action] = {}

    def register(self, action: Action) -> None:
        """Register an action. Raises ValueError on duplicate name."""
        if action.name in self._actions:
            raise ValueError(f"Action '{action.name}' is already registered")
        self._actions[action.name] = action

    def get(self, name: str) -> Action:
        if name not in self._actions:
            raise KeyError(f"Action '{name}' is not registered. Available: {sorted(self._actions)}")
        return self._actions[name]

    def names(self) -> list[str]:
        return sorted(self._actions)

    async def invoke(self, name: str, payload: ActionPayload) -> bool:
        """Validate then run an action; False if validation fails."""
        action = self.get(name)
        if not action.validate(payload):
            logger.warning(f"ACTION_INVALID: {name} rejected payload")
            return False
        return await action.handler(payload)


def _has_text(payload: ActionPayload) -> bool:
    if not payload.text.strip():
        logger.error("Action content is missing")
        return False
    return True


def _has_text_and_target(payload: ActionPayload) -> bool:
    if not _has_text(payload):
        return False
    if not payload.target_id:
        logger.error("Message id to reply to is missing")
        return False
    return True


def _has_target(payload: ActionPayload) -> bool:
    if not payload.target_id:
        logger.error("Message id to respond to is missing")
        return False
    return True


def build_actions(orchestrator: "Orchestrator") -> list[Action]:
    """Create the four channel actions bound to ``orchestrator``."""

    async def send_message(payload: ActionPayload) -> bool:
        try:
            await orchestrator.send_message(payload.text)
        except Exception as e:
            logger.error(f"ACTION_FAILED: {SEND_MESSAGE}: {e}")
            return False
        return True

    async def reply(payload: ActionPayload) -> bool:
        try:
            await orchestrator.send_message(payload.text, in_reply_to=payload.target_id)
        except Exception as e:
            logger.error(f"ACTION_FAILED: {REPLY}: {e}")
            return False
        return True

    async def create_post(payload: ActionPayload) -> bool:
        try:
            await orchestrator.create_post(payload.text or None)
        except Exception as e:
            logger.error(f"ACTION_FAILED: {CREATE_POST}: {e}")
            return False
        logger.info("Post created through action")
        return True

    async def respond(payload: ActionPayload) -> bool:
        try:
            await orchestrator.respond_to(payload.target_id or "", payload.text or None)
        except Exception as e:
            logger.error(f"ACTION_FAILED: {RESPOND}: {e}")
            return False
        return True

    return [
        Action(
            name=SEND_MESSAGE,
            description="sends a message to the AlfaFrens channel",
            validate=_has_text,
            handler=send_message,
            similes=["send", "message", "chat"],
        ),
        Action(
            name=REPLY,
            description="replies to a specific message in the AlfaFrens channel",
            validate=_has_text_and_target,
            handler=reply,
            similes=["reply", "comment"],
        ),
        Action(
            name=CREATE_POST,
            description="creates a new post in the AlfaFrens channel",
            validate=lambda payload: True,
            handler=create_post,
            similes=["post", "share", "announce", "publish"],
        ),
        Action(
            name=RESPOND,
            description="responds to a message in the AlfaFrens channel",
            validate=_has_target,
            handler=respond,
            similes=["respond", "answer"],
        ),
    ]


def register_actions(orchestrator: "Orchestrator", registry: ActionRegistry) -> list[Action]:
    """Register all channel actions with ``registry``."""
    actions = build_actions(orchestrator)
    for action in actions:
        registry.register(action)
    logger.info(f"Registered {len(actions)} actions")
    return actions
