"""Main orchestrator tying all components together."""

import logging
import random
import time
from collections.abc import Sequence
from datetime import datetime, timezone

from alfafrens_bot.config import Config
from alfafrens_bot.core.evaluator import Evaluator, build_evaluator
from alfafrens_bot.core.generator import ContentGenerator
from alfafrens_bot.core.history import (
    RollingHistory,
    SentMessageRegistry,
    is_self_authored,
    reconstruct_thread,
)
from alfafrens_bot.core.logging import get_session_stats, log_timing
from alfafrens_bot.core.responder import Responder, WebSearchProvider
from alfafrens_bot.core.scheduler import Scheduler
from alfafrens_bot.gateway.client import ChannelGateway
from alfafrens_bot.gateway.models import ChannelMessage, SendResult
from alfafrens_bot.memory.checkpoint import CheckpointStore
from alfafrens_bot.memory.claims import FactValidator
from alfafrens_bot.memory.store import Memory, MemoryKind, MemoryStore, MessageStore

logger = logging.getLogger(__name__)

POLL_JOB = "poll"
POST_JOB = "post"

# Messages in a reply thread handed to the respond action
THREAD_HISTORY = 5


class Orchestrator:
    """Polls the channel, decides what to answer and sends replies.

    Owns the checkpoint, the rolling history and the sent-message registry.
    """

    def __init__(
        self,
        config: Config,
        gateway: ChannelGateway,
        responder: Responder,
        evaluator: Evaluator,
        store: MessageStore | None = None,
        checkpoints: CheckpointStore | None = None,
        scheduler: Scheduler | None = None,
        rng: random.Random | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            config: Application configuration
            gateway: Channel API client
            responder: Reply/post generation with fact checking
            evaluator: Decides which messages get a reply
            store: Message persistence (None disables it)
            checkpoints: Durable checkpoint cache (None keeps it in memory only)
            scheduler: Job scheduler (a new one by default)
            rng: Random source for the posting interval
        """
        self._config = config
        self._gateway = gateway
        self._responder = responder
        self._evaluator = evaluator
        self._store = store
        self._checkpoints = checkpoints
        self._scheduler = scheduler or Scheduler()
        self._rng = rng or random.Random()

        self._history = RollingHistory(config.polling.history_size)
        self._sent = SentMessageRegistry(config.polling.sent_registry_size)
        self._checkpoint_ms: int | None = None
        self._running = False
        self._stats_logged_at = 0
        self.post_interval_seconds: int | None = None

    @classmethod
    def from_config(
        cls, config: Config, web_search: WebSearchProvider | None = None
    ) -> "Orchestrator":
        """Build the orchestrator and its real collaborators from configuration."""
        generator = ContentGenerator(config.generation, config.llm, config.character)
        store = MemoryStore(config.memory)
        validator = FactValidator(
            generator,
            store,
            config.facts,
            agent_id=config.api.agent_id,
            tier=config.generation.tier_for("evaluation"),
        )
        responder = Responder(config, generator, validator, store, web_search)
        return cls(
            config,
            gateway=ChannelGateway(config.api),
            responder=responder,
            evaluator=build_evaluator(config, generator),
            store=store,
            checkpoints=CheckpointStore(config.memory.checkpoint_path),
        )

    @property
    def running(self) -> bool:
        return self._running

    @property
    def checkpoint_ms(self) -> int | None:
        return self._checkpoint_ms

    @property
    def history(self) -> RollingHistory:
        return self._history

    @property
    def sent_messages(self) -> SentMessageRegistry:
        return self._sent

    @property
    def gateway(self) -> ChannelGateway:
        return self._gateway

    @property
    def responder(self) -> Responder:
        return self._responder

    def load_checkpoint(self) -> int:
        """Load the cached checkpoint, defaulting to a short lookback from now."""
        cached = self._checkpoints.load_checkpoint() if self._checkpoints else None
        if cached is None:
            lookback_ms = self._config.polling.initial_lookback_seconds * 1000
            cached = int(time.time() * 1000) - lookback_ms
            logger.info(f"CHECKPOINT: none cached, starting from {cached}")
        else:
            logger.info(f"CHECKPOINT: resuming from {cached}")
        self._checkpoint_ms = cached
        return cached

    def _advance_checkpoint(self, timestamp_ms: int) -> None:
        self._checkpoint_ms = timestamp_ms
        if self._checkpoints:
            try:
                self._checkpoints.save_checkpoint(timestamp_ms)
            except Exception as e:
                logger.error(f"Failed to persist checkpoint: {e}")
        logger.debug(f"CHECKPOINT: advanced to {timestamp_ms}")

    async def start(self) -> None:
        """Run the first poll cycle, then schedule polling (and posting if enabled)."""
        if self._running:
            logger.debug("Orchestrator already running")
            return
        self._running = True
        self.load_checkpoint()

        polling = self._config.polling
        posting = self._config.posting
        logger.info(f"Starting orchestrator with poll interval {polling.poll_interval_seconds}s")

        if posting.announce_on_start:
            try:
                await self.send_message(posting.startup_message)
            except Exception as e:
                logger.error(f"Failed to send startup message: {e}")

        try:
            await self.process_cycle()
        except Exception as e:
            logger.error(f"Error in initial message processing: {e}")

        if self._scheduler.get(POLL_JOB) is None:
            self._scheduler.register(POLL_JOB, polling.poll_interval_seconds, self.process_cycle)

        if posting.enabled and self._scheduler.get(POST_JOB) is None:
            low, high = posting.interval_min_seconds, posting.interval_max_seconds
            self.post_interval_seconds = int(self._rng.random() * (high - low) + low)
            logger.info(f"Posting enabled every {self.post_interval_seconds}s")
            self._scheduler.register(POST_JOB, self.post_interval_seconds, self._post_job)

        await self._scheduler.start()
        logger.info("Orchestrator started")

    async def stop(self) -> None:
        """Stop scheduling, wait for in-flight work, persist the checkpoint."""
        if not self._running:
            logger.debug("Orchestrator already stopped")
            return
        logger.info("Stopping orchestrator")
        self._running = False

        await self._scheduler.stop()
        if self._checkpoints and self._checkpoint_ms is not None:
            self._checkpoints.save_checkpoint(self._checkpoint_ms)
        await self._gateway.close()
        logger.info(f"SESSION_STATS: {get_session_stats().summary_line()}")

    async def process_cycle(self) -> int:
        """Fetch messages since the checkpoint and handle them.

        Returns:
            Number of messages fetched
        """
        if self._checkpoint_ms is None:
            self.load_checkpoint()

        with log_timing(logger, "Poll cycle"):
            messages = await self._gateway.fetch_messages(
                self._config.api.channel_id, since_ms=self._checkpoint_ms
            )
            if not messages:
                logger.debug("POLL_CYCLE: no new messages")
                return 0

            logger.info(f"POLL_CYCLE: fetched {len(messages)} messages since {self._checkpoint_ms}")
            stats = get_session_stats()
            stats.increment("messages_fetched", len(messages))

            self._history.extend(messages)
            self._advance_checkpoint(messages[-1].created_at_ms + 1)

            size = self._config.polling.batch_size
            for start in range(0, len(messages), size):
                batch = messages[start:start + size]
                try:
                    await self._process_batch(batch)
                except Exception as e:
                    logger.error(f"Error processing batch of {len(batch)} messages: {e}")

            self._maybe_log_stats()
            return len(messages)

    def _maybe_log_stats(self) -> None:
        stats = get_session_stats()
        interval = self._config.polling.stats_log_interval
        if stats.messages_fetched - self._stats_logged_at >= interval:
            self._stats_logged_at = stats.messages_fetched
            logger.info(f"SESSION_STATS: {stats.summary_line()}")

    async def _process_batch(self, messages: Sequence[ChannelMessage]) -> None:
        for message in messages:
            try:
                await self._handle_message(message)
            except Exception as e:
                logger.error(f"Error processing message {message.id}: {e}")

    def is_own_message(self, message: ChannelMessage) -> bool:
        api = self._config.api
        return is_self_authored(message, self._sent, api.user_id, api.username)

    async def _handle_message(self, message: ChannelMessage) -> bool:
        """Evaluate one message and reply if warranted.

        Returns:
            True if a reply was sent
        """
        if self.is_own_message(message):
            get_session_stats().increment("messages_skipped_self")
            logger.debug(f"SKIP_SELF: {message.id}")
            return False

        logger.info(f"MSG_RECEIVED: {message}")
        self._persist(
            message.body, message.sender_id, message.id, message.created_at, message.sender_handle
        )

        result = await self._evaluator.evaluate(message)
        if not result.should_respond:
            return False

        history = self._history.recent(self._config.polling.context_messages)
        response = await self._responder.respond(message.body, message.sender_handle, history)
        if not response.text:
            logger.warning(f"Empty response for {message.id}, not sending")
            return False

        await self.send_message(response.text, in_reply_to=message.id)
        return True

    def _persist(
        self,
        content: str,
        source_id: str,
        message_id: str | None,
        timestamp: datetime | None = None,
        sender_handle: str = "",
    ) -> None:
        if self._store is None:
            return
        memory = Memory(
            content=content,
            kind=MemoryKind.MESSAGE,
            source_id=source_id,
            room=self._config.api.channel_id,
            message_id=message_id,
            timestamp=timestamp or datetime.now(timezone.utc),
            metadata={"sender_handle": sender_handle} if sender_handle else {},
        )
        try:
            self._store.add(memory)
        except Exception as e:
            logger.error(f"Failed to store message in memory: {e}")

    async def send_message(self, content: str, in_reply_to: str | None = None) -> SendResult:
        """Send a message or reply and remember its id.

        Raises:
            GatewayError: The API rejected the message
        """
        channel = self._config.api.channel_id
        if in_reply_to:
            result = await self._gateway.reply_to_message(channel, content, in_reply_to)
        else:
            result = await self._gateway.post_message(channel, content)

        self._sent.add(result.id)
        get_session_stats().increment("responses_sent")
        logger.info(f"RESPONSE_SENT: id={result.id} reply_to={in_reply_to or '-'} '{content[:80]}'")
        api = self._config.api
        self._persist(content, api.user_id, result.id, result.timestamp, api.username)
        return result

    async def create_post(self, content: str | None = None) -> SendResult:
        """Create a post, generating the content when none is given.

        Raises:
            GatewayError: The API rejected the post
        """
        if not content:
            content = (await self._responder.compose_post()).text

        result = await self._gateway.create_post(self._config.api.channel_id, content)
        self._sent.add(result.id)
        get_session_stats().increment("posts_created")
        logger.info(f"POST_CREATED: id={result.id} '{content[:80]}'")
        api = self._config.api
        self._persist(content, api.user_id, result.id, result.timestamp, api.username)
        return result

    async def _post_job(self) -> None:
        await self.create_post()

    async def fetch_thread(self, message_id: str, max_history: int = THREAD_HISTORY) -> list[ChannelMessage]:
        """Reply thread ending at ``message_id``, oldest first."""
        messages = await self._gateway.fetch_messages(
            self._config.api.channel_id,
            until_ms=int(time.time() * 1000),
            include_replies=True,
        )
        combined = {m.id: m for m in self._history.recent()}
        combined.update({m.id: m for m in messages})
        return reconstruct_thread(list(combined.values()), message_id, max_history)

    async def respond_to(self, message_id: str, content: str | None = None) -> SendResult:
        """Reply to a specific message, generating a validated reply when no text is given.

        Raises:
            GatewayError: Fetching or sending failed
            GenerationError: The reply could not be generated
            LookupError: The message could not be found
        """
        if content:
            return await self.send_message(content, in_reply_to=message_id)

        thread = await self.fetch_thread(message_id)
        if not thread:
            raise LookupError(f"Message {message_id} not found")
        target = thread[-1]
        response = await self._responder.respond(target.body, target.sender_handle, thread[:-1])
        return await self.send_message(response.text, in_reply_to=message_id)
