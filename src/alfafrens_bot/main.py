"""Main entry point for alfafrens-bot."""

import asyncio
import logging
import os
import signal
import sys

from dotenv import load_dotenv
from pydantic import SecretStr

from alfafrens_bot.actions import ActionPayload, SimpleActionRegistry, register_actions
from alfafrens_bot.config import (
    Config,
    ConfigError,
    MappingSettings,
    config_from_settings,
    load_config,
    require_api_settings,
)
from alfafrens_bot.core.logging import set_ai_debug
from alfafrens_bot.memory.knowledge import ingest_knowledge
from alfafrens_bot.memory.store import MemoryStore
from alfafrens_bot.orchestrator import Orchestrator


def setup_logging(debug: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from libraries
    for name in ("aiohttp", "chromadb", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def load_api_keys_from_env(config: Config) -> Config:
    """Load LLM API keys from the provider's usual variables if not in config."""
    if not config.llm.anthropic_api_key:
        key = os.getenv("ANTHROPIC_API_KEY")
        if key:
            config.llm.anthropic_api_key = SecretStr(key)

    if not config.llm.google_api_key:
        # Support both GOOGLE_API_KEY and GEMINI_API_KEY
        key = os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY")
        if key:
            config.llm.google_api_key = SecretStr(key)

    return config


async def run_until_stopped(orchestrator: Orchestrator) -> None:
    """Start the orchestrator and run until SIGINT/SIGTERM."""
    logger = logging.getLogger(__name__)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))

    await orchestrator.start()
    try:
        await stop_event.wait()
        logger.info("Shutting down...")
    finally:
        await orchestrator.stop()


async def async_main(
    config_path: str | None = None,
    debug: bool = False,
    debug_ai: bool = False,
    once: bool = False,
    post_now: bool = False,
    action: str | None = None,
    action_payload: dict[str, str] | None = None,
    ingest: list[str] | None = None,
) -> int:
    """Async main entry point. Returns the process exit code."""
    setup_logging(debug)
    logger = logging.getLogger(__name__)

    # Load .env file if present
    load_dotenv()

    config = load_config(config_path)
    # Flat ALFAFRENS_* host settings override the file
    config = config_from_settings(MappingSettings(os.environ), base=config)
    config = load_api_keys_from_env(config)

    if ingest:
        store = MemoryStore(config.memory)
        try:
            total = sum(ingest_knowledge(store, path) for path in ingest)
        except OSError as e:
            logger.error(f"Could not read knowledge file: {e}")
            return 1
        logger.info(f"Ingested {total} knowledge records")
        return 0

    try:
        require_api_settings(config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    if debug_ai:
        set_ai_debug(True)
        logger.info("AI debug logging enabled - full LLM/RAG inputs and outputs will be logged")

    logger.info("Starting AlfaFrens bot...")
    logger.info(f"Channel: {config.api.channel_id}")
    logger.info(f"Username: {config.api.username}")

    orchestrator = Orchestrator.from_config(config)
    actions = SimpleActionRegistry()
    register_actions(orchestrator, actions)

    try:
        if action:
            async with orchestrator.gateway:
                payload = ActionPayload.model_validate(action_payload or {})
                ok = await actions.invoke(action, payload)
            return 0 if ok else 1

        if once or post_now:
            async with orchestrator.gateway:
                if once:
                    count = await orchestrator.process_cycle()
                    logger.info(f"Processed one cycle ({count} messages)")
                if post_now:
                    result = await orchestrator.create_post()
                    logger.info(f"Created post {result.id}")
            return 0

        await run_until_stopped(orchestrator)
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1
    return 0


def main() -> None:
    """Main entry point (sync wrapper)."""
    import argparse

    parser = argparse.ArgumentParser(
        description="AlfaFrens bot: an AI participant for an AlfaFrens channel",
    )
    parser.add_argument(
        "-c", "--config",
        type=str,
        default=None,
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-d", "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--debug-ai",
        action="store_true",
        help="Log full inputs and outputs for all LLM and RAG calls",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single poll cycle and exit",
    )
    parser.add_argument(
        "--post-now",
        action="store_true",
        help="Create one post and exit",
    )
    parser.add_argument(
        "--action",
        type=str,
        default=None,
        help="Invoke one action (e.g. ALFAFRENS_REPLY) and exit",
    )
    parser.add_argument(
        "--text",
        type=str,
        default=None,
        help="Text for --action",
    )
    parser.add_argument(
        "--message-id",
        type=str,
        default=None,
        help="Target message id for --action",
    )
    parser.add_argument(
        "--ingest",
        action="append",
        metavar="PATH",
        default=None,
        help="Add a text file to the knowledge store and exit (repeatable)",
    )

    args = parser.parse_args()
    payload = {
        key: value
        for key, value in (("text", args.text), ("messageId", args.message_id))
        if value is not None
    }

    sys.exit(asyncio.run(async_main(
        config_path=args.config,
        debug=args.debug,
        debug_ai=args.debug_ai,
        once=args.once,
        post_now=args.post_now,
        action=args.action,
        action_payload=payload,
        ingest=args.ingest,
    )))


if __name__ == "__main__":
    main()
