"""Process entry point: stream Gerrit events and notify Slack."""

import argparse
import asyncio
import sys
from datetime import timedelta
from typing import Optional

from gerrit_notifier.models.event import Event
from gerrit_notifier.services.event_handlers import register_default_handlers
from gerrit_notifier.services.event_pipeline import EventPipeline
from gerrit_notifier.services.event_stream import (
    DebugEventWriter,
    StreamSession,
    event_queue_writer,
    run_forever,
    ssh_process_factory,
)
from gerrit_notifier.services.gerrit_client import GerritClient
from gerrit_notifier.services.handler_registry import HandlerRegistry
from gerrit_notifier.services.slack_directory import SlackDirectory
from gerrit_notifier.services.webhook_delivery import DeliveryQueue
from gerrit_notifier.utils.errors import ConfigurationError, DirectoryError, GerritAPIError
from gerrit_notifier.utils.logging import get_structured_logger
from gerrit_notifier.utils.logging_config import LoggingConfig
from gerrit_notifier.utils.settings import Settings

logger = get_structured_logger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="gerrit-notifier",
        description="Post Gerrit review events to Slack channels.",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default=None,
        help="Override LOG_LEVEL from the environment.",
    )
    return parser.parse_args(argv)


async def verify_startup(gerrit: GerritClient, directory: SlackDirectory) -> None:
    """Check REST credentials and load the Slack directory; both are fatal on failure."""
    try:
        account = await gerrit.get_account("self")
    except GerritAPIError as e:
        raise ConfigurationError(f"Gerrit credentials rejected: {e}") from e
    logger.info("Authenticated to Gerrit", username=account.get("username", ""))

    try:
        await directory.refresh()
    except DirectoryError as e:
        raise ConfigurationError(f"Unable to load Slack users: {e}") from e


async def serve(settings: Settings) -> None:
    """Run the notifier until cancelled."""
    async with GerritClient(
        settings.gerrit_http_url,
        settings.gerrit_username,
        settings.gerrit_password,
        timeout=settings.http_timeout_seconds,
    ) as gerrit:
        directory = SlackDirectory(token=settings.slack_token, timeout=settings.http_timeout_seconds)
        await verify_startup(gerrit, directory)

        registry = register_default_handlers(HandlerRegistry(), settings.patch_set_settle_seconds)
        delivery = DeliveryQueue(
            retry_interval=settings.webhook_retry_interval_seconds,
            queue_size=settings.event_queue_size,
            timeout=settings.http_timeout_seconds,
        )
        pipeline = EventPipeline(
            registry,
            gerrit,
            directory,
            delivery,
            directory_max_age=timedelta(seconds=settings.directory_max_age_seconds),
        )
        events: asyncio.Queue[Event] = asyncio.Queue(maxsize=settings.event_queue_size)
        spawn = ssh_process_factory(settings)

        tee = None
        if settings.debug_events_path:
            try:
                tee = DebugEventWriter(settings.debug_events_path)
            except OSError as e:
                raise ConfigurationError(f"Cannot open debug events file: {e}") from e

        tasks = [
            asyncio.create_task(delivery.run(), name="delivery"),
            asyncio.create_task(pipeline.consume(events), name="pipeline"),
            asyncio.create_task(
                run_forever(StreamSession(spawn, event_queue_writer(events)), settings.stream_retry_delay_seconds),
                name="stream",
            ),
        ]
        if tee is not None:
            tasks.append(asyncio.create_task(
                run_forever(StreamSession(spawn, tee, name="debug"), settings.stream_retry_delay_seconds),
                name="debug-stream",
            ))
            logger.info("Debug event tee enabled", path=settings.debug_events_path)

        logger.info("Gerrit notifier started", gerrit=settings.gerrit_http_url, task_count=len(tasks))
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await delivery.close()
            if tee is not None:
                tee.close()


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    LoggingConfig.setup_logging(args.log_level)

    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=str(e))
        return 1

    try:
        asyncio.run(serve(settings))
    except ConfigurationError as e:
        logger.error("Startup failed", error=str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("Shutting down")
    return 0


if __name__ == "__main__":
    sys.exit(main())
