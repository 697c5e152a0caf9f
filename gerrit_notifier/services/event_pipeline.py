"""Event pipeline - resolve config, dispatch to a handler, queue the message."""

import asyncio
from datetime import timedelta
from typing import Optional

from gerrit_notifier.models.delivery import PendingDelivery
from gerrit_notifier.models.event import Event
from gerrit_notifier.models.project_config import ProjectConfig
from gerrit_notifier.services.config_resolver import resolve_project_config
from gerrit_notifier.services.gerrit_client import GerritClient
from gerrit_notifier.services.handler_registry import HandlerRegistry
from gerrit_notifier.services.slack_directory import DEFAULT_MAX_AGE, SlackDirectory
from gerrit_notifier.services.webhook_delivery import DeliveryQueue
from gerrit_notifier.utils.errors import GerritNotifierError, IgnoreRuleError, ProjectConfigError
from gerrit_notifier.utils.logging import correlation_context, get_structured_logger, log_timing

logger = get_structured_logger(__name__)


class EventPipeline:
    """
    Per-event processing: one task per inbound event.

    Failures are contained to the event that caused them; they are logged
    with the event type and project and the event is dropped.
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        gerrit_client: GerritClient,
        directory: SlackDirectory,
        delivery_queue: DeliveryQueue,
        directory_max_age: timedelta = DEFAULT_MAX_AGE,
    ):
        self.registry = registry
        self.gerrit_client = gerrit_client
        self.directory = directory
        self.delivery_queue = delivery_queue
        self.directory_max_age = directory_max_age
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def ingest(self, event: Event, config: ProjectConfig) -> None:
        """Dispatch one event under a resolved config. Never raises for per-event failures."""
        fields = event.log_fields()
        handler = self.registry.lookup(event)
        if handler is None:
            logger.info("No handler for event type", **fields)
            return

        try:
            if handler.should_ignore(event, config):
                logger.info("Ignoring event", **fields)
                return
        except IgnoreRuleError as e:
            logger.error("Error evaluating ignore rules", error=str(e), pattern=e.pattern, **fields)
            return

        self.directory.refresh_if_stale(self.directory_max_age)

        try:
            with log_timing("render_message", logger=logger, **fields):
                message = await handler.render(event, config, self.gerrit_client, self.directory)
        except GerritNotifierError as e:
            logger.error("Error rendering message", error=str(e), **fields)
            return

        delivery = PendingDelivery(message=message, webhook_url=config.webhook_url, source_type=event.type)
        logger.debug("Message queued for delivery", **delivery.log_fields(), **fields)
        await self.delivery_queue.submit(delivery)

    async def handle(self, event: Event) -> None:
        """Resolve the event's project config, then ingest it."""
        with correlation_context(**event.log_fields()):
            if event.type not in self.registry:
                logger.debug("Dropping unhandled event")
                return

            try:
                if event.project:
                    config = await resolve_project_config(self.gerrit_client, event.project)
                else:
                    config = ProjectConfig.default()
                await self.ingest(event, config)
            except ProjectConfigError as e:
                logger.error("Error loading project config", error=str(e))
            except Exception:
                logger.exception("Unexpected error processing event")

    def spawn(self, event: Event) -> asyncio.Task:
        """Process an event in its own task and return immediately."""
        task = asyncio.create_task(self.handle(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def consume(self, events: "asyncio.Queue[Event]") -> None:
        """Spawn a task per event from the queue until cancelled."""
        try:
            while True:
                event = await events.get()
                self.spawn(event)
                events.task_done()
        finally:
            await self.join()

    async def join(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight event tasks to finish."""
        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)
