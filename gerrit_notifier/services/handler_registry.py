"""Event handler contract, the global rules wrapper, and the type registry."""

import re
from functools import lru_cache
from typing import Optional, Protocol

from gerrit_notifier.models.event import ChangeStatus, Event
from gerrit_notifier.models.message import Message
from gerrit_notifier.models.project_config import ProjectConfig
from gerrit_notifier.services.gerrit_client import ReviewerInfo
from gerrit_notifier.services.slack_directory import MessageEnricher
from gerrit_notifier.utils.errors import IgnoreRuleError
from gerrit_notifier.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

DEFAULT_COLOR = "good"
CLOSED_COLOR = "danger"
DEFAULT_FOOTER = "Gerrit"


class ReviewerLookup(Protocol):
    """Fetches the current reviewers of a change."""

    async def list_reviewers(self, project: str, number: int) -> list[ReviewerInfo]:
        ...


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern:
    return re.compile(pattern)


def regex_match(pattern: str, value: str) -> bool:
    """
    Search value for pattern. An empty pattern never matches.

    Raises IgnoreRuleError for a pattern that does not compile.
    """
    if not pattern:
        return False
    try:
        compiled = _compile(pattern)
    except re.error as e:
        raise IgnoreRuleError(f"Invalid ignore pattern {pattern!r}: {e}", pattern=pattern) from e
    return compiled.search(value or "") is not None


class EventHandler:
    """Decides whether one event type is worth a notification and renders it."""

    event_type: str = ""

    def should_ignore(self, event: Event, config: ProjectConfig) -> bool:
        raise NotImplementedError

    async def render(
        self,
        event: Event,
        config: ProjectConfig,
        reviewers: ReviewerLookup,
        enricher: MessageEnricher,
    ) -> Message:
        raise NotImplementedError


class GlobalRulesHandler(EventHandler):
    """
    Wraps a handler with the rules every event type shares.

    Before the wrapped predicate runs, events for disabled projects and
    private or WIP changes (when configured) are dropped. After rendering,
    channel, title, color, footer and timestamp are defaulted.
    """

    def __init__(self, handler: EventHandler):
        self.handler = handler
        self.event_type = handler.event_type

    def __repr__(self) -> str:
        return f"<GlobalRulesHandler {type(self.handler).__name__}>"

    def should_ignore(self, event: Event, config: ProjectConfig) -> bool:
        if not config.enabled:
            return True
        if config.ignore_private_patch_set and event.change.private:
            return True
        if config.ignore_wip_patch_set and event.change.wip:
            return True
        return self.handler.should_ignore(event, config)

    async def render(
        self,
        event: Event,
        config: ProjectConfig,
        reviewers: ReviewerLookup,
        enricher: MessageEnricher,
    ) -> Message:
        message = await self.handler.render(event, config, reviewers, enricher)

        defaults = {}
        if not message.channel:
            defaults["channel"] = config.channel
        if not message.title:
            defaults["title"] = event.change.subject
            defaults["title_link"] = event.change.url
        if not message.color:
            closed = event.change.status in (ChangeStatus.MERGED.value, ChangeStatus.ABANDONED.value)
            defaults["color"] = CLOSED_COLOR if closed else DEFAULT_COLOR
        if not message.footer:
            defaults["footer"] = DEFAULT_FOOTER
        if not message.ts:
            defaults["ts"] = event.created_on

        return message.model_copy(update=defaults)


class HandlerRegistry:
    """Maps event type tags to wrapped handlers."""

    def __init__(self):
        self._handlers: dict[str, EventHandler] = {}

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, event_type: str) -> bool:
        return event_type in self._handlers

    def register(self, handler: EventHandler, event_type: Optional[str] = None) -> None:
        """Register a handler; the last registration for a type wins."""
        event_type = event_type or handler.event_type
        if not event_type:
            raise ValueError(f"{type(handler).__name__} has no event type")
        self._handlers[event_type] = GlobalRulesHandler(handler)
        logger.debug("Registered event handler", event_type=event_type, handler=type(handler).__name__)

    def lookup(self, event: Event) -> Optional[EventHandler]:
        """Return the handler for an event, or None for unhandled types."""
        return self._handlers.get(event.type)
