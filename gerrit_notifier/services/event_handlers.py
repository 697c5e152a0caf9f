"""Per-event-type notification handlers."""

import asyncio

from gerrit_notifier.models.event import Event, EventAccount, EventType, PatchSetKind
from gerrit_notifier.models.message import Message, MessageField
from gerrit_notifier.models.project_config import ProjectConfig
from gerrit_notifier.services.handler_registry import (
    EventHandler,
    HandlerRegistry,
    ReviewerLookup,
    regex_match,
)
from gerrit_notifier.services.message_builders import (
    default_pretext,
    owner_field,
    project_field,
    reviewers_field,
    size_field,
)
from gerrit_notifier.services.slack_directory import MessageEnricher
from gerrit_notifier.utils.logging import get_structured_logger, log_timing

logger = get_structured_logger(__name__)

# Seconds to wait before rendering a new patch set so reviewers added
# in the same upload show up in the reviewer list.
DEFAULT_PATCH_SET_SETTLE_SECONDS = 5.0

UNCHANGED_PATCH_SET_KINDS = frozenset({
    PatchSetKind.TRIVIAL_REBASE.value,
    PatchSetKind.MERGE_FIRST_PARENT_UPDATE.value,
    PatchSetKind.NO_CODE_CHANGE.value,
    PatchSetKind.NO_CHANGE.value,
})


def is_unchanged_patch_set_kind(kind: str) -> bool:
    """True for kinds that carry no substantive change. Unknown kinds count as changed."""
    if kind in UNCHANGED_PATCH_SET_KINDS:
        return True
    if kind != PatchSetKind.REWORK.value:
        logger.warning("Unknown patch set kind", kind=kind)
    return False


def has_votes(event: Event) -> bool:
    """Whether any approval on the event is an actual vote.

    The server repeats every current label on each comment; only entries
    carrying a previous value were changed by this comment.
    """
    return any(approval.old_value for approval in event.approvals)


def _display_account(*accounts: EventAccount) -> EventAccount:
    for account in accounts:
        if account.name or account.email or account.username:
            return account
    return accounts[-1]


async def _fetch_reviewers(event: Event, reviewers: ReviewerLookup):
    with log_timing("list_reviewers", logger=logger, **event.log_fields()):
        return await reviewers.list_reviewers(event.change.project, event.change.number)


class ChangeMergedHandler(EventHandler):
    """Lets the channel know a change landed."""

    event_type = EventType.CHANGE_MERGED.value

    def should_ignore(self, event: Event, config: ProjectConfig) -> bool:
        return False

    async def render(self, event, config, reviewers, enricher) -> Message:
        change = event.change
        return Message(
            fallback=f"{change.owner.name}: merged {change.url}: {change.subject}",
            pretext=default_pretext("Merged", event),
            fields=[owner_field(event, enricher), project_field(event)],
        )


class ReviewerAddedHandler(EventHandler):
    event_type = EventType.REVIEWER_ADDED.value

    def should_ignore(self, event: Event, config: ProjectConfig) -> bool:
        if not config.publish_on_reviewer_added:
            return True
        if not config.publish_patch_set_reviewers_added:
            # Added in the same batch as the patch set upload.
            delta = abs(event.created_on - event.patch_set.created_on)
            if delta <= config.patch_set_reviewers_tolerance:
                return True
        return False

    async def render(self, event, config, reviewers, enricher) -> Message:
        change = event.change
        reviewer = event.reviewer
        return Message(
            fallback=f"{reviewer.name} asked to review {change.url}: {change.subject}",
            pretext=default_pretext("Review requested for", event),
            fields=[
                owner_field(event, enricher),
                MessageField(
                    title="Reviewer",
                    value=enricher.mention_user(reviewer.email, reviewer.name),
                    short=True,
                ),
            ],
        )


class CommentAddedHandler(EventHandler):
    event_type = EventType.COMMENT_ADDED.value

    def should_ignore(self, event: Event, config: ProjectConfig) -> bool:
        if not config.publish_on_comment_added:
            return True
        if regex_match(config.ignore_authors, event.author.username):
            return True
        # A blank line means the comment has a body alongside the votes.
        if not event.approvals or "\n\n" in event.comment:
            return False

        voted = False
        for approval in event.approvals:
            if not approval.old_value:
                continue
            voted = True
            if not regex_match(config.ignore_only_labels, approval.type):
                return False
        # Every voted label matched ignore-only-labels.
        return voted

    async def render(self, event, config, reviewers, enricher) -> Message:
        change = event.change
        author = event.author
        action = "voted on" if has_votes(event) else "commented on"

        fields = [owner_field(event, enricher)]
        # The owner replying is news for the reviewers.
        if author.email and author.email == change.owner.email:
            fields.append(reviewers_field(event, await _fetch_reviewers(event, reviewers), enricher))

        return Message(
            fallback=f"{author.name} {action} {change.url}: {change.subject}",
            pretext=default_pretext(f"{author.name} {action}", event),
            fields=fields,
            text=event.comment,
        )


class PatchSetCreatedHandler(EventHandler):
    event_type = EventType.PATCH_SET_CREATED.value

    def __init__(self, settle_seconds: float = DEFAULT_PATCH_SET_SETTLE_SECONDS):
        self.settle_seconds = settle_seconds

    def should_ignore(self, event: Event, config: ProjectConfig) -> bool:
        if not config.publish_on_patch_set_created:
            return True
        if config.ignore_unchanged_patch_set and is_unchanged_patch_set_kind(event.patch_set.kind):
            return True
        if regex_match(config.ignore_commit_message, event.change.commit_message):
            return True
        author = _display_account(event.author, event.patch_set.author)
        return regex_match(config.ignore_authors, author.username)

    async def render(self, event, config, reviewers, enricher) -> Message:
        change = event.change
        patch_set = event.patch_set
        uploader = _display_account(event.uploader, patch_set.uploader)
        action = "Updated" if patch_set.number > 1 else "Proposed"

        if not config.publish_patch_set_created_immediately and self.settle_seconds > 0:
            await asyncio.sleep(self.settle_seconds)

        current_reviewers = await _fetch_reviewers(event, reviewers)
        return Message(
            fallback=f"{uploader.name} {action} {change.url}: {change.subject}",
            pretext=default_pretext(f"{uploader.name} {action}", event),
            fields=[
                reviewers_field(event, current_reviewers, enricher),
                size_field(patch_set.size_insertions, patch_set.size_deletions),
            ],
        )


class _VisibilityChangedHandler(EventHandler):
    """Base for changes that just became visible for review."""

    verb = ""

    def publishes(self, config: ProjectConfig) -> bool:
        raise NotImplementedError

    def still_hidden(self, event: Event) -> bool:
        raise NotImplementedError

    def should_ignore(self, event: Event, config: ProjectConfig) -> bool:
        return not self.publishes(config) or self.still_hidden(event)

    async def render(self, event, config, reviewers, enricher) -> Message:
        change = event.change
        changer = _display_account(event.changer, change.owner)
        current_reviewers = await _fetch_reviewers(event, reviewers)
        return Message(
            fallback=f"{changer.name} {self.verb} {change.url}: {change.subject}",
            pretext=default_pretext(f"{changer.name} {self.verb}", event),
            fields=[
                owner_field(event, enricher),
                reviewers_field(event, current_reviewers, enricher),
                project_field(event),
            ],
        )


class WipReadyHandler(_VisibilityChangedHandler):
    event_type = EventType.WIP_STATE_CHANGED.value
    verb = "marked ready for review"

    def publishes(self, config: ProjectConfig) -> bool:
        return config.publish_on_wip_ready

    def still_hidden(self, event: Event) -> bool:
        return event.change.wip


class PrivateToPublicHandler(_VisibilityChangedHandler):
    event_type = EventType.PRIVATE_STATE_CHANGED.value
    verb = "made public"

    def publishes(self, config: ProjectConfig) -> bool:
        return config.publish_on_private_to_public

    def still_hidden(self, event: Event) -> bool:
        return event.change.private


def register_default_handlers(
    registry: HandlerRegistry,
    patch_set_settle_seconds: float = DEFAULT_PATCH_SET_SETTLE_SECONDS,
) -> HandlerRegistry:
    """Startup hook: register every known handler. Call once before processing events."""
    for handler in (
        ChangeMergedHandler(),
        ReviewerAddedHandler(),
        CommentAddedHandler(),
        PatchSetCreatedHandler(settle_seconds=patch_set_settle_seconds),
        WipReadyHandler(),
        PrivateToPublicHandler(),
    ):
        registry.register(handler)
    logger.info("Registered event handlers", handler_count=len(registry))
    return registry
