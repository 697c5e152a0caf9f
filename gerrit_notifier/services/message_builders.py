"""Shared pieces of notification messages."""

from typing import Iterable

from gerrit_notifier.models.event import Event
from gerrit_notifier.models.message import MessageField
from gerrit_notifier.services.gerrit_client import ReviewerInfo
from gerrit_notifier.services.slack_directory import MessageEnricher


def default_pretext(action: str, event: Event) -> str:
    """Context line: '<action> <project> patchset: <url|subject>'."""
    change = event.change
    return f"{action} {change.project} patchset: <{change.url}|{change.subject}>"


def owner_field(event: Event, enricher: MessageEnricher) -> MessageField:
    owner = event.change.owner
    return MessageField(
        title="Owner",
        value=enricher.mention_user(owner.email, owner.name),
        short=True,
    )


def project_field(event: Event) -> MessageField:
    return MessageField(title="Project", value=event.change.project, short=True)


def reviewers_field(
    event: Event,
    reviewers: Iterable[ReviewerInfo],
    enricher: MessageEnricher,
) -> MessageField:
    """Reviewers summary, skipping the owner and accounts without name and email (bots)."""
    owner_email = event.change.owner.email
    mentions = [
        enricher.mention_user(r.email, r.name)
        for r in reviewers
        if r.email and r.name and r.email != owner_email
    ]
    return MessageField(
        title="Reviewers",
        value=", ".join(mentions),
        short=len(mentions) < 2,
    )


def size_field(insertions: int, deletions: int) -> MessageField:
    """'+<insertions>, -<deletions>'; the deletion sign is always shown."""
    deleted = str(deletions)
    if not deleted.startswith("-"):
        deleted = f"-{deleted}"
    return MessageField(title="Size", value=f"+{insertions}, {deleted}", short=True)
