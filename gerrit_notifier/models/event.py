"""Gerrit stream-events models.

Field names follow the JSON emitted by ``gerrit stream-events``; see
https://gerrit-review.googlesource.com/Documentation/cmd-stream-events.html
"""

from enum import Enum
from typing import Optional
from urllib.parse import quote
from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    """Event type tags emitted by the stream."""
    ASSIGNEE_CHANGED = "assignee-changed"
    CHANGE_ABANDONED = "change-abandoned"
    CHANGE_MERGED = "change-merged"
    CHANGE_RESTORED = "change-restored"
    COMMENT_ADDED = "comment-added"
    DROPPED_OUTPUT = "dropped-output"
    HASHTAGS_CHANGED = "hashtags-changed"
    PROJECT_CREATED = "project-created"
    PATCH_SET_CREATED = "patchset-created"
    REF_UPDATED = "ref-updated"
    REVIEWER_ADDED = "reviewer-added"
    REVIEWER_DELETED = "reviewer-deleted"
    TOPIC_CHANGED = "topic-changed"
    WIP_STATE_CHANGED = "wip-state-changed"
    PRIVATE_STATE_CHANGED = "private-state-changed"
    VOTE_DELETED = "vote-deleted"


class ChangeStatus(str, Enum):
    """Current status of a change."""
    NEW = "NEW"
    MERGED = "MERGED"
    ABANDONED = "ABANDONED"


class PatchSetKind(str, Enum):
    """How a patch set differs from its predecessor."""
    REWORK = "REWORK"
    TRIVIAL_REBASE = "TRIVIAL_REBASE"
    MERGE_FIRST_PARENT_UPDATE = "MERGE_FIRST_PARENT_UPDATE"
    NO_CODE_CHANGE = "NO_CODE_CHANGE"
    NO_CHANGE = "NO_CHANGE"


class _EventRecord(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class EventAccount(_EventRecord):
    """User account inside an event."""
    name: str = ""
    email: str = ""
    username: str = ""


class EventChange(_EventRecord):
    """Change inside an event."""
    project: str = ""
    branch: str = ""
    topic: str = ""
    change_id: str = Field("", alias="id")
    number: int = 0
    subject: str = ""
    owner: EventAccount = Field(default_factory=EventAccount)
    url: str = ""
    commit_message: str = Field("", alias="commitMessage")
    # Kept as a plain string: unknown statuses must not fail decoding.
    status: str = ""
    open: bool = False
    private: bool = False
    wip: bool = False
    created_on: int = Field(0, alias="createdOn")


class EventPatchSet(_EventRecord):
    """Patch set inside an event."""
    number: int = 0
    revision: str = ""
    parents: list[str] = Field(default_factory=list)
    ref: str = ""
    uploader: EventAccount = Field(default_factory=EventAccount)
    author: EventAccount = Field(default_factory=EventAccount)
    kind: str = ""
    size_insertions: int = Field(0, alias="sizeInsertions")
    size_deletions: int = Field(0, alias="sizeDeletions")
    created_on: int = Field(0, alias="createdOn")


class EventApproval(_EventRecord):
    """Label vote inside an event."""
    type: str = ""
    description: str = ""
    value: str = ""
    old_value: str = Field("", alias="oldValue")
    by: EventAccount = Field(default_factory=EventAccount)


class EventRefUpdate(_EventRecord):
    """Ref update inside an event."""
    old_revision: str = Field("", alias="oldRev")
    new_revision: str = Field("", alias="newRev")
    ref_name: str = Field("", alias="refName")
    project: str = ""


class Event(_EventRecord):
    """One record from the event stream. Immutable once decoded."""
    type: str = Field(..., description="Event type tag")

    change: EventChange = Field(default_factory=EventChange)
    patch_set: EventPatchSet = Field(default_factory=EventPatchSet, alias="patchSet")
    ref_update: EventRefUpdate = Field(default_factory=EventRefUpdate, alias="refUpdate")

    author: EventAccount = Field(default_factory=EventAccount)
    submitter: EventAccount = Field(default_factory=EventAccount)
    reviewer: EventAccount = Field(default_factory=EventAccount)
    remover: EventAccount = Field(default_factory=EventAccount)
    changer: EventAccount = Field(default_factory=EventAccount)
    uploader: EventAccount = Field(default_factory=EventAccount)
    editor: EventAccount = Field(default_factory=EventAccount)
    abandoner: EventAccount = Field(default_factory=EventAccount)
    restorer: EventAccount = Field(default_factory=EventAccount)

    approvals: list[EventApproval] = Field(default_factory=list)
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    hashtags: list[str] = Field(default_factory=list)
    project_name: str = Field("", alias="projectName")
    comment: str = ""
    reason: str = ""
    status: str = ""

    created_on: int = Field(0, alias="eventCreatedOn")

    @property
    def project(self) -> str:
        """Project the event belongs to, if any."""
        return self.change.project or self.project_name

    def log_fields(self) -> dict:
        """Fields identifying this event in log lines."""
        return {"event_type": self.type, "project": self.project}


def change_id_with_project_number(project: str, number: int) -> str:
    """Format a project/number pair into a REST change identifier."""
    return f"{quote(project, safe='')}~{number}"
