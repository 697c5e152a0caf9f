"""Per-project notification policy models."""

from typing import Optional, Sequence
from pydantic import BaseModel, ConfigDict, Field


class ConfigLayer(BaseModel):
    """
    One project's overrides, as read from its plugin section.

    Every field is optional; only the keys a layer actually sets are
    overlaid onto the accumulated configuration.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    enabled: Optional[bool] = Field(None, alias="enabled")
    webhook_url: Optional[str] = Field(None, alias="webhookurl")
    channel: Optional[str] = Field(None, alias="channel")
    ignore_commit_message: Optional[str] = Field(None, alias="ignore")
    ignore_authors: Optional[str] = Field(None, alias="ignore-authors")
    ignore_unchanged_patch_set: Optional[bool] = Field(None, alias="ignore-unchanged-patch-set")
    ignore_wip_patch_set: Optional[bool] = Field(None, alias="ignore-wip-patch-set")
    ignore_private_patch_set: Optional[bool] = Field(None, alias="ignore-private-patch-set")
    ignore_only_labels: Optional[str] = Field(None, alias="ignore-only-labels")
    publish_on_change_merged: Optional[bool] = Field(None, alias="publish-on-change-merged")
    publish_on_comment_added: Optional[bool] = Field(None, alias="publish-on-comment-added")
    publish_on_patch_set_created: Optional[bool] = Field(None, alias="publish-on-patch-set-created")
    publish_on_reviewer_added: Optional[bool] = Field(None, alias="publish-on-reviewer-added")
    publish_patch_set_reviewers_added: Optional[bool] = Field(None, alias="publish-patch-set-reviewers-added")
    publish_patch_set_created_immediately: Optional[bool] = Field(None, alias="publish-patch-set-created-immediately")
    publish_on_wip_ready: Optional[bool] = Field(None, alias="publish-on-wip-ready")
    publish_on_private_to_public: Optional[bool] = Field(None, alias="publish-on-private-to-public")
    patch_set_reviewers_tolerance: Optional[int] = Field(None, ge=0, alias="patch-set-reviewers-tolerance")

    def overrides(self) -> dict:
        """Fields this layer sets, keyed by attribute name."""
        return self.model_dump(exclude_unset=True, exclude_none=True)


class ProjectConfig(BaseModel):
    """Effective policy for one project after merging its parent chain."""
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    webhook_url: str = ""
    channel: str = "general"
    ignore_commit_message: str = ""
    ignore_authors: str = ""
    ignore_unchanged_patch_set: bool = True
    ignore_wip_patch_set: bool = True
    ignore_private_patch_set: bool = True
    ignore_only_labels: str = ""
    publish_on_change_merged: bool = False
    publish_on_comment_added: bool = False
    publish_on_patch_set_created: bool = False
    publish_on_reviewer_added: bool = False
    # Reviewers added while uploading a patch set arrive as separate
    # reviewer-added events; this toggle decides whether those are published.
    publish_patch_set_reviewers_added: bool = False
    publish_patch_set_created_immediately: bool = False
    # Both default to the final publish_on_patch_set_created when no layer sets them.
    publish_on_wip_ready: bool = False
    publish_on_private_to_public: bool = False
    patch_set_reviewers_tolerance: int = Field(1, ge=0, description="Seconds between patch set and reviewer-added considered the same batch")

    @classmethod
    def default(cls) -> "ProjectConfig":
        """Configuration used when no layer applies."""
        return cls.merge([])

    @classmethod
    def merge(cls, layers: Sequence[ConfigLayer]) -> "ProjectConfig":
        """
        Overlay layers root-most first; later layers win field by field.

        The derived toggles are resolved only after the whole walk so they
        follow the fully merged publish_on_patch_set_created.
        """
        values = cls().model_dump()
        wip_ready: Optional[bool] = None
        private_to_public: Optional[bool] = None

        for layer in layers:
            overrides = layer.overrides()
            if "publish_on_wip_ready" in overrides:
                wip_ready = overrides.pop("publish_on_wip_ready")
            if "publish_on_private_to_public" in overrides:
                private_to_public = overrides.pop("publish_on_private_to_public")
            values.update(overrides)

        publish_created = values["publish_on_patch_set_created"]
        values["publish_on_wip_ready"] = publish_created if wip_ready is None else wip_ready
        values["publish_on_private_to_public"] = (
            publish_created if private_to_public is None else private_to_public
        )
        return cls(**values)
