"""Build artifact models."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class ArtifactRef(BaseModel):
    """Handle on one file held by the artifact store."""

    model_config = ConfigDict(frozen=True)

    name: str
    content_address: str  # "sha256:<hex>"
    size_bytes: int = 0


class Artifact(BaseModel):
    """The single deployable output of one Artifact Builder run.

    Consumed by exactly one Image Builder run.  ``content_address`` is both
    identity and integrity check; ``version_label`` is its short form for
    people.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    path: str
    content_address: str
    size_bytes: int
    version_label: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def digest(self) -> str:
        return self.content_address.removeprefix("sha256:")
