from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Self
from uuid import uuid4

from pydantic import BaseModel, Field

REPOSITORIES_COLLECTION = "repositories"
OPERATIONS_LOG_COLLECTION = "git_operations_log"


def new_record_id() -> str:
    return str(uuid4())


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class PushType(StrEnum):
    REGULAR = "regular"
    FORCE = "force"
    FORCE_WITH_LEASE = "force-with-lease"

    @property
    def force(self) -> bool:
        return self in {PushType.FORCE, PushType.FORCE_WITH_LEASE}


class OperationType(StrEnum):
    PUSH = "push"


class RepositoryStatus(StrEnum):
    PENDING = "pending"
    SYNCED = "synced"


class OperationStatus(StrEnum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self is not OperationStatus.STARTED


class BaseRecord(BaseModel):
    id: str = Field(default_factory=new_record_id, description="The primary key of the record.")

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Self:
        return cls.model_validate(record)


class RepositoryRecord(BaseRecord):
    """A repository tracked by the dashboard."""

    url: str = Field(description="The GitHub URL of the repository.")
    default_branch: str | None = Field(default=None, description="The branch pushes are mirrored onto.")
    last_commit_sha: str | None = Field(default=None, description="The SHA of the last commit mirrored onto the repository.")
    last_commit_date: datetime | None = Field(default=None, description="The author date of the last mirrored commit.")
    last_synced_at: datetime | None = Field(default=None, description="When the repository was last pushed to.")
    status: RepositoryStatus = Field(default=RepositoryStatus.PENDING, description="The outcome of the most recent push.")
    created_at: datetime = Field(default_factory=utc_now, description="When the repository was registered.")


class OperationLogEntry(BaseRecord):
    """A single push attempt and its outcome."""

    source_repo_id: str = Field(description="The repository the commit is taken from.")
    target_repo_id: str = Field(description="The repository the commit is pushed onto.")
    operation_type: OperationType = Field(default=OperationType.PUSH, description="The kind of operation.")
    push_type: PushType = Field(description="How the target reference is updated.")
    status: OperationStatus = Field(default=OperationStatus.STARTED, description="Where the operation is in its lifecycle.")
    commit_hash: str | None = Field(default=None, description="The commit that was pushed.")
    error_message: str | None = Field(default=None, description="Why the operation failed.")
    started_at: datetime = Field(default_factory=utc_now, description="When the operation started.")
    completed_at: datetime | None = Field(default=None, description="When the operation finished.")
