from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from repo_mirror_mcp.clients.models.github import RepositoryDetails
from repo_mirror_mcp.models.audit import LogEntry
from repo_mirror_mcp.models.records import PushType, utc_now


class CamelModel(BaseModel):
    """The dashboard speaks camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class OperationRequest(CamelModel):
    """The body of a request to the operations route."""

    type: str = Field(description="The operation to perform, `push` or `analyze`.")
    source_repo_id: str | None = Field(default=None, description="For pushes, the repository to take the latest commit from.")
    target_repo_id: str | None = Field(default=None, description="For pushes, the repository to push the commit onto.")
    push_type: PushType = Field(default=PushType.REGULAR, description="For pushes, how to update the target branch.")
    expected_sha: str | None = Field(default=None, description="For force-with-lease pushes, the commit the target branch must point at.")
    url: str | None = Field(default=None, description="For analysis, the GitHub URL of the repository.")


class AnalyzeResponse(CamelModel):
    """The result of analyzing a repository."""

    success: bool = Field(default=True)
    owner: str = Field(description="The owner of the repository.")
    repo: str = Field(description="The name of the repository.")
    details: RepositoryDetails = Field(description="The default branch, branches and most recent commits of the repository.")
    logs: list[LogEntry] = Field(description="The steps taken to analyze the repository.")
    timestamp: datetime = Field(default_factory=utc_now)


class PushResponse(CamelModel):
    """The result of a successful push."""

    success: bool = Field(default=True)
    operation_id: str = Field(description="The id of the operation log entry.")
    commit_hash: str = Field(description="The source commit that was pushed.")
    target_sha: str = Field(description="The commit the target branch now points at.")
    ref: str = Field(description="The target reference that was created or updated.")
    logs: list[LogEntry] = Field(description="The steps taken to perform the push.")
    timestamp: datetime = Field(default_factory=utc_now)


class ErrorResponse(CamelModel):
    """The body returned when an operation fails."""

    success: bool = Field(default=False)
    error: str = Field(description="What went wrong.")
    logs: list[LogEntry] = Field(default_factory=list, description="The steps taken before the failure.")
    details: dict[str, Any] = Field(default_factory=dict, description="The type and context of the error.")
    timestamp: datetime = Field(default_factory=utc_now)
