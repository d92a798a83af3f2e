from datetime import datetime
from logging import Logger
from typing import Any, Literal

from fastmcp.utilities.logging import get_logger
from pydantic import BaseModel, Field, RootModel

from repo_mirror_mcp.models.records import utc_now

logger = get_logger(__name__)

LogEntryType = Literal["info", "success", "error"]


class LogEntry(BaseModel):
    """A single step of an operation, as shown in the operation's audit trail."""

    type: LogEntryType = Field(description="The kind of event.")
    message: str = Field(description="What happened.")
    data: dict[str, Any] | None = Field(default=None, description="Structured details about the event.")
    error: str | None = Field(default=None, description="The error that caused the event, if any.")
    timestamp: datetime = Field(default_factory=utc_now, description="When the event was recorded.")


class AuditTrail(RootModel[list[LogEntry]]):
    """An ordered list of events returned alongside the result of an operation."""

    root: list[LogEntry] = Field(default_factory=list)

    def _record(self, entry: LogEntry, log: Logger | None = None) -> LogEntry:
        log = log or logger

        detail = f" {entry.data}" if entry.data else ""

        if entry.type == "error":
            log.error(f"{entry.message}{detail}: {entry.error}" if entry.error else f"{entry.message}{detail}")
        else:
            log.info(f"{entry.message}{detail}")

        self.root.append(entry)

        return entry

    def info(self, message: str, data: dict[str, Any] | None = None, log: Logger | None = None) -> LogEntry:
        return self._record(LogEntry(type="info", message=message, data=data), log=log)

    def success(self, message: str, data: dict[str, Any] | None = None, log: Logger | None = None) -> LogEntry:
        return self._record(LogEntry(type="success", message=message, data=data), log=log)

    def error(
        self, message: str, error: BaseException | str | None = None, data: dict[str, Any] | None = None, log: Logger | None = None
    ) -> LogEntry:
        return self._record(LogEntry(type="error", message=message, data=data, error=str(error) if error else None), log=log)

    @property
    def entries(self) -> list[LogEntry]:
        return list(self.root)

    @property
    def has_errors(self) -> bool:
        return any(entry.type == "error" for entry in self.root)
