from datetime import datetime
from logging import Logger

from fastmcp.utilities.logging import get_logger

from repo_mirror_mcp.clients.errors.store import InvalidTransitionError, RecordNotFoundError
from repo_mirror_mcp.clients.store import InMemoryRecordStore, RecordStore
from repo_mirror_mcp.models.records import (
    OPERATIONS_LOG_COLLECTION,
    REPOSITORIES_COLLECTION,
    OperationLogEntry,
    OperationStatus,
    OperationType,
    PushType,
    RepositoryRecord,
    RepositoryStatus,
    utc_now,
)

DEFAULT_HISTORY_LIMIT = 20


class OperationLedger:
    """Reads and writes repository rows and operation log rows."""

    record_store: RecordStore
    logger: Logger

    def __init__(self, record_store: RecordStore | None = None, logger: Logger | None = None):
        self.record_store = record_store or InMemoryRecordStore()
        self.logger = logger or get_logger(name=__name__)

    # Repositories

    async def add_repository(self, url: str, default_branch: str | None = None) -> RepositoryRecord:
        repository = RepositoryRecord(url=url, default_branch=default_branch)

        _ = await self.record_store.insert(collection=REPOSITORIES_COLLECTION, record=repository.to_record())

        self.logger.info(f"Registered repository {repository.id} for {url}")

        return repository

    async def get_repository(self, repository_id: str) -> RepositoryRecord | None:
        if (record := await self.record_store.get(collection=REPOSITORIES_COLLECTION, record_id=repository_id)) is None:
            return None

        return RepositoryRecord.from_record(record)

    async def list_repositories(self) -> list[RepositoryRecord]:
        records = await self.record_store.query(collection=REPOSITORIES_COLLECTION, order_by="created_at", descending=False)

        return [RepositoryRecord.from_record(record) for record in records]

    async def mark_synced(self, repository_id: str, commit_sha: str, commit_date: datetime | None) -> RepositoryRecord:
        record = await self.record_store.update(
            collection=REPOSITORIES_COLLECTION,
            record_id=repository_id,
            values={
                "last_commit_sha": commit_sha,
                "last_commit_date": commit_date.isoformat() if commit_date else None,
                "last_synced_at": utc_now().isoformat(),
                "status": RepositoryStatus.SYNCED.value,
            },
        )

        return RepositoryRecord.from_record(record)

    # Operations

    async def start_operation(
        self, source_repo_id: str, target_repo_id: str, push_type: PushType, operation_type: OperationType = OperationType.PUSH
    ) -> OperationLogEntry:
        operation = OperationLogEntry(
            source_repo_id=source_repo_id,
            target_repo_id=target_repo_id,
            operation_type=operation_type,
            push_type=push_type,
        )

        _ = await self.record_store.insert(collection=OPERATIONS_LOG_COLLECTION, record=operation.to_record())

        self.logger.info(f"Started {operation_type} operation {operation.id} from {source_repo_id} to {target_repo_id}")

        return operation

    async def get_operation(self, operation_id: str) -> OperationLogEntry | None:
        if (record := await self.record_store.get(collection=OPERATIONS_LOG_COLLECTION, record_id=operation_id)) is None:
            return None

        return OperationLogEntry.from_record(record)

    async def _finish_operation(
        self, operation_id: str, status: OperationStatus, commit_hash: str | None = None, error_message: str | None = None
    ) -> OperationLogEntry:
        if (operation := await self.get_operation(operation_id=operation_id)) is None:
            raise RecordNotFoundError(collection=OPERATIONS_LOG_COLLECTION, record_id=operation_id)

        if operation.status.terminal:
            raise InvalidTransitionError(operation_id=operation_id, current_status=operation.status, new_status=status)

        values: dict[str, str] = {"status": status.value, "completed_at": utc_now().isoformat()}

        if commit_hash is not None:
            values["commit_hash"] = commit_hash

        if error_message is not None:
            values["error_message"] = error_message

        record = await self.record_store.update(collection=OPERATIONS_LOG_COLLECTION, record_id=operation_id, values=values)

        self.logger.info(f"Operation {operation_id} {status}")

        return OperationLogEntry.from_record(record)

    async def complete_operation(self, operation_id: str, commit_hash: str) -> OperationLogEntry:
        return await self._finish_operation(operation_id=operation_id, status=OperationStatus.COMPLETED, commit_hash=commit_hash)

    async def fail_operation(self, operation_id: str, error_message: str) -> OperationLogEntry:
        return await self._finish_operation(
            operation_id=operation_id, status=OperationStatus.FAILED, error_message=error_message or "Unknown error occurred"
        )

    async def list_operations(self, repository_id: str | None = None, limit: int = DEFAULT_HISTORY_LIMIT) -> list[OperationLogEntry]:
        """List operations newest first, optionally only those where the repository was the source or the target."""

        records = await self.record_store.query(
            collection=OPERATIONS_LOG_COLLECTION,
            any_of={"source_repo_id": repository_id, "target_repo_id": repository_id} if repository_id is not None else None,
            order_by="started_at",
            descending=True,
            limit=limit,
        )

        return [OperationLogEntry.from_record(record) for record in records]
