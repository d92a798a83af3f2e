from repo_mirror_mcp.models.audit import AuditTrail

ExtraInfoType = dict[str, str | None]


class ServerError(Exception):
    """An error from the Repo Mirror server."""

    def __init__(self, message: str, extra_info: ExtraInfoType | None = None):
        msg = message
        if extra_info:
            msg += " (" + ", ".join([f"{key}: {value}" for key, value in extra_info.items() if value is not None]) + ")"
        super().__init__(msg)


class RepositoryNotFoundError(ServerError):
    """A repository referenced by an operation is not registered."""

    def __init__(self, source_repo_id: str | None = None, target_repo_id: str | None = None):
        super().__init__(message="Repository not found", extra_info={"source_repo_id": source_repo_id, "target_repo_id": target_repo_id})


class NoCommitsError(ServerError):
    """The source repository has no commits to push."""

    def __init__(self, url: str):
        super().__init__(message="No commits found in source repository", extra_info={"url": url})


class UnsupportedOperationError(ServerError):
    """The requested operation type is not supported."""

    def __init__(self, operation_type: str):
        super().__init__(message="Unsupported operation", extra_info={"type": operation_type})


class OperationFailedError(ServerError):
    """An operation failed. Carries the audit trail gathered up to the failure."""

    cause: Exception
    logs: AuditTrail
    operation_id: str | None

    def __init__(self, cause: Exception, logs: AuditTrail, operation_id: str | None = None):
        self.cause = cause
        self.logs = logs
        self.operation_id = operation_id
        super().__init__(message=str(cause))
