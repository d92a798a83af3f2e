ExtraInfoType = dict[str, str | None]


class PersistenceError(Exception):
    """A record store read or write failed."""

    def __init__(self, message: str, extra_info: ExtraInfoType | None = None):
        msg = message
        if extra_info:
            msg += " (" + ", ".join([f"{key}: {value}" for key, value in extra_info.items() if value is not None]) + ")"
        super().__init__(msg)


class RecordNotFoundError(PersistenceError):
    """A record addressed by primary key does not exist."""

    def __init__(self, collection: str, record_id: str):
        super().__init__(message="The record could not be found.", extra_info={"collection": collection, "id": record_id})


class InvalidTransitionError(PersistenceError):
    """An operation log entry was moved out of a terminal status."""

    def __init__(self, operation_id: str, current_status: str, new_status: str):
        super().__init__(
            message="The operation has already finished.",
            extra_info={"id": operation_id, "status": current_status, "requested": new_status},
        )
