ExtraInfoType = dict[str, str | None]


class ClientError(Exception):
    """An error from the Repo Mirror GitHub client."""

    def __init__(self, message: str, extra_info: ExtraInfoType | None = None):
        msg = message
        if extra_info:
            msg += " (" + ", ".join([f"{key}: {value}" for key, value in extra_info.items() if value is not None]) + ")"
        super().__init__(msg)


class UpstreamApiError(ClientError):
    """A request to the GitHub API failed."""

    status_code: int | None

    def __init__(
        self, action: str, message: str | None = None, status_code: int | None = None, extra_info: ExtraInfoType | None = None
    ):
        if not extra_info:
            extra_info = {}
        self.status_code = status_code
        super().__init__(
            message="A request error occured.",
            extra_info={
                "action": action,
                "message": message,
                "status": str(status_code) if status_code is not None else None,
                **extra_info,
            },
        )


class ResourceNotFoundError(UpstreamApiError):
    """The requested GitHub resource does not exist."""

    def __init__(self, action: str, resource: str | None = None, extra_info: ExtraInfoType | None = None):
        if not extra_info:
            extra_info = {}
        super().__init__(
            action=action,
            message="The resource could not be found.",
            status_code=404,
            extra_info={"resource": resource, **extra_info},
        )


class NonFastForwardError(UpstreamApiError):
    """GitHub rejected a reference update because it is not a fast forward."""

    def __init__(self, action: str, ref: str, sha: str):
        super().__init__(
            action=action,
            message="Update is not a fast forward.",
            status_code=422,
            extra_info={"ref": ref, "sha": sha},
        )


class LeaseRejectedError(UpstreamApiError):
    """The reference moved away from the SHA the caller expected to overwrite."""

    def __init__(self, ref: str, expected_sha: str, current_sha: str):
        super().__init__(
            action="Update git ref",
            message="The reference does not point at the expected commit.",
            extra_info={"ref": ref, "expected_sha": expected_sha, "current_sha": current_sha},
        )
