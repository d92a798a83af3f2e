from logging import Logger
from typing import Any

from fastmcp import FastMCP
from fastmcp.tools import Tool
from fastmcp.utilities.logging import get_logger
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from repo_mirror_mcp.clients.errors.github import UpstreamApiError
from repo_mirror_mcp.clients.errors.store import PersistenceError
from repo_mirror_mcp.clients.github import GitHubMirrorClient
from repo_mirror_mcp.clients.models.github import CommitSummary, GitReference, RepositoryDetails
from repo_mirror_mcp.ledger import DEFAULT_HISTORY_LIMIT, OperationLedger
from repo_mirror_mcp.models.audit import AuditTrail
from repo_mirror_mcp.models.records import OperationLogEntry, PushType, RepositoryRecord
from repo_mirror_mcp.servers.models.mirror import AnalyzeResponse, ErrorResponse, OperationRequest, PushResponse
from repo_mirror_mcp.servers.shared.annotations import (
    DEFAULT_BRANCH,
    EXPECTED_SHA,
    HISTORY_LIMIT,
    OPTIONAL_REPOSITORY_ID,
    PUSH_TYPE,
    REPOSITORY_URL,
    SOURCE_REPO_ID,
    TARGET_REPO_ID,
)
from repo_mirror_mcp.servers.shared.errors import (
    NoCommitsError,
    OperationFailedError,
    RepositoryNotFoundError,
    ServerError,
    UnsupportedOperationError,
)
from repo_mirror_mcp.synchronizer import CommitSynchronizer
from repo_mirror_mcp.utilities.urls import GitHubRepositoryName, InvalidUrlError, parse_github_url

OPERATIONS_ROUTE = "/git-operations"

FALLBACK_BRANCH = "main"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}

BAD_REQUEST = 400
NOT_FOUND = 404
UNPROCESSABLE = 422
INTERNAL_SERVER_ERROR = 500
BAD_GATEWAY = 502


def error_status_code(error: Exception) -> int:
    """Map an operation failure onto the status code of the error response."""

    match error:
        case OperationFailedError():
            return error_status_code(error.cause)
        case UnsupportedOperationError() | InvalidUrlError():
            return BAD_REQUEST
        case RepositoryNotFoundError():
            return NOT_FOUND
        case NoCommitsError():
            return UNPROCESSABLE
        case UpstreamApiError():
            return BAD_GATEWAY
        case _:
            return INTERNAL_SERVER_ERROR


def error_details(error: Exception) -> dict[str, Any]:
    cause: Exception = error.cause if isinstance(error, OperationFailedError) else error

    details: dict[str, Any] = {"type": type(cause).__name__}

    if isinstance(error, OperationFailedError) and error.operation_id is not None:
        details["operation_id"] = error.operation_id

    if isinstance(cause, UpstreamApiError) and cause.status_code is not None:
        details["status_code"] = cause.status_code

    return details


class MirrorServer:
    """Analyzes tracked repositories and pushes the latest commit of one onto another."""

    mirror_client: GitHubMirrorClient
    ledger: OperationLedger
    synchronizer: CommitSynchronizer
    logger: Logger

    def __init__(
        self,
        mirror_client: GitHubMirrorClient | None = None,
        ledger: OperationLedger | None = None,
        logger: Logger | None = None,
    ):
        self.logger = logger or get_logger(name=__name__)
        self.mirror_client = mirror_client or GitHubMirrorClient()
        self.ledger = ledger or OperationLedger(logger=self.logger)
        self.synchronizer = CommitSynchronizer(mirror_client=self.mirror_client, logger=self.logger)

    def register_tools(self, fastmcp: FastMCP[Any]) -> FastMCP[Any]:
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.analyze))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.push))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.register_repository))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.list_repositories))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.get_operation_history))

        return fastmcp

    def register_routes(self, fastmcp: FastMCP[Any]) -> FastMCP[Any]:
        _ = fastmcp.custom_route(OPERATIONS_ROUTE, methods=["POST", "OPTIONS"])(self.handle_operation_request)

        return fastmcp

    async def _fetch_details(self, repository_name: GitHubRepositoryName, trail: AuditTrail) -> RepositoryDetails:
        trail.info("Starting repository details fetch", {"owner": repository_name.owner, "repo": repository_name.repo}, log=self.logger)

        try:
            details: RepositoryDetails = await self.mirror_client.get_repository_details(
                owner=repository_name.owner, repo=repository_name.repo
            )
        except Exception as e:
            trail.error("Error fetching repository details", error=e, log=self.logger)
            raise

        trail.success(
            "Repository details fetched successfully",
            {
                "default_branch": details.default_branch,
                "branch_count": len(details.branches),
                "commit_count": len(details.last_commits),
            },
            log=self.logger,
        )

        return details

    async def analyze(self, url: REPOSITORY_URL) -> AnalyzeResponse:
        """Get the default branch, branches and most recent commits of a GitHub repository."""

        trail = AuditTrail()

        try:
            repository_name: GitHubRepositoryName = parse_github_url(url)
        except InvalidUrlError as e:
            trail.error("Error parsing GitHub URL", error=e, log=self.logger)
            raise OperationFailedError(cause=e, logs=trail) from e

        trail.info("Parsed GitHub URL", {"owner": repository_name.owner, "repo": repository_name.repo}, log=self.logger)

        try:
            details: RepositoryDetails = await self._fetch_details(repository_name=repository_name, trail=trail)
        except Exception as e:
            raise OperationFailedError(cause=e, logs=trail) from e

        return AnalyzeResponse(owner=repository_name.owner, repo=repository_name.repo, details=details, logs=trail.entries)

    async def register_repository(self, url: REPOSITORY_URL, default_branch: DEFAULT_BRANCH = None) -> RepositoryRecord:
        """Start tracking a GitHub repository so it can be used as the source or target of a push."""

        repository_name: GitHubRepositoryName = parse_github_url(url)

        if default_branch is None:
            default_branch = (
                await self.mirror_client.get_repository(owner=repository_name.owner, repo=repository_name.repo, error_on_not_found=True)
            ).default_branch

        return await self.ledger.add_repository(url=url, default_branch=default_branch)

    async def list_repositories(self) -> list[RepositoryRecord]:
        """List the tracked repositories and the outcome of their most recent push."""

        return await self.ledger.list_repositories()

    async def get_operation_history(
        self, repository_id: OPTIONAL_REPOSITORY_ID = None, limit: HISTORY_LIMIT = DEFAULT_HISTORY_LIMIT
    ) -> list[OperationLogEntry]:
        """List recent push operations, newest first."""

        return await self.ledger.list_operations(repository_id=repository_id, limit=limit)

    async def _load_repositories(
        self, source_repo_id: str, target_repo_id: str, trail: AuditTrail
    ) -> tuple[RepositoryRecord, RepositoryRecord]:
        source = await self.ledger.get_repository(repository_id=source_repo_id)
        target = await self.ledger.get_repository(repository_id=target_repo_id)

        if source is None or target is None:
            trail.error("Repository not found", data={"source_repo_id": source_repo_id, "target_repo_id": target_repo_id}, log=self.logger)
            raise RepositoryNotFoundError(
                source_repo_id=source_repo_id if source is None else None,
                target_repo_id=target_repo_id if target is None else None,
            )

        trail.info(
            "Repositories found",
            {
                "source": {"url": source.url, "branch": source.default_branch},
                "target": {"url": target.url, "branch": target.default_branch},
            },
            log=self.logger,
        )

        return source, target

    async def _mirror_latest_commit(
        self,
        source: RepositoryRecord,
        target: RepositoryRecord,
        push_type: PushType,
        expected_sha: str | None,
        trail: AuditTrail,
    ) -> tuple[CommitSummary, GitReference]:
        source_name: GitHubRepositoryName = parse_github_url(source.url)
        target_name: GitHubRepositoryName = parse_github_url(target.url)

        source_details: RepositoryDetails = await self._fetch_details(repository_name=source_name, trail=trail)

        if (source_commit := source_details.latest_commit) is None:
            trail.error("No commits found in source repository", log=self.logger)
            raise NoCommitsError(url=source.url)

        trail.info(
            "Source commit details",
            {"sha": source_commit.sha, "message": source_commit.message, "date": source_commit.date},
            log=self.logger,
        )

        target_sha: str = await self.synchronizer.ensure_commit(source=source_name, target=target_name, sha=source_commit.sha, trail=trail)

        reference: GitReference = await self.synchronizer.ensure_ref(
            owner=target_name.owner,
            repo=target_name.repo,
            ref=f"refs/heads/{target.default_branch or FALLBACK_BRANCH}",
            sha=target_sha,
            force=push_type.force,
            trail=trail,
            expected_sha=expected_sha if push_type is PushType.FORCE_WITH_LEASE else None,
        )

        return source_commit, reference

    async def push(
        self,
        source_repo_id: SOURCE_REPO_ID,
        target_repo_id: TARGET_REPO_ID,
        push_type: PUSH_TYPE = PushType.REGULAR,
        expected_sha: EXPECTED_SHA = None,
    ) -> PushResponse:
        """Push the latest commit of the source repository onto the default branch of the target repository."""

        trail = AuditTrail()

        trail.info(
            "Starting Git push operation",
            {"source_repo_id": source_repo_id, "target_repo_id": target_repo_id, "push_type": push_type},
            log=self.logger,
        )

        try:
            operation: OperationLogEntry = await self.ledger.start_operation(
                source_repo_id=source_repo_id, target_repo_id=target_repo_id, push_type=push_type
            )
        except PersistenceError as e:
            trail.error("Error creating operation log", error=e, log=self.logger)
            raise OperationFailedError(cause=e, logs=trail) from e

        try:
            source, target = await self._load_repositories(source_repo_id=source_repo_id, target_repo_id=target_repo_id, trail=trail)

            source_commit, reference = await self._mirror_latest_commit(
                source=source, target=target, push_type=push_type, expected_sha=expected_sha, trail=trail
            )

            trail.success(
                "Push operation completed", {"target_repo": target.url, "ref": reference.name, "sha": reference.sha}, log=self.logger
            )

            _ = await self.ledger.mark_synced(repository_id=target.id, commit_sha=source_commit.sha, commit_date=source_commit.date)
            _ = await self.ledger.complete_operation(operation_id=operation.id, commit_hash=source_commit.sha)

            trail.success("Repository status updated in database", log=self.logger)
        except Exception as e:
            trail.error("Push operation failed", error=e, log=self.logger)

            try:
                _ = await self.ledger.fail_operation(operation_id=operation.id, error_message=str(e))
            except PersistenceError as ledger_error:
                trail.error("Error recording the failed operation", error=ledger_error, log=self.logger)

            raise OperationFailedError(cause=e, logs=trail, operation_id=operation.id) from e

        return PushResponse(
            operation_id=operation.id,
            commit_hash=source_commit.sha,
            target_sha=reference.sha,
            ref=reference.name,
            logs=trail.entries,
        )

    async def run_operation(self, operation_request: OperationRequest) -> PushResponse | AnalyzeResponse:
        """Dispatch a request from the dashboard to the matching operation."""

        match operation_request.type:
            case "push":
                if operation_request.source_repo_id is None or operation_request.target_repo_id is None:
                    raise RepositoryNotFoundError(
                        source_repo_id=operation_request.source_repo_id, target_repo_id=operation_request.target_repo_id
                    )

                return await self.push(
                    source_repo_id=operation_request.source_repo_id,
                    target_repo_id=operation_request.target_repo_id,
                    push_type=operation_request.push_type,
                    expected_sha=operation_request.expected_sha,
                )
            case "analyze":
                if operation_request.url is None:
                    raise InvalidUrlError(url="")

                return await self.analyze(url=operation_request.url)
            case _:
                raise UnsupportedOperationError(operation_type=operation_request.type)

    async def handle_operation_request(self, request: Request) -> Response:
        """The HTTP entry point used by the dashboard."""

        if request.method == "OPTIONS":
            return Response(status_code=204, headers=CORS_HEADERS)

        try:
            operation_request = OperationRequest.model_validate(await request.json())
        except ValueError as e:
            self.logger.error(f"Invalid operation request: {e}")
            return self._error_response(error=e, status_code=BAD_REQUEST)

        self.logger.info(f"Received operation request {operation_request.to_json_payload()}")

        try:
            result: PushResponse | AnalyzeResponse = await self.run_operation(operation_request=operation_request)
        except (ServerError, InvalidUrlError) as e:
            self.logger.error(f"Operation failed: {e}")
            return self._error_response(error=e, status_code=error_status_code(e))

        return JSONResponse(result.to_json_payload(), headers=CORS_HEADERS)

    def _error_response(self, error: Exception, status_code: int) -> JSONResponse:
        error_response = ErrorResponse(
            error=str(error) or "Unknown error occurred",
            logs=error.logs.entries if isinstance(error, OperationFailedError) else [],
            details=error_details(error),
        )

        return JSONResponse(error_response.to_json_payload(), status_code=status_code, headers=CORS_HEADERS)
