import asyncio
import os
from collections.abc import Awaitable, Callable
from logging import Logger, getLogger
from typing import Any, Literal, overload

from githubkit import GitHub as GitHubKit
from githubkit.auth.token import TokenAuthStrategy
from githubkit.exception import GitHubException as GitHubKitGitHubException
from githubkit.exception import RequestFailed as GitHubKitRequestFailed
from githubkit.response import Response as GitHubKitResponse
from pydantic import BaseModel

from repo_mirror_mcp.clients.errors.github import NonFastForwardError, ResourceNotFoundError, UpstreamApiError
from repo_mirror_mcp.clients.models.github import (
    Branch,
    Branches,
    Commit,
    Commits,
    GitCommit,
    GitRef,
    GitReference,
    GitTree,
    GitTreeEntry,
    Repository,
    RepositoryDetails,
)

NOT_FOUND_ERROR = 404
EMPTY_REPOSITORY_ERROR = 409
UNPROCESSABLE_ERROR = 422

NOT_A_FAST_FORWARD = "not a fast forward"

DEFAULT_COMMIT_HISTORY_LIMIT = 5

GITHUB_TOKEN_ENV_VARS: tuple[str, ...] = ("GITHUB_TOKEN", "GITHUB_PERSONAL_ACCESS_TOKEN", "GITHUB_ACCESS_TOKEN")


def get_github_token() -> str:
    for env_var in GITHUB_TOKEN_ENV_VARS:
        if token := os.getenv(env_var):
            return token
    msg = f"One of {', '.join(GITHUB_TOKEN_ENV_VARS)} must be set"
    raise ValueError(msg)


def get_commit_history_limit() -> int:
    return int(os.getenv("COMMIT_HISTORY_LIMIT", str(DEFAULT_COMMIT_HISTORY_LIMIT)))


def get_githubkit_client() -> GitHubKit[Any]:
    # A failed step aborts the operation, so requests are never retried
    return GitHubKit[TokenAuthStrategy](auth=TokenAuthStrategy(token=get_github_token()), auto_retry=False)


def to_ref_path(ref: str) -> str:
    """The get and update ref endpoints address references without the leading `refs/`."""
    return ref.removeprefix("refs/")


def to_full_ref(ref: str) -> str:
    return ref if ref.startswith("refs/") else f"refs/{ref}"


def extract_error_message(error: GitHubKitRequestFailed) -> str:
    """Pull GitHub's own error message out of a failed response."""

    try:
        body: Any = error.response.json()  # pyright: ignore[reportAny]
    except ValueError:
        return str(error)

    if isinstance(body, dict) and isinstance(message := body.get("message"), str):  # pyright: ignore[reportUnknownMemberType]
        return message

    return str(error)


class GitHubMirrorClient:
    githubkit_client: GitHubKit[Any]
    logger: Logger

    log_requests: bool
    log_responses: bool
    log_on_error: bool

    def __init__(
        self,
        githubkit_client: GitHubKit[Any] | None = None,
        logger: Logger | None = None,
        log_requests: bool = True,
        log_responses: bool = False,
        log_on_error: bool = True,
    ):
        self.githubkit_client = githubkit_client or get_githubkit_client()
        self.logger = logger or getLogger(__name__)
        self.log_requests = log_requests
        self.log_responses = log_responses
        self.log_on_error = log_on_error

    def _get_loggers(
        self, log_request: bool | None = None, log_response: bool | None = None, log_on_error: bool | None = None
    ) -> tuple[Callable[[str], Any], Callable[[str], Any], Callable[[str], Any]]:
        request_logger = self.logger.info if log_request or self.log_requests else self.logger.debug
        response_logger = self.logger.info if log_response or self.log_responses else self.logger.debug
        error_logger = self.logger.error if log_on_error or self.log_on_error else self.logger.debug
        return request_logger, response_logger, error_logger

    @overload
    async def _perform_rest_request[T: BaseModel](
        self,
        action: str,
        response_model: type[T],
        log_request: bool | None = None,
        log_response: bool | None = None,
        log_on_error: bool | None = None,
        error_on_not_found: Literal[False] = False,
        *,
        method: Callable[..., Awaitable[GitHubKitResponse[Any]]],
        **request_args: Any,  # pyright: ignore[reportAny]
    ) -> T | None: ...

    @overload
    async def _perform_rest_request[T: BaseModel](
        self,
        action: str,
        response_model: type[T],
        log_request: bool | None = None,
        log_response: bool | None = None,
        log_on_error: bool | None = None,
        error_on_not_found: Literal[True] = True,
        *,
        method: Callable[..., Awaitable[GitHubKitResponse[Any]]],
        **request_args: Any,  # pyright: ignore[reportAny]
    ) -> T: ...

    async def _perform_rest_request[T: BaseModel](
        self,
        action: str,
        response_model: type[T],
        log_request: bool | None = None,
        log_response: bool | None = None,
        log_on_error: bool | None = None,
        error_on_not_found: bool | None = None,
        *,
        method: Callable[..., Awaitable[GitHubKitResponse[Any]]],
        **request_args: Any,  # pyright: ignore[reportAny]
    ) -> T | None:
        """Perform a request and validate the JSON body into `response_model`.

        Only the fields we use are validated, so the raw JSON body is read instead of githubkit's parsed models.

        Args:
            action: The action being performed.
            response_model: The model to validate the response body into.
            log_request: Whether to log the request.
            log_response: Whether to log the response.
            log_on_error: Whether to log on error.
            error_on_not_found: Whether to raise an error if the resource is not found.

        Raises:
            ResourceNotFoundError: If the resource is not found and error_on_not_found is True.
            NonFastForwardError: If GitHub rejects a reference update as not a fast forward.
            UpstreamApiError: If the request fails.
        """

        request_logger, response_logger, error_logger = self._get_loggers(
            log_request=log_request, log_response=log_response, log_on_error=log_on_error
        )

        request_logger(f"Performing {action} using {method.__name__} with kwargs {request_args}")

        try:
            response: GitHubKitResponse[Any] = await method(**request_args)
        except GitHubKitRequestFailed as e:
            status_code: int = e.response.status_code

            if status_code == NOT_FOUND_ERROR:
                if error_on_not_found:
                    raise ResourceNotFoundError(action=action, resource=e.request.url.path) from e

                return None

            message = extract_error_message(e)

            error_logger(f"RequestFailed error performing {action} using {method.__name__} with kwargs {request_args}: {message}")

            if status_code == UNPROCESSABLE_ERROR and NOT_A_FAST_FORWARD in message.lower():
                raise NonFastForwardError(action=action, ref=str(request_args.get("ref")), sha=str(request_args.get("sha"))) from e

            raise UpstreamApiError(action=action, message=message, status_code=status_code) from e
        except GitHubKitGitHubException as e:
            error_logger(f"Error performing {action} using {method.__name__} with kwargs {request_args}: {e!r}")

            raise UpstreamApiError(action=action, message=repr(e)) from e

        extracted_response: T = response_model.model_validate(response.json())

        response_logger(f"Extracted response for {action} using {method.__name__} with kwargs {request_args}: {extracted_response}")

        return extracted_response

    @overload
    async def get_repository(self, owner: str, repo: str, error_on_not_found: Literal[True] = True) -> Repository: ...

    @overload
    async def get_repository(self, owner: str, repo: str, error_on_not_found: Literal[False] = False) -> Repository | None: ...

    async def get_repository(self, owner: str, repo: str, error_on_not_found: bool = False) -> Repository | None:
        """Get a repository."""

        return await self._perform_rest_request(
            action="Get repository",
            response_model=Repository,
            error_on_not_found=error_on_not_found,
            method=self.githubkit_client.rest.repos.async_get,
            owner=owner,
            repo=repo,
        )

    async def list_branches(self, owner: str, repo: str) -> list[Branch]:
        """List the branches of a repository."""

        branches: Branches = await self._perform_rest_request(
            action="List branches",
            response_model=Branches,
            error_on_not_found=True,
            method=self.githubkit_client.rest.repos.async_list_branches,
            owner=owner,
            repo=repo,
        )

        return branches.root

    async def list_commits(self, owner: str, repo: str, limit: int = DEFAULT_COMMIT_HISTORY_LIMIT) -> list[Commit]:
        """List the most recent commits on the default branch of a repository, newest first.

        GitHub answers with a conflict for a repository without any commits, which is reported as an empty history.
        """

        try:
            commits: Commits = await self._perform_rest_request(
                action="List commits",
                response_model=Commits,
                error_on_not_found=True,
                method=self.githubkit_client.rest.repos.async_list_commits,
                owner=owner,
                repo=repo,
                per_page=limit,
            )
        except UpstreamApiError as e:
            if e.status_code == EMPTY_REPOSITORY_ERROR:
                return []
            raise

        return commits.root

    async def get_repository_details(self, owner: str, repo: str, commit_limit: int | None = None) -> RepositoryDetails:
        """Get the default branch, branches and most recent commits of a repository.

        The three requests run concurrently. If any of them fails the whole fetch fails.
        """

        if commit_limit is None:
            commit_limit = get_commit_history_limit()

        repository, branches, commits = await asyncio.gather(
            self.get_repository(owner=owner, repo=repo, error_on_not_found=True),
            self.list_branches(owner=owner, repo=repo),
            self.list_commits(owner=owner, repo=repo, limit=commit_limit),
        )

        return RepositoryDetails.from_responses(repository=repository, branches=branches, commits=commits)

    @overload
    async def get_commit(self, owner: str, repo: str, sha: str, error_on_not_found: Literal[True] = True) -> GitCommit: ...

    @overload
    async def get_commit(self, owner: str, repo: str, sha: str, error_on_not_found: Literal[False] = False) -> GitCommit | None: ...

    async def get_commit(self, owner: str, repo: str, sha: str, error_on_not_found: bool = False) -> GitCommit | None:
        """Get a git commit object."""

        return await self._perform_rest_request(
            action="Get commit",
            response_model=GitCommit,
            error_on_not_found=error_on_not_found,
            method=self.githubkit_client.rest.git.async_get_commit,
            owner=owner,
            repo=repo,
            commit_sha=sha,
        )

    async def get_tree(self, owner: str, repo: str, sha: str, recursive: bool = True) -> GitTree:
        """Get a git tree object."""

        return await self._perform_rest_request(
            action="Get tree",
            response_model=GitTree,
            error_on_not_found=True,
            method=self.githubkit_client.rest.git.async_get_tree,
            owner=owner,
            repo=repo,
            tree_sha=sha,
            **({"recursive": "1"} if recursive else {}),
        )

    async def create_tree(self, owner: str, repo: str, entries: list[GitTreeEntry]) -> GitTree:
        """Create a git tree object from a flat list of entries."""

        return await self._perform_rest_request(
            action="Create tree",
            response_model=GitTree,
            error_on_not_found=True,
            method=self.githubkit_client.rest.git.async_create_tree,
            owner=owner,
            repo=repo,
            tree=[entry.to_request() for entry in entries],
        )

    async def create_commit(self, owner: str, repo: str, source_commit: GitCommit, tree_sha: str) -> GitCommit:
        """Create a git commit object with the message, parents and identities of `source_commit`."""

        identities: dict[str, Any] = {}

        if source_commit.author is not None:
            identities["author"] = source_commit.author.to_request()

        if source_commit.committer is not None:
            identities["committer"] = source_commit.committer.to_request()

        return await self._perform_rest_request(
            action="Create commit",
            response_model=GitCommit,
            error_on_not_found=True,
            method=self.githubkit_client.rest.git.async_create_commit,
            owner=owner,
            repo=repo,
            message=source_commit.message,
            tree=tree_sha,
            parents=source_commit.parent_shas,
            **identities,
        )

    @overload
    async def get_git_ref(self, owner: str, repo: str, ref: str, error_on_not_found: Literal[False] = False) -> GitReference | None: ...

    @overload
    async def get_git_ref(self, owner: str, repo: str, ref: str, error_on_not_found: Literal[True] = True) -> GitReference: ...

    async def get_git_ref(self, owner: str, repo: str, ref: str, error_on_not_found: bool = False) -> GitReference | None:
        """Get details about a git ref from the repository.

        Args:
            owner: The owner of the repository.
            repo: The name of the repository.
            ref: The ref to look up, with or without the leading `refs/`.
            error_on_not_found: Whether to raise an error if the ref is not found.
        """

        if git_ref := await self._perform_rest_request(
            action="Get git ref",
            response_model=GitRef,
            error_on_not_found=error_on_not_found,
            method=self.githubkit_client.rest.git.async_get_ref,
            owner=owner,
            repo=repo,
            ref=to_ref_path(ref),
        ):
            return GitReference.from_git_ref(git_ref=git_ref)

        return None

    async def create_git_ref(self, owner: str, repo: str, ref: str, sha: str) -> GitReference:
        """Create a git ref pointing at `sha`."""

        git_ref: GitRef = await self._perform_rest_request(
            action="Create git ref",
            response_model=GitRef,
            error_on_not_found=True,
            method=self.githubkit_client.rest.git.async_create_ref,
            owner=owner,
            repo=repo,
            ref=to_full_ref(ref),
            sha=sha,
        )

        return GitReference.from_git_ref(git_ref=git_ref)

    async def update_git_ref(self, owner: str, repo: str, ref: str, sha: str, force: bool = False) -> GitReference:
        """Point an existing git ref at `sha`. Unless `force` is set GitHub only accepts fast forwards."""

        git_ref: GitRef = await self._perform_rest_request(
            action="Update git ref",
            response_model=GitRef,
            error_on_not_found=True,
            method=self.githubkit_client.rest.git.async_update_ref,
            owner=owner,
            repo=repo,
            ref=to_ref_path(ref),
            sha=sha,
            force=force,
        )

        return GitReference.from_git_ref(git_ref=git_ref)
