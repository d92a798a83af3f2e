import os
from collections.abc import AsyncGenerator, Sequence
from typing import Any

import pytest
from fastmcp import FastMCP
from fastmcp.client.client import CallToolResult
from fastmcp.server.middleware.logging import LoggingMiddleware
from githubkit.github import GitHub
from pydantic import BaseModel

from repo_mirror_mcp.clients.github import GitHubMirrorClient
from repo_mirror_mcp.clients.errors.store import PersistenceError
from repo_mirror_mcp.clients.store import InMemoryRecordStore, Record
from repo_mirror_mcp.ledger import OperationLedger
from repo_mirror_mcp.models.audit import LogEntry
from repo_mirror_mcp.models.records import RepositoryRecord
from tests.fake_github import FakeGitHub

_ = os.environ.setdefault("GITHUB_TOKEN", "test-token")

SOURCE_URL = "https://github.com/alice/demo"
TARGET_URL = "https://github.com/bob/demo"


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
async def githubkit_client(fake_github: FakeGitHub) -> AsyncGenerator[GitHub[Any], Any]:
    githubkit_client = GitHub[Any](auth="test-token", async_transport=fake_github.transport(), http_cache=False, auto_retry=False)

    async with githubkit_client:
        yield githubkit_client


@pytest.fixture
def mirror_client(githubkit_client: GitHub[Any]) -> GitHubMirrorClient:
    return GitHubMirrorClient(githubkit_client=githubkit_client)


@pytest.fixture
def record_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


class FailingRecordStore(InMemoryRecordStore):
    """Fails every update of the given collections."""

    failing_collections: set[str]

    def __init__(self, failing_collections: set[str]) -> None:
        super().__init__()
        self.failing_collections = failing_collections

    async def update(self, collection: str, record_id: str, values: Record) -> Record:
        if collection in self.failing_collections:
            raise PersistenceError(message="Failed to update the record.", extra_info={"collection": collection, "id": record_id})

        return await super().update(collection=collection, record_id=record_id, values=values)


@pytest.fixture
def ledger(record_store: InMemoryRecordStore) -> OperationLedger:
    return OperationLedger(record_store=record_store)


@pytest.fixture
def logging_middleware() -> LoggingMiddleware:
    return LoggingMiddleware(include_payloads=True)


@pytest.fixture
def fastmcp(logging_middleware: LoggingMiddleware) -> FastMCP[Any]:
    return FastMCP(name="Repo Mirror MCP", middleware=[logging_middleware])


# Demo Repositories


@pytest.fixture
def source_repository(fake_github: FakeGitHub) -> FakeGitHub:
    """alice/demo with a single commit `abc123` on main."""

    _ = fake_github.add_repository(owner="alice", name="demo")
    _ = fake_github.add_commit(
        owner="alice", repo="demo", sha="abc123", message="Initial commit", files={"README.md": "blob-readme"}, branch="main"
    )

    return fake_github


@pytest.fixture
def empty_target_repository(fake_github: FakeGitHub) -> FakeGitHub:
    """bob/demo without any commits or branches."""

    _ = fake_github.add_repository(owner="bob", name="demo")

    return fake_github


@pytest.fixture
def diverged_target_repository(fake_github: FakeGitHub) -> FakeGitHub:
    """bob/demo with main pointing at `def456`, which does not descend from `abc123`."""

    _ = fake_github.add_repository(owner="bob", name="demo")
    _ = fake_github.add_commit(
        owner="bob", repo="demo", sha="def456", message="Unrelated work", files={"NOTES.md": "blob-notes"}, branch="main"
    )

    return fake_github


@pytest.fixture
async def registered_source(ledger: OperationLedger) -> RepositoryRecord:
    return await ledger.add_repository(url=SOURCE_URL, default_branch="main")


@pytest.fixture
async def registered_target(ledger: OperationLedger) -> RepositoryRecord:
    return await ledger.add_repository(url=TARGET_URL, default_branch="main")


def handle_exclude_keys(dictionary: dict[str, Any], exclude_keys: list[str] | None = None) -> dict[str, Any]:
    if exclude_keys is None:
        return dictionary
    return {key: value for key, value in dictionary.items() if key not in exclude_keys}


def dump_for_snapshot(
    basemodel: None | BaseModel,
    /,
    exclude_keys: list[str] | None = None,
    exclude_none: bool = True,
    **dump_kwargs: Any,
) -> dict[str, Any] | None:
    if basemodel is None:
        return None

    return handle_exclude_keys(basemodel.model_dump(exclude_none=exclude_none, **dump_kwargs), exclude_keys)


def dump_list_for_snapshot(
    basemodel: None | Sequence[BaseModel],
    /,
    exclude_keys: list[str] | None = None,
    exclude_none: bool = True,
    **dump_kwargs: Any,
) -> list[dict[str, Any] | None]:
    if basemodel is None:
        return []

    return [dump_for_snapshot(item, exclude_keys=exclude_keys, exclude_none=exclude_none, **dump_kwargs) for item in basemodel]


def dump_trail_for_snapshot(entries: Sequence[LogEntry]) -> list[tuple[str, str]]:
    """Reduce audit trail entries to their type and message, which are stable across runs."""
    return [(entry.type, entry.message) for entry in entries]


def get_result_from_call_tool_result(call_tool_result: CallToolResult) -> dict[str, Any]:
    assert call_tool_result.structured_content is not None
    assert isinstance(call_tool_result.structured_content, dict)
    return call_tool_result.structured_content
