from collections.abc import AsyncGenerator
from typing import Any

import httpx
import pytest
from dirty_equals import IsList, IsStr
from fastmcp import FastMCP
from inline_snapshot import snapshot

from repo_mirror_mcp.clients.github import GitHubMirrorClient
from repo_mirror_mcp.ledger import OperationLedger
from repo_mirror_mcp.models.records import REPOSITORIES_COLLECTION, OperationStatus, RepositoryRecord
from repo_mirror_mcp.servers.mirror import OPERATIONS_ROUTE, MirrorServer
from tests.conftest import SOURCE_URL, TARGET_URL, FailingRecordStore
from tests.fake_github import FakeGitHub

CORS_ALLOW_HEADERS = "authorization, x-client-info, apikey, content-type"


@pytest.fixture
async def http_client(mirror_mcp_server: FastMCP[Any]) -> AsyncGenerator[httpx.AsyncClient, Any]:
    transport = httpx.ASGITransport(app=mirror_mcp_server.http_app())

    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client


async def test_preflight(http_client: httpx.AsyncClient):
    response = await http_client.options(OPERATIONS_ROUTE)

    assert response.status_code == 204
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-allow-headers"] == CORS_ALLOW_HEADERS


async def test_push(
    http_client: httpx.AsyncClient,
    source_repository: FakeGitHub,
    empty_target_repository: FakeGitHub,
    registered_source: RepositoryRecord,
    registered_target: RepositoryRecord,
):
    response = await http_client.post(
        OPERATIONS_ROUTE,
        json={"type": "push", "sourceRepoId": registered_source.id, "targetRepoId": registered_target.id, "pushType": "regular"},
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.json() == snapshot(
        {
            "success": True,
            "operationId": IsStr(),
            "commitHash": "abc123",
            "targetSha": "abc123",
            "ref": "refs/heads/main",
            "logs": IsList(length=16),
            "timestamp": IsStr(),
        }
    )
    assert response.json()["logs"][0] == snapshot(
        {
            "type": "info",
            "message": "Starting Git push operation",
            "data": {"source_repo_id": registered_source.id, "target_repo_id": registered_target.id, "push_type": "regular"},
            "error": None,
            "timestamp": IsStr(),
        }
    )


async def test_push_not_fast_forward(
    http_client: httpx.AsyncClient,
    ledger: OperationLedger,
    source_repository: FakeGitHub,
    diverged_target_repository: FakeGitHub,
    registered_source: RepositoryRecord,
    registered_target: RepositoryRecord,
):
    response = await http_client.post(
        OPERATIONS_ROUTE,
        json={"type": "push", "sourceRepoId": registered_source.id, "targetRepoId": registered_target.id, "pushType": "regular"},
    )

    assert response.status_code == 502
    assert response.headers["access-control-allow-origin"] == "*"

    body = response.json()
    assert body == snapshot(
        {
            "success": False,
            "error": "A request error occured. (action: Update git ref, message: Update is not a fast forward., status: 422, ref: heads/main, sha: abc123)",
            "logs": IsList(length=16),
            "details": {"type": "NonFastForwardError", "operation_id": IsStr(), "status_code": 422},
            "timestamp": IsStr(),
        }
    )

    operation = await ledger.get_operation(operation_id=body["details"]["operation_id"])
    assert operation is not None
    assert operation.status is OperationStatus.FAILED


async def test_push_missing_repository(http_client: httpx.AsyncClient, fake_github: FakeGitHub, registered_target: RepositoryRecord):
    response = await http_client.post(
        OPERATIONS_ROUTE, json={"type": "push", "sourceRepoId": "missing", "targetRepoId": registered_target.id}
    )

    assert response.status_code == 404
    assert response.json()["error"] == snapshot("Repository not found (source_repo_id: missing)")
    assert fake_github.requests == []


async def test_push_without_commits(http_client: httpx.AsyncClient, ledger: OperationLedger, empty_target_repository: FakeGitHub):
    source = await ledger.add_repository(url="https://github.com/bob/demo", default_branch="main")
    target = await ledger.add_repository(url="https://github.com/carol/demo", default_branch="main")

    response = await http_client.post(OPERATIONS_ROUTE, json={"type": "push", "sourceRepoId": source.id, "targetRepoId": target.id})

    assert response.status_code == 422
    assert response.json()["error"] == snapshot("No commits found in source repository (url: https://github.com/bob/demo)")


async def test_analyze(http_client: httpx.AsyncClient, source_repository: FakeGitHub):
    response = await http_client.post(OPERATIONS_ROUTE, json={"type": "analyze", "url": "https://github.com/alice/demo"})

    assert response.status_code == 200
    assert response.json() == snapshot(
        {
            "success": True,
            "owner": "alice",
            "repo": "demo",
            "details": {
                "defaultBranch": "main",
                "branches": [{"name": "main", "protected": False, "sha": "abc123"}],
                "lastCommits": [{"sha": "abc123", "message": "Initial commit", "date": IsStr(), "author": "alice"}],
            },
            "logs": IsList(length=3),
            "timestamp": IsStr(),
        }
    )


async def test_analyze_invalid_url(http_client: httpx.AsyncClient):
    response = await http_client.post(OPERATIONS_ROUTE, json={"type": "analyze", "url": "https://example.com/alice/demo"})

    assert response.status_code == 400
    assert response.json() == snapshot(
        {
            "success": False,
            "error": "Invalid GitHub URL: https://example.com/alice/demo",
            "logs": [
                {
                    "type": "error",
                    "message": "Error parsing GitHub URL",
                    "data": None,
                    "error": "Invalid GitHub URL: https://example.com/alice/demo",
                    "timestamp": IsStr(),
                }
            ],
            "details": {"type": "InvalidUrlError"},
            "timestamp": IsStr(),
        }
    )


async def test_unsupported_operation(http_client: httpx.AsyncClient, fake_github: FakeGitHub):
    response = await http_client.post(OPERATIONS_ROUTE, json={"type": "pull"})

    assert response.status_code == 400
    assert response.json() == snapshot(
        {
            "success": False,
            "error": "Unsupported operation (type: pull)",
            "logs": [],
            "details": {"type": "UnsupportedOperationError"},
            "timestamp": IsStr(),
        }
    )
    assert fake_github.requests == []


async def test_invalid_body(http_client: httpx.AsyncClient):
    response = await http_client.post(OPERATIONS_ROUTE, content=b"not json", headers={"content-type": "application/json"})

    assert response.status_code == 400
    assert response.json()["success"] is False


async def test_invalid_push_type(http_client: httpx.AsyncClient):
    response = await http_client.post(
        OPERATIONS_ROUTE, json={"type": "push", "sourceRepoId": "a", "targetRepoId": "b", "pushType": "sideways"}
    )

    assert response.status_code == 400
    assert response.json()["details"] == {"type": "ValidationError"}


async def test_push_persistence_failure(
    fastmcp: FastMCP[Any], mirror_client: GitHubMirrorClient, source_repository: FakeGitHub, empty_target_repository: FakeGitHub
):
    ledger = OperationLedger(record_store=FailingRecordStore(failing_collections={REPOSITORIES_COLLECTION}))
    source = await ledger.add_repository(url=SOURCE_URL, default_branch="main")
    target = await ledger.add_repository(url=TARGET_URL, default_branch="main")

    app = MirrorServer(mirror_client=mirror_client, ledger=ledger).register_routes(fastmcp=fastmcp).http_app()

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as http_client:
        response = await http_client.post(OPERATIONS_ROUTE, json={"type": "push", "sourceRepoId": source.id, "targetRepoId": target.id})

    assert response.status_code == 500
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.json() == snapshot(
        {
            "success": False,
            "error": IsStr(regex=r"Failed to update the record\. \(collection: repositories, id: .+\)"),
            "logs": IsList(length=16),
            "details": {"type": "PersistenceError", "operation_id": IsStr()},
            "timestamp": IsStr(),
        }
    )

    operation = await ledger.get_operation(operation_id=response.json()["details"]["operation_id"])
    assert operation is not None
    assert operation.status is OperationStatus.FAILED


async def test_push_unexpected_upstream_payload(
    http_client: httpx.AsyncClient,
    ledger: OperationLedger,
    source_repository: FakeGitHub,
    empty_target_repository: FakeGitHub,
    registered_source: RepositoryRecord,
    registered_target: RepositoryRecord,
):
    source_repository.fail("GET", "/repos/alice/demo", 200, "Moved elsewhere")

    response = await http_client.post(
        OPERATIONS_ROUTE, json={"type": "push", "sourceRepoId": registered_source.id, "targetRepoId": registered_target.id}
    )

    assert response.status_code == 500
    assert response.json()["details"] == snapshot({"type": "ValidationError", "operation_id": IsStr()})
    assert [entry["message"] for entry in response.json()["logs"][-2:]] == ["Error fetching repository details", "Push operation failed"]

    operations = await ledger.list_operations(repository_id=registered_target.id)
    assert [operation.status for operation in operations] == [OperationStatus.FAILED]
