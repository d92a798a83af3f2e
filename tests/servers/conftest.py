from collections.abc import AsyncGenerator
from typing import Any

import pytest
from fastmcp import FastMCP
from fastmcp.client import Client
from fastmcp.client.transports import FastMCPTransport

from repo_mirror_mcp.clients.github import GitHubMirrorClient
from repo_mirror_mcp.ledger import OperationLedger
from repo_mirror_mcp.servers.mirror import MirrorServer


@pytest.fixture
def mirror_server(mirror_client: GitHubMirrorClient, ledger: OperationLedger) -> MirrorServer:
    return MirrorServer(mirror_client=mirror_client, ledger=ledger)


@pytest.fixture
def mirror_mcp_server(fastmcp: FastMCP[Any], mirror_server: MirrorServer) -> FastMCP[Any]:
    _ = mirror_server.register_tools(fastmcp=fastmcp)
    return mirror_server.register_routes(fastmcp=fastmcp)


@pytest.fixture
async def mirror_mcp_client(mirror_mcp_server: FastMCP[Any]) -> AsyncGenerator[Client[FastMCPTransport], Any]:
    async with Client[FastMCPTransport](transport=mirror_mcp_server) as fastmcp_client:
        yield fastmcp_client
