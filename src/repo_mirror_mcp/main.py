from logging import Logger
from typing import Literal

import click
from fastmcp import FastMCP
from fastmcp.server.middleware.logging import LoggingMiddleware
from fastmcp.utilities.logging import get_logger

from repo_mirror_mcp.clients.github import GitHubMirrorClient
from repo_mirror_mcp.clients.store import get_record_store
from repo_mirror_mcp.ledger import OperationLedger
from repo_mirror_mcp.servers.mirror import MirrorServer

logger: Logger = get_logger(name=__name__)

mcp: FastMCP[None] = FastMCP[None](name="Repo Mirror MCP")

mcp.add_middleware(middleware=LoggingMiddleware(include_payloads=True, logger=logger))

mirror_server: MirrorServer = MirrorServer(
    mirror_client=GitHubMirrorClient(),
    ledger=OperationLedger(record_store=get_record_store(), logger=logger),
    logger=logger,
)
_ = mirror_server.register_tools(fastmcp=mcp)
_ = mirror_server.register_routes(fastmcp=mcp)


@click.command()
@click.option(
    "--mcp-transport",
    type=click.Choice(["stdio", "streamable-http"]),
    default="stdio",
    help="The transport to run the MCP server on. The dashboard's operations route is only served over streamable-http.",
)
def run_mcp(mcp_transport: Literal["stdio", "streamable-http"]):
    mcp.run(transport=mcp_transport)


if __name__ == "__main__":
    run_mcp()
