from logging import Logger

from fastmcp.utilities.logging import get_logger

from repo_mirror_mcp.clients.errors.github import LeaseRejectedError, UpstreamApiError
from repo_mirror_mcp.clients.github import GitHubMirrorClient, to_full_ref
from repo_mirror_mcp.clients.models.github import GitCommit, GitReference, GitTree
from repo_mirror_mcp.models.audit import AuditTrail
from repo_mirror_mcp.utilities.urls import GitHubRepositoryName


class CommitSynchronizer:
    """Makes a commit available in a target repository and points a branch at it.

    Every step is recorded in the caller's audit trail. Failures are recorded and re-raised.
    """

    mirror_client: GitHubMirrorClient
    logger: Logger

    def __init__(self, mirror_client: GitHubMirrorClient, logger: Logger | None = None):
        self.mirror_client = mirror_client
        self.logger = logger or get_logger(name=__name__)

    async def ensure_commit(self, source: GitHubRepositoryName, target: GitHubRepositoryName, sha: str, trail: AuditTrail) -> str:
        """Return the SHA of `sha` in the target repository, recreating the commit there if it is missing.

        The commit is recreated from the source tree entries. GitHub only accepts the new tree when the
        target can already see the blobs, which holds for repositories in the same fork network. Trees that
        GitHub truncates are refused rather than copied in part.
        """

        try:
            trail.info(
                "Checking whether the commit exists in the target repository", {"repo": target.full_name, "sha": sha}, log=self.logger
            )

            if await self.mirror_client.get_commit(owner=target.owner, repo=target.repo, sha=sha, error_on_not_found=False):
                trail.success("Commit already exists in the target repository", {"sha": sha}, log=self.logger)
                return sha

            trail.info("Fetching commit from source repository", {"repo": source.full_name, "sha": sha}, log=self.logger)
            source_commit: GitCommit = await self.mirror_client.get_commit(
                owner=source.owner, repo=source.repo, sha=sha, error_on_not_found=True
            )

            trail.info("Fetching tree from source repository", {"tree_sha": source_commit.tree_sha}, log=self.logger)
            source_tree: GitTree = await self.mirror_client.get_tree(owner=source.owner, repo=source.repo, sha=source_commit.tree_sha)

            # A truncated listing only covers part of the snapshot.
            if source_tree.truncated:
                raise UpstreamApiError(action="Get tree", message="Tree is truncated", extra_info={"tree_sha": source_tree.sha})

            trail.info("Creating tree in target repository", {"entries": len(source_tree.leaf_entries())}, log=self.logger)
            target_tree: GitTree = await self.mirror_client.create_tree(
                owner=target.owner, repo=target.repo, entries=source_tree.leaf_entries()
            )

            trail.info(
                "Creating commit in target repository",
                {"tree_sha": target_tree.sha, "parents": source_commit.parent_shas},
                log=self.logger,
            )
            target_commit: GitCommit = await self.mirror_client.create_commit(
                owner=target.owner, repo=target.repo, source_commit=source_commit, tree_sha=target_tree.sha
            )
        except UpstreamApiError as e:
            trail.error("Error copying commit", error=e, log=self.logger)
            raise

        trail.success("Commit copied successfully", {"source_sha": sha, "target_sha": target_commit.sha}, log=self.logger)

        return target_commit.sha

    async def ensure_ref(
        self,
        owner: str,
        repo: str,
        ref: str,
        sha: str,
        force: bool,
        trail: AuditTrail,
        expected_sha: str | None = None,
    ) -> GitReference:
        """Create `ref` pointing at `sha`, or move it there if it already exists.

        Without `force` GitHub rejects updates that are not fast forwards. With `expected_sha` the update
        is refused unless the reference still points at that commit.
        """

        ref = to_full_ref(ref)

        try:
            trail.info("Ensuring reference exists", {"owner": owner, "repo": repo, "ref": ref, "sha": sha, "force": force}, log=self.logger)

            current: GitReference | None = await self.mirror_client.get_git_ref(owner=owner, repo=repo, ref=ref, error_on_not_found=False)

            if current is None:
                trail.info("Reference does not exist, will create it", {"ref": ref}, log=self.logger)

                created: GitReference = await self.mirror_client.create_git_ref(owner=owner, repo=repo, ref=ref, sha=sha)

                trail.success("Reference created successfully", {"ref": created.name, "sha": created.sha}, log=self.logger)

                return created

            trail.info("Reference exists", {"ref": ref, "current_sha": current.sha}, log=self.logger)

            if expected_sha is not None and current.sha != expected_sha:
                raise LeaseRejectedError(ref=ref, expected_sha=expected_sha, current_sha=current.sha)

            trail.info("Updating existing reference", {"ref": ref, "sha": sha, "force": force}, log=self.logger)

            updated: GitReference = await self.mirror_client.update_git_ref(owner=owner, repo=repo, ref=ref, sha=sha, force=force)
        except UpstreamApiError as e:
            trail.error("Error ensuring reference", error=e, log=self.logger)
            raise

        trail.success("Reference updated successfully", {"ref": updated.name, "sha": updated.sha}, log=self.logger)

        return updated
