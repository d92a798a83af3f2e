from datetime import datetime
from typing import Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, RootModel
from pydantic.alias_generators import to_camel

TreeEntryMode = Literal["100644", "100755", "040000", "160000", "120000"]
TreeEntryType = Literal["blob", "tree", "commit"]


class GitHubModel(BaseModel):
    """Payloads from the GitHub REST API carry far more fields than we use."""

    model_config = ConfigDict(extra="ignore")


class Repository(GitHubModel):
    """A repository."""

    name: str = Field(description="The name of the repository.")
    full_name: str | None = Field(default=None, description="The owner and name of the repository.")
    html_url: str | None = Field(default=None, description="The web URL of the repository.")
    default_branch: str = Field(description="The default branch of the repository.")
    fork: bool = Field(default=False, description="Whether the repository is a fork.")
    archived: bool = Field(default=False, description="Whether the repository is archived.")


class BranchCommit(GitHubModel):
    sha: str


class Branch(GitHubModel):
    """A branch of a repository."""

    name: str = Field(description="The name of the branch.")
    protected: bool = Field(default=False, description="Whether the branch is protected.")
    commit: BranchCommit = Field(description="The commit the branch points at.")

    @property
    def sha(self) -> str:
        return self.commit.sha


class Branches(RootModel[list[Branch]]):
    pass


class GitActor(GitHubModel):
    """The author or committer of a commit."""

    name: str | None = None
    email: str | None = None
    date: datetime | None = None

    def to_request(self) -> dict[str, str]:
        request: dict[str, str] = {}

        if self.name is not None:
            request["name"] = self.name
        if self.email is not None:
            request["email"] = self.email
        if self.date is not None:
            request["date"] = self.date.isoformat().replace("+00:00", "Z")

        return request


class CommitDetail(GitHubModel):
    message: str
    author: GitActor | None = None


class Commit(GitHubModel):
    """A commit as returned by the list commits endpoint."""

    sha: str
    commit: CommitDetail


class Commits(RootModel[list[Commit]]):
    pass


class ShaPointer(GitHubModel):
    sha: str


class GitCommit(GitHubModel):
    """A git commit object."""

    sha: str = Field(description="The SHA of the commit.")
    message: str = Field(description="The commit message.")
    tree: ShaPointer = Field(description="The tree of the commit.")
    parents: list[ShaPointer] = Field(default_factory=list, description="The parents of the commit.")
    author: GitActor | None = Field(default=None, description="The author of the commit.")
    committer: GitActor | None = Field(default=None, description="The committer of the commit.")

    @property
    def tree_sha(self) -> str:
        return self.tree.sha

    @property
    def parent_shas(self) -> list[str]:
        return [parent.sha for parent in self.parents]


class GitTreeEntry(GitHubModel):
    """An entry of a git tree."""

    path: str
    mode: TreeEntryMode
    type: TreeEntryType
    sha: str | None = None
    size: int | None = None

    def to_request(self) -> dict[str, Any]:
        return {"path": self.path, "mode": self.mode, "type": self.type, "sha": self.sha}


class GitTree(GitHubModel):
    """A git tree object."""

    sha: str
    tree: list[GitTreeEntry] = Field(default_factory=list)
    truncated: bool = False

    def leaf_entries(self) -> list[GitTreeEntry]:
        """Recursive trees list subtrees alongside their contents, the blob and submodule entries alone describe the snapshot."""
        return [entry for entry in self.tree if entry.type != "tree"]


class GitRefObject(GitHubModel):
    sha: str
    type: str = "commit"


class GitRef(GitHubModel):
    ref: str
    object: GitRefObject


class GitReference(BaseModel):
    """A git reference."""

    name: str = Field(description="The name of the reference.")
    sha: str = Field(description="The SHA of the reference.")
    ref_type: str = Field(description="The type of the reference.")

    @classmethod
    def from_git_ref(cls, git_ref: GitRef) -> Self:
        return cls(name=git_ref.ref, sha=git_ref.object.sha, ref_type=git_ref.object.type)


class SummaryModel(BaseModel):
    """Summaries are handed to the dashboard, which speaks camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BranchSummary(SummaryModel):
    """A branch of a repository."""

    name: str = Field(description="The name of the branch.")
    protected: bool = Field(description="Whether the branch is protected.")
    sha: str = Field(description="The SHA of the commit the branch points at.")

    @classmethod
    def from_branch(cls, branch: Branch) -> Self:
        return cls(name=branch.name, protected=branch.protected, sha=branch.sha)


class CommitSummary(SummaryModel):
    """A recent commit of a repository."""

    sha: str = Field(description="The SHA of the commit.")
    message: str = Field(description="The commit message.")
    date: datetime | None = Field(default=None, description="The date the commit was authored.")
    author: str | None = Field(default=None, description="The name of the commit author.")

    @classmethod
    def from_commit(cls, commit: Commit) -> Self:
        author = commit.commit.author
        return cls(
            sha=commit.sha,
            message=commit.commit.message,
            date=author.date if author else None,
            author=author.name if author else None,
        )


class RepositoryDetails(SummaryModel):
    """The default branch, branches and most recent commits of a repository."""

    default_branch: str = Field(description="The default branch of the repository.")
    branches: list[BranchSummary] = Field(description="The branches of the repository.")
    last_commits: list[CommitSummary] = Field(description="The most recent commits, newest first.")

    @classmethod
    def from_responses(cls, repository: Repository, branches: list[Branch], commits: list[Commit]) -> Self:
        return cls(
            default_branch=repository.default_branch,
            branches=[BranchSummary.from_branch(branch=branch) for branch in branches],
            last_commits=[CommitSummary.from_commit(commit=commit) for commit in commits],
        )

    @property
    def latest_commit(self) -> CommitSummary | None:
        return self.last_commits[0] if self.last_commits else None
