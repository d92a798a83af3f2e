import re

from pydantic import BaseModel, ConfigDict, Field

GITHUB_URL_PATTERN = re.compile(r"github\.com/(?P<owner>[^/\s?#]+)/(?P<repo>[^/\s?#]+)")

GIT_SUFFIX = ".git"


class InvalidUrlError(ValueError):
    """The URL does not point at a GitHub repository."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Invalid GitHub URL: {url}")


class GitHubRepositoryName(BaseModel):
    """The owner and name of a GitHub repository."""

    model_config = ConfigDict(frozen=True)

    owner: str = Field(description="The owner of the repository.")
    repo: str = Field(description="The name of the repository.")

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


def parse_github_url(url: str) -> GitHubRepositoryName:
    """Extract the owner and repository name from a GitHub URL, dropping a trailing `.git`."""

    if not (match := GITHUB_URL_PATTERN.search(url)):
        raise InvalidUrlError(url=url)

    repo = match.group("repo").removesuffix(GIT_SUFFIX)

    if not repo:
        raise InvalidUrlError(url=url)

    return GitHubRepositoryName(owner=match.group("owner"), repo=repo)
