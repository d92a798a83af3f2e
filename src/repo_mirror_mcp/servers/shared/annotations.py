from typing import Annotated

from pydantic import Field

from repo_mirror_mcp.models.records import PushType

REPOSITORY_URL = Annotated[str, Field(description="The GitHub URL of the repository, for example https://github.com/owner/repo.git.")]
OPTIONAL_REPOSITORY_ID = Annotated[str | None, Field(description="Only include operations involving this registered repository.")]

SOURCE_REPO_ID = Annotated[str, Field(description="The id of the registered repository to take the latest commit from.")]
TARGET_REPO_ID = Annotated[str, Field(description="The id of the registered repository to push the commit onto.")]

PUSH_TYPE = Annotated[
    PushType,
    Field(description="How to update the target branch: `regular` only fast forwards, `force` and `force-with-lease` overwrite it."),
]
EXPECTED_SHA = Annotated[
    str | None,
    Field(description="For `force-with-lease`, the commit the target branch must still point at for the push to go ahead."),
]

DEFAULT_BRANCH = Annotated[
    str | None, Field(description="The branch pushes are mirrored onto. If not provided, the repository's default branch is used.")
]

HISTORY_LIMIT = Annotated[int, Field(description="The maximum number of operations to return.")]
