"""Snapshot of the CI metadata a pipeline job runs with.

The environment is read once at process start and then passed explicitly to
the components that need it:

```python
from cuckoo.environment import Environment
from cuckoo.template import TemplateEngine

env = Environment.from_env(os.environ)
engine = TemplateEngine(env)
tags = await engine.expand_tags(["%@"])
```
"""

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
import logging
from pathlib import Path

import git

__all__ = [
    "Environment",
]

_LOGGER = logging.getLogger(__name__)

# Docker variables are preferred over the GitLab registry variables when set.
DOCKER_OVERRIDES = {
    "CI_REGISTRY": "DOCKER_HOST",
    "CI_REGISTRY_USER": "DOCKER_USER",
    "CI_REGISTRY_PASSWORD": "DOCKER_PASSWORD",
}


@dataclass(kw_only=True, frozen=True)
class Environment:
    """CI metadata for the current commit, project and registry."""

    commit_hash: str = ""
    """The full commit SHA (CI_COMMIT_SHA)."""

    commit_tag: str = ""
    """The tag being built, only set for tag pipelines (CI_COMMIT_TAG)."""

    branch_name: str = ""
    """The branch or tag name of the commit (CI_COMMIT_REF_NAME)."""

    commit_slug: str = ""
    """The lowercased, shortened ref name (CI_COMMIT_REF_SLUG)."""

    project_id: str = ""
    """The numeric id of the GitLab project (CI_PROJECT_ID)."""

    project_path: str = ""
    """The namespaced project path e.g. group/app (CI_PROJECT_PATH)."""

    project_slug: str = ""
    """The project path usable in URLs and release names (CI_PROJECT_PATH_SLUG)."""

    project_dir: str = ""
    """The checkout directory of the job (CI_PROJECT_DIR)."""

    registry_host: str = ""
    """The container registry host (CI_REGISTRY or DOCKER_HOST)."""

    registry_image: str = ""
    """The base image path of the project (CI_REGISTRY_IMAGE)."""

    registry_user: str = ""
    """User for the registry and GitLab API (CI_REGISTRY_USER or DOCKER_USER)."""

    registry_password: str = field(default="", repr=False)
    """Password for the registry and GitLab API."""

    server_host: str = ""
    """Host of the GitLab instance (CI_SERVER_HOST)."""

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> "Environment":
        """Read the environment from GitLab CI variables."""

        def get(key: str) -> str:
            if (override := DOCKER_OVERRIDES.get(key)) and environ.get(override):
                return environ[override]
            return environ.get(key, "")

        return cls(
            commit_hash=get("CI_COMMIT_SHA"),
            commit_tag=get("CI_COMMIT_TAG"),
            branch_name=get("CI_COMMIT_REF_NAME"),
            commit_slug=get("CI_COMMIT_REF_SLUG"),
            project_id=get("CI_PROJECT_ID"),
            project_path=get("CI_PROJECT_PATH"),
            project_slug=get("CI_PROJECT_PATH_SLUG"),
            project_dir=get("CI_PROJECT_DIR"),
            registry_host=get("CI_REGISTRY"),
            registry_image=get("CI_REGISTRY_IMAGE"),
            registry_user=get("CI_REGISTRY_USER"),
            registry_password=get("CI_REGISTRY_PASSWORD"),
            server_host=get("CI_SERVER_HOST"),
        )

    def with_git_defaults(self, path: Path) -> "Environment":
        """Return a copy with empty commit fields filled from a local checkout.

        This allows running the tool on a developer machine where the CI
        variables are not set.
        """
        if self.commit_hash and self.branch_name:
            return self
        try:
            repo = git.Repo(str(path), search_parent_directories=True)
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError):
            _LOGGER.debug("No git repository found at %s", path)
            return self
        commit_hash = self.commit_hash or repo.head.commit.hexsha
        branch_name = self.branch_name
        if not branch_name and not repo.head.is_detached:
            branch_name = repo.active_branch.name
        _LOGGER.debug("Using git commit %s on branch '%s'", commit_hash, branch_name)
        return replace(self, commit_hash=commit_hash, branch_name=branch_name)

