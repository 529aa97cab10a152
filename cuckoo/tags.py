"""Library for looking up the most recent tag of a project.

Tag templates such as `%t` need the current release version. In tag pipelines
this is the commit tag, otherwise the latest tag of the project is fetched
from the GitLab API.
"""

from abc import ABC, abstractmethod
import logging
from typing import Any

import httpx

from .environment import Environment
from .exceptions import LookupFailedError

__all__ = [
    "TagLookup",
    "GitlabTagLookup",
    "tag_lookup_from_env",
]

_LOGGER = logging.getLogger(__name__)


class TagLookup(ABC):
    """A source for the most recently created tag of a repository."""

    @abstractmethod
    async def latest_tag(self) -> str:
        """Return the name of the most recent tag."""


class GitlabTagLookup(TagLookup):
    """Looks up tags of a GitLab project with the GitLab REST API."""

    def __init__(
        self,
        host: str,
        project_id: str,
        user: str,
        password: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize GitlabTagLookup."""
        self._transport = transport
        self._base_url = f"https://{host}"
        self._project_id = project_id
        self._user = user
        self._password = password

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        """Exchange the user credentials for an OAuth access token."""
        response = await client.post(
            "/oauth/token",
            data={
                "grant_type": "password",
                "username": self._user,
                "password": self._password,
            },
        )
        response.raise_for_status()
        token: str = response.json()["access_token"]
        return token

    async def latest_tag(self) -> str:
        """Return the name of the most recent tag of the project."""
        _LOGGER.debug("Fetching latest tag of project %s", self._project_id)
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, transport=self._transport
            ) as client:
                token = await self._access_token(client)
                response = await client.get(
                    f"/api/v4/projects/{self._project_id}/repository/tags",
                    params={"per_page": 1},
                    headers={"Authorization": f"Bearer {token}"},
                )
                response.raise_for_status()
                tags: list[dict[str, Any]] = response.json()
        except httpx.HTTPStatusError as err:
            raise LookupFailedError(
                f"GitLab returned status {err.response.status_code} for {err.request.url}"
            ) from err
        except (httpx.HTTPError, KeyError, ValueError) as err:
            raise LookupFailedError(f"Unable to query GitLab: {err}") from err
        if not tags:
            raise LookupFailedError("No tag found")
        name: str = tags[0]["name"]
        _LOGGER.debug("Latest tag is %s", name)
        return name


def tag_lookup_from_env(env: Environment) -> TagLookup | None:
    """Return a GitLab tag lookup if the environment carries its configuration."""
    if not (
        env.server_host
        and env.project_id
        and env.registry_user
        and env.registry_password
    ):
        return None
    return GitlabTagLookup(
        env.server_host, env.project_id, env.registry_user, env.registry_password
    )
