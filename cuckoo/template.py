"""Library for expanding tag and image path templates.

Templates contain short tokens that are replaced with values derived from the
CI environment:

- `%t`: The full SemVer2 tag, from CI_COMMIT_TAG or the latest project tag.
- `%m`: The major version of `%t`.
- `%n`: The major and minor version of `%t`, e.g. `1.4`.
- `%d`: The current date as `YYYY-MM-DD`.
- `%h`: The first seven characters of the commit hash.
- `%r`: The first SemVer2 triple found in the branch name.
- `%@`: Only valid as a whole template, expands to `%t`, `%m`, `%n` and
  `latest`. Expansions equal to `0` are dropped so that a `0.x.y` release does
  not also push a `0` tag.

Image paths support `%r` for the registry host and `%p` for the project path.
"""

from collections.abc import Callable
import datetime
import logging
import re

from .environment import Environment
from .exceptions import ConfigurationMissingError, FormatInvalidError, LookupFailedError
from .tags import TagLookup

__all__ = [
    "TemplateEngine",
]

_LOGGER = logging.getLogger(__name__)

SEMVER2 = re.compile(r"^([0-9]+)\.([0-9]+)\.([0-9]+)$")
RELAXED_SEMVER2 = re.compile(r"[0-9]+\.[0-9]+\.[0-9]+")

ALL_TAGS = "%@"
ALL_TAGS_MEMBERS = ["%t", "%m", "%n", "latest"]
SUPPRESSED_TAG = "0"
DATE_FORMAT = "%Y-%m-%d"

LOOKUP_REQUIREMENTS = (
    "CI_SERVER_HOST",
    "CI_PROJECT_ID",
    "CI_REGISTRY_USER",
    "CI_REGISTRY_PASSWORD",
)


class TemplateEngine:
    """Expands tag and image path templates for a CI environment."""

    def __init__(
        self,
        env: Environment,
        tag_lookup: TagLookup | None = None,
        today: Callable[[], datetime.date] | None = None,
    ) -> None:
        """Initialize TemplateEngine."""
        self._env = env
        self._tag_lookup = tag_lookup
        self._today = today or datetime.date.today

    async def _full_tag(self) -> str:
        """Return the SemVer2 tag of the release being built."""
        if self._env.commit_tag:
            full_tag = self._env.commit_tag
        else:
            if self._tag_lookup is None:
                raise ConfigurationMissingError(
                    "Using templates %t, %m or %n requires CI_COMMIT_TAG or a "
                    "connection to a GitLab repository. Specify "
                    f"{', '.join(LOOKUP_REQUIREMENTS)} to initiate such a connection"
                )
            try:
                full_tag = await self._tag_lookup.latest_tag()
            except LookupFailedError as err:
                raise LookupFailedError(
                    f"Cannot fetch latest tag from GitLab: {err}"
                ) from err
        if not SEMVER2.match(full_tag):
            raise FormatInvalidError(f"Tag '{full_tag}' does not follow SemVer2")
        return full_tag

    async def expand_tag(self, template: str) -> str:
        """Expand a single tag template.

        Raises an error naming the missing variable if a token can not be
        replaced. Tokens that are not present are never evaluated.
        """
        if any(token in template for token in ("%t", "%m", "%n")):
            full_tag = await self._full_tag()
            major, minor, _ = full_tag.split(".")
            template = (
                template.replace("%t", full_tag)
                .replace("%m", major)
                .replace("%n", f"{major}.{minor}")
            )

        if "%d" in template:
            template = template.replace("%d", self._today().strftime(DATE_FORMAT))

        if "%h" in template:
            if not self._env.commit_hash:
                raise ConfigurationMissingError(
                    "Cannot use template %h as CI_COMMIT_SHA is not set"
                )
            template = template.replace("%h", self._env.commit_hash[:7])

        if "%r" in template:
            if not self._env.branch_name:
                raise ConfigurationMissingError(
                    "Cannot use template %r as CI_COMMIT_REF_NAME is not set"
                )
            if not (match := RELAXED_SEMVER2.search(self._env.branch_name)):
                raise FormatInvalidError(
                    f"Cannot use template %r as branch '{self._env.branch_name}' "
                    "does not contain valid SemVer2"
                )
            template = template.replace("%r", match.group(0))

        return template

    async def expand_tags(self, templates: list[str]) -> list[str]:
        """Expand a list of tag templates in order.

        The first failing template aborts the expansion and nothing is returned.
        """
        result: list[str] = []
        for template in templates:
            members = ALL_TAGS_MEMBERS if template == ALL_TAGS else [template]
            for member in members:
                tag = await self.expand_tag(member)
                if tag == SUPPRESSED_TAG:
                    _LOGGER.debug("Skipping tag '%s' from template %s", tag, member)
                    continue
                result.append(tag)
        _LOGGER.debug("Expanded tags %s to %s", templates, result)
        return result

    def expand_image_path(self, template: str) -> str:
        """Expand the registry host and project path in an image path."""
        if "%r" in template:
            if not self._env.registry_host:
                raise ConfigurationMissingError(
                    "Cannot use template %r as CI_REGISTRY is not set"
                )
            template = template.replace("%r", self._env.registry_host)

        if "%p" in template:
            if not self._env.project_path:
                raise ConfigurationMissingError(
                    "Cannot use template %p as CI_PROJECT_PATH is not set"
                )
            template = template.replace("%p", self._env.project_path)

        return template
