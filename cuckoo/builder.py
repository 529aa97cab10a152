"""Library for building and pushing container images with docker.

The tags passed to a build must already be expanded, see `cuckoo.template`.
"""

from dataclasses import dataclass, field
import logging

from . import command
from .exceptions import DockerException, InputError

__all__ = [
    "Build",
    "DockerBuilder",
    "parse_build_args",
]

_LOGGER = logging.getLogger(__name__)

DOCKER_BIN = "docker"


def parse_build_args(args: list[str]) -> dict[str, str]:
    """Parse `KEY=VALUE` build arguments."""
    result: dict[str, str] = {}
    for arg in args:
        if "=" not in arg:
            raise InputError(f"Expected KEY=VALUE format for build arg but got '{arg}'")
        key, value = arg.split("=", 1)
        result[key] = value
    return result


@dataclass
class Build:
    """Describes an image build."""

    context: str = "."
    """The build context directory."""

    dockerfile: str = "Dockerfile"
    """The Dockerfile used for building."""

    image: str = "unnamed"
    """The image path to push to."""

    tags: list[str] = field(default_factory=list)
    """Resolved tags, nothing is pushed without tags."""

    args: dict[str, str] = field(default_factory=dict)
    """Build arguments."""

    secrets: list[str] = field(default_factory=list)
    """Secrets to expose to the build as `id=<name>,src=<file>`."""

    ssh: bool = False
    """Forward the default SSH agent into the build."""

    @property
    def references(self) -> list[str]:
        """Image references for every tag."""
        return [f"{self.image}:{tag}" for tag in self.tags]

    @property
    def build_args(self) -> list[str]:
        """Docker build CLI arguments."""
        args = ["build", "--file", self.dockerfile]
        for key, value in self.args.items():
            args.extend(["--build-arg", f"{key}={value}"])
        for secret in self.secrets:
            args.extend(["--secret", secret])
        if self.ssh:
            args.extend(["--ssh", "default"])
        for reference in self.references:
            args.extend(["--tag", reference])
        args.append(self.context)
        return args


class DockerBuilder:
    """Builds images with the docker CLI using BuildKit."""

    def __init__(self, docker_bin: str = DOCKER_BIN) -> None:
        """Initialize DockerBuilder."""
        self._docker_bin = docker_bin
        self._env = {"DOCKER_BUILDKIT": "1"}

    async def build(self, build: Build) -> None:
        """Build the image and push every tag."""
        _LOGGER.info("Building %s from %s", build.image, build.context)
        await command.run(
            command.Command(
                [self._docker_bin] + build.build_args,
                exc=DockerException,
                env=self._env,
            )
        )
        for reference in build.references:
            _LOGGER.info("Pushing %s", reference)
            await command.run(
                command.Command(
                    [self._docker_bin, "push", reference],
                    exc=DockerException,
                    env=self._env,
                )
            )
