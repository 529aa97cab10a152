"""Cuckoo build action."""

from argparse import (
    ArgumentParser,
    BooleanOptionalAction,
    RawDescriptionHelpFormatter,
    _SubParsersAction as SubParsersAction,
)
import logging
import os
from typing import cast

from cuckoo.builder import Build, DockerBuilder, parse_build_args
from cuckoo.environment import Environment
from cuckoo.exceptions import ConfigurationMissingError
from cuckoo.tags import tag_lookup_from_env
from cuckoo.template import TemplateEngine

_LOGGER = logging.getLogger(__name__)

DESCRIPTION = """
The build command builds a Docker image with BuildKit and pushes it with every
given tag. Image paths and tags are templates:

* %r: In image paths, the registry host from DOCKER_HOST or CI_REGISTRY.
* %p: In image paths, the project path from CI_PROJECT_PATH.
* %t: The tag in CI_COMMIT_TAG or the most recent tag of the project. Must be
  a valid SemVer2 tag.
* %m: The major version of %t. Skipped when it is 0.
* %n: The major and minor version of %t.
* %r: In tags, a SemVer2 triple from the branch name in CI_COMMIT_REF_NAME.
* %h: The first seven characters of CI_COMMIT_SHA.
* %d: The current date as YYYY-MM-DD.
* %@: All of %t, %m, %n and latest.
"""


class BuildAction:
    """Cuckoo build action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "build",
                help="Build a Docker image and optionally push it with various tags",
                description=DESCRIPTION,
                formatter_class=RawDescriptionHelpFormatter,
            ),
        )
        args.add_argument(
            "--context",
            type=str,
            default=".",
            help="The context to use for building the image",
        )
        args.add_argument(
            "--dockerfile",
            "-f",
            type=str,
            default="Dockerfile",
            help="The Dockerfile used for building",
        )
        args.add_argument(
            "--arg",
            type=str,
            action="append",
            default=None,
            help="A KEY=VALUE build argument, may be given multiple times",
        )
        args.add_argument(
            "--image",
            type=str,
            default="unnamed",
            help="The path of the image to push to, ignored if no tag is set",
        )
        args.add_argument(
            "--tag",
            "-t",
            type=str,
            action="append",
            default=None,
            help="A tag template, no push is executed without tags",
        )
        args.add_argument(
            "--secret",
            type=str,
            action="append",
            default=None,
            help="Secret file to expose to the build (id=<name>,src=<file>)",
        )
        args.add_argument(
            "--ssh",
            default=False,
            action=BooleanOptionalAction,
            help="Forward the SSH agent of the host into the build",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        env: Environment,
        context: str,
        dockerfile: str,
        arg: list[str] | None,
        image: str,
        tag: list[str] | None,
        secret: list[str] | None,
        ssh: bool,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        if ssh and not os.environ.get("SSH_AUTH_SOCK"):
            raise ConfigurationMissingError(
                "Forwarding SSH requires a running agent, SSH_AUTH_SOCK is not set"
            )
        engine = TemplateEngine(env, tag_lookup_from_env(env))
        build = Build(
            context=context,
            dockerfile=dockerfile,
            image=engine.expand_image_path(image),
            tags=await engine.expand_tags(tag or []),
            args=parse_build_args(arg or []),
            secrets=secret or [],
            ssh=ssh,
        )
        _LOGGER.info("About to perform build...")
        _LOGGER.info(" - context: %s", build.context)
        _LOGGER.info(" - dockerfile: %s", build.dockerfile)
        _LOGGER.info(" - image: %s", build.image)
        _LOGGER.info(" - tags: [%s]", ", ".join(build.tags))
        _LOGGER.info(" - args: [%s]", ", ".join(arg or []))
        _LOGGER.info(" - ssh: %s", build.ssh)

        await DockerBuilder().build(build)
        for reference in build.references:
            print(reference)
