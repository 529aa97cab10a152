"""Cuckoo tags action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from typing import cast

from cuckoo.environment import Environment
from cuckoo.tags import tag_lookup_from_env
from cuckoo.template import TemplateEngine

_LOGGER = logging.getLogger(__name__)


class TagsAction:
    """Cuckoo tags action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "tags",
                help="Print the expansion of tag templates",
                description=(
                    "Expands tag templates the same way as the build command "
                    "and prints one tag per line. See `cuckoo build --help` for "
                    "the available template values."
                ),
            ),
        )
        args.add_argument(
            "templates",
            type=str,
            nargs="*",
            help="The tag templates to expand e.g. `%%t-%%h`",
        )
        args.add_argument(
            "--image",
            type=str,
            default=None,
            help="An image path template to expand and print before the tags",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        env: Environment,
        templates: list[str],
        image: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        engine = TemplateEngine(env, tag_lookup_from_env(env))
        if image is not None:
            print(engine.expand_image_path(image))
        for tag in await engine.expand_tags(templates):
            print(tag)
