"""Command line tool for building images and deploying charts in CI pipelines."""

import argparse
import asyncio
import logging
import os
import pathlib
import sys
import traceback

from cuckoo.environment import Environment
from cuckoo.exceptions import CuckooException
from . import build, deploy, tags

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Efficient CI/CD for GitLab CI and Kubernetes.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )
    parser.add_argument(
        "--from-git",
        action="store_true",
        help="Fill a missing commit hash and branch from the local git checkout",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    build.BuildAction.register(subparsers)
    deploy.DeployAction.register(subparsers)
    tags.TagsAction.register(subparsers)
    return parser


def main() -> None:
    """Cuckoo command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args()

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    env = Environment.from_env(os.environ)
    if args.from_git:
        env = env.with_git_defaults(pathlib.Path.cwd())
    _LOGGER.debug("Running with %s", env)

    action = args.cls()
    try:
        asyncio.run(action.run(env=env, **vars(args)))
    except CuckooException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print(f"cuckoo error: {err}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
