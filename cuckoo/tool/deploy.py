"""Cuckoo deploy action."""

from argparse import (
    ArgumentParser,
    BooleanOptionalAction,
    RawDescriptionHelpFormatter,
    _SubParsersAction as SubParsersAction,
)
import logging
import pathlib
import tempfile
from typing import cast

from cuckoo.chart import classify, is_local_chart
from cuckoo.environment import Environment
from cuckoo.exceptions import ConfigurationMissingError
from cuckoo.helm import Helm
from cuckoo.release import ReleaseReconciler
from cuckoo.tags import tag_lookup_from_env
from cuckoo.template import TemplateEngine

_LOGGER = logging.getLogger(__name__)

DEFAULT_CHART = "./deploy/helm"
DEFAULT_NAMESPACE = "default"
DEFAULT_LOCAL_VERSION = "0.0.0"

DESCRIPTION = """
The deploy command deploys a Helm chart to a Kubernetes cluster. A chart may be
defined in multiple ways:

* Remote charts: both --repo and --chart are given.
* Local charts: only --chart is given and points to a directory with a
  `templates` directory. A Chart.yaml is generated, dependencies are read from
  a `dependencies.yaml` file.
* Local directories: --chart points to a directory of plain manifests which
  are deployed together as a bundle.
* Local files: --chart points to a single manifest file.

For local charts the --image and --tag templates are expanded and set as the
values `image.name` and `image.tag`. The tag also becomes the appVersion. For
all other charts they are ignored.
"""


class DeployAction:
    """Cuckoo deploy action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "deploy",
                help="Deploy a Helm chart to a Kubernetes cluster",
                description=DESCRIPTION,
                formatter_class=RawDescriptionHelpFormatter,
            ),
        )
        args.add_argument(
            "--repo",
            type=str,
            default="",
            help="The URL to a Helm repository when using a remote chart",
        )
        args.add_argument(
            "--chart",
            type=str,
            default=DEFAULT_CHART,
            help="The chart to deploy",
        )
        args.add_argument(
            "--version",
            type=str,
            default=None,
            help="The version of the chart to deploy",
        )
        args.add_argument(
            "--name",
            type=str,
            default=None,
            help="The name of the Helm release, defaults to CI_PROJECT_PATH_SLUG",
        )
        args.add_argument(
            "--values",
            "-f",
            type=pathlib.Path,
            action="append",
            default=None,
            help="A path to a value file, may be given multiple times",
        )
        args.add_argument(
            "--namespace",
            "-n",
            type=str,
            default=DEFAULT_NAMESPACE,
            help="The namespace for deployed resources",
        )
        args.add_argument(
            "--image",
            type=str,
            default="",
            help="The path for the image to deploy",
        )
        args.add_argument(
            "--tag",
            "-t",
            type=str,
            default="",
            help="The tag of the image to deploy, defines the appVersion of local charts",
        )
        args.add_argument(
            "--dry-run",
            default=False,
            action=BooleanOptionalAction,
            help="Simulate the deployment, useful for testing the chart",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        env: Environment,
        repo: str,
        chart: str,
        version: str | None,
        name: str | None,
        values: list[pathlib.Path] | None,
        namespace: str,
        image: str,
        tag: str,
        dry_run: bool,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        if not (release_name := name or env.project_slug):
            raise ConfigurationMissingError(
                "Release name must be given with --name or CI_PROJECT_PATH_SLUG"
            )
        source = classify(repo, chart, version or "")
        _LOGGER.debug("Deploying %s from %s", release_name, source)

        resolved_image = ""
        resolved_tag = ""
        if is_local_chart(source):
            engine = TemplateEngine(env, tag_lookup_from_env(env))
            resolved_image = engine.expand_image_path(image)
            resolved_tag = await engine.expand_tag(tag)

        with tempfile.TemporaryDirectory() as helm_dir:
            helm = Helm(pathlib.Path(helm_dir))
            reconciler = ReleaseReconciler(
                release_name,
                namespace,
                charts=helm,
                cluster=helm,
                version=version or DEFAULT_LOCAL_VERSION,
            )
            await reconciler.reconcile(
                source, values or [], resolved_image, resolved_tag, dry_run=dry_run
            )
        print(f"Deployed {release_name}")
