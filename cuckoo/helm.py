"""Library for running `helm` to load charts and apply releases to a cluster.

The reconciler only talks to helm through two narrow interfaces, `ChartEngine`
for locating charts and their dependencies, and `ClusterApply` for querying and
changing releases. `Helm` implements both by invoking the helm binary:

```python
from cuckoo.helm import Helm, ApplyOptions

helm = Helm(Path("/tmp/path/helm"))
try:
    await helm.history("my-app", "default", max_entries=1)
except ReleaseNotFoundError:
    await helm.install("my-app", chart_dir, values, ApplyOptions(namespace="default"))
```
"""

from abc import ABC, abstractmethod
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
import datetime
import json
import logging
from pathlib import Path
import tempfile
from typing import Any

from aiofiles.ospath import exists, isdir
import yaml

from . import command
from .chart import ChartDescriptor, RemoteChart, read_chart_yaml
from .exceptions import (
    ApplyFailedError,
    HelmException,
    InputError,
    LookupFailedError,
    ReleaseNotFoundError,
)

__all__ = [
    "ApplyOptions",
    "ChartEngine",
    "ClusterApply",
    "Helm",
]

_LOGGER = logging.getLogger(__name__)


HELM_BIN = "helm"

RELEASE_NOT_FOUND = "release: not found"
DEFAULT_TIMEOUT = datetime.timedelta(minutes=15)
DEFAULT_MAX_HISTORY = 10

# Extra time given to the helm process beyond its own --timeout
_COMMAND_GRACE = 60.0


def _duration(value: datetime.timedelta) -> str:
    """Format a duration the way helm accepts it e.g. `15m0s`."""
    minutes, seconds = divmod(int(value.total_seconds()), 60)
    return f"{minutes}m{seconds}s"


@dataclass
class ApplyOptions:
    """Options to use when installing or upgrading a release.

    These translate into command line flags for helm.
    """

    namespace: str
    """Namespace of the release."""

    dry_run: bool = False
    """Simulate the install or upgrade."""

    hooks: bool = True
    """Run chart hooks."""

    wait: bool = True
    """Wait until all resources are ready."""

    atomic: bool = True
    """Roll back all changes if the install or upgrade fails."""

    timeout: datetime.timedelta = field(default=DEFAULT_TIMEOUT)
    """Maximum time for the install or upgrade."""

    version: str | None = None
    """Version constraint of the chart."""

    max_history: int | None = None
    """Revisions retained per release, only used on upgrade."""

    @property
    def args(self) -> list[str]:
        """Helm install and upgrade CLI arguments built from the options."""
        args = ["--namespace", self.namespace, "--timeout", _duration(self.timeout)]
        if self.dry_run:
            args.append("--dry-run")
        if not self.hooks:
            args.append("--no-hooks")
        if self.wait:
            args.append("--wait")
        if self.atomic:
            args.append("--atomic")
        if self.version:
            args.extend(["--version", self.version])
        return args

    @property
    def command_timeout(self) -> float:
        """Seconds after which the helm process itself is stopped."""
        return self.timeout.total_seconds() + _COMMAND_GRACE


class ChartEngine(ABC):
    """Locates and loads charts and their dependencies."""

    @abstractmethod
    async def locate(self, chart: RemoteChart) -> Path:
        """Fetch a remote chart and return its local directory."""

    @abstractmethod
    async def load(self, chart_dir: Path) -> ChartDescriptor:
        """Load the chart metadata of a chart directory."""

    @abstractmethod
    async def check_dependencies(
        self, chart_dir: Path, chart: ChartDescriptor
    ) -> list[str]:
        """Return the names of dependencies that are not yet downloaded."""

    @abstractmethod
    async def download_dependencies(self, chart_dir: Path) -> None:
        """Download the dependencies of a chart into its `charts` directory."""


class ClusterApply(ABC):
    """Queries and changes releases in a cluster."""

    @abstractmethod
    async def history(
        self, name: str, namespace: str, max_entries: int
    ) -> list[dict[str, Any]]:
        """Return the most recent revisions, raising ReleaseNotFoundError if none."""

    @abstractmethod
    async def install(
        self, name: str, chart_dir: Path, values: dict[str, Any], options: ApplyOptions
    ) -> None:
        """Install a new release."""

    @abstractmethod
    async def upgrade(
        self, name: str, chart_dir: Path, values: dict[str, Any], options: ApplyOptions
    ) -> None:
        """Upgrade an existing release."""


class Helm(ChartEngine, ClusterApply):
    """Invokes the helm binary."""

    def __init__(self, tmp_dir: Path, helm_bin: str = HELM_BIN) -> None:
        """Initialize Helm."""
        self._tmp_dir = tmp_dir
        self._helm_bin = helm_bin

    async def locate(self, chart: RemoteChart) -> Path:
        """Pull and unpack a chart from a helm repository."""
        pull_dir = self._tmp_dir / "charts"
        args = [
            self._helm_bin,
            "pull",
            chart.chart,
            "--repo",
            chart.repo_url,
            "--untar",
            "--untardir",
            str(pull_dir),
        ]
        if chart.version:
            args.extend(["--version", chart.version])
        try:
            await command.run(command.Command(args, exc=HelmException))
        except HelmException as err:
            raise LookupFailedError(f"Unable to find chart: {err}") from err
        chart_dir = pull_dir / chart.chart.split("/")[-1]
        if not await isdir(chart_dir):
            raise LookupFailedError(
                f"Chart {chart.chart} was not unpacked to {chart_dir}"
            )
        return chart_dir

    async def load(self, chart_dir: Path) -> ChartDescriptor:
        """Load the Chart.yaml of a chart directory."""
        try:
            return read_chart_yaml(chart_dir)
        except InputError as err:
            raise LookupFailedError(f"Unable to load chart: {err}") from err

    async def check_dependencies(
        self, chart_dir: Path, chart: ChartDescriptor
    ) -> list[str]:
        """Return the dependencies missing from the `charts` directory."""
        charts_dir = chart_dir / "charts"
        missing = []
        for dependency in chart.dependencies:
            if not isinstance(dependency, dict) or not dependency.get("name"):
                missing.append(str(dependency))
                continue
            name = dependency["name"]
            version = dependency.get("version", "")
            if await isdir(charts_dir / name):
                continue
            if version and await exists(charts_dir / f"{name}-{version}.tgz"):
                continue
            missing.append(name)
        return missing

    async def download_dependencies(self, chart_dir: Path) -> None:
        """Run `helm dependency update` for the chart."""
        args = [self._helm_bin, "dependency", "update", str(chart_dir)]
        try:
            await command.run(command.Command(args, exc=HelmException))
        except HelmException as err:
            raise LookupFailedError(f"Failed to download dependencies: {err}") from err

    async def history(
        self, name: str, namespace: str, max_entries: int
    ) -> list[dict[str, Any]]:
        """Return the revision history of a release."""
        args = [
            self._helm_bin,
            "history",
            name,
            "--namespace",
            namespace,
            "--max",
            str(max_entries),
            "--output",
            "json",
        ]
        try:
            out = await command.run(command.Command(args, exc=HelmException))
        except HelmException as err:
            if RELEASE_NOT_FOUND in str(err):
                raise ReleaseNotFoundError(name) from err
            raise LookupFailedError(
                f"Unable to query history of release {name}: {err}"
            ) from err
        try:
            entries: list[dict[str, Any]] = json.loads(out) if out.strip() else []
        except ValueError as err:
            raise LookupFailedError(
                f"Unable to parse history of release {name}: {err}"
            ) from err
        return entries

    @contextmanager
    def _values_file(
        self, name: str, values: dict[str, Any]
    ) -> Generator[Path | None, None, None]:
        """Context manager that writes the values to a file private to one apply."""
        if not values:
            yield None
            return
        with tempfile.NamedTemporaryFile(
            mode="w",
            dir=self._tmp_dir,
            prefix=f"{name}-",
            suffix="-values.yaml",
        ) as values_file:
            values_file.write(yaml.dump(values, sort_keys=False))
            values_file.flush()
            yield Path(values_file.name)

    async def _apply(
        self,
        action: str,
        name: str,
        chart_dir: Path,
        values: dict[str, Any],
        options: ApplyOptions,
        extra_args: list[str],
    ) -> None:
        args = [self._helm_bin, action, name, str(chart_dir)]
        args.extend(options.args)
        args.extend(extra_args)
        with self._values_file(name, values) as values_path:
            if values_path:
                args.extend(["--values", str(values_path)])
            cmd = command.Command(
                args, exc=HelmException, timeout=options.command_timeout
            )
            try:
                out = await command.run(cmd)
            except HelmException as err:
                raise ApplyFailedError(name, action, str(err)) from err
        _LOGGER.debug("helm %s output:\n%s", action, out)

    async def install(
        self, name: str, chart_dir: Path, values: dict[str, Any], options: ApplyOptions
    ) -> None:
        """Run `helm install` for a new release."""
        await self._apply("install", name, chart_dir, values, options, [])

    async def upgrade(
        self, name: str, chart_dir: Path, values: dict[str, Any], options: ApplyOptions
    ) -> None:
        """Run `helm upgrade` for an existing release."""
        extra_args = []
        if options.max_history is not None:
            extra_args.extend(["--history-max", str(options.max_history)])
        await self._apply("upgrade", name, chart_dir, values, options, extra_args)
