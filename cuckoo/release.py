"""Library for reconciling a release of a chart against a cluster.

The reconciler resolves the chart for a release, assembles its values and then
either installs the release or upgrades it, depending on whether the cluster
already has a history for it:

```python
from cuckoo.chart import classify
from cuckoo.helm import Helm
from cuckoo.release import ReleaseReconciler

helm = Helm(tmp_dir)
reconciler = ReleaseReconciler("my-app", "default", charts=helm, cluster=helm)
source = classify("", "deploy/helm", "0.1.0")
await reconciler.reconcile(source, [Path("values.yaml")], image, tag)
```
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from enum import Enum
import logging
from pathlib import Path

from .chart import (
    BUNDLE_VERSION,
    ChartDescriptor,
    ChartSource,
    LocalBundleDirectory,
    LocalBundleFile,
    LocalPackagedChart,
    RemoteChart,
    bundle_chart_dir,
    write_chart_yaml,
)
from .context import trace_context
from .exceptions import (
    ApplyFailedError,
    LookupFailedError,
    ReleaseNotFoundError,
    SynthesisFailedError,
)
from .helm import DEFAULT_MAX_HISTORY, ApplyOptions, ChartEngine, ClusterApply
from .values import ValueSet, assemble_values

__all__ = [
    "ReleaseReconciler",
    "ReleaseState",
]

_LOGGER = logging.getLogger(__name__)


class ReleaseState(Enum):
    """Progress of a reconciliation."""

    UNKNOWN = "Unknown"
    INSTALLING = "Installing"
    UPGRADING = "Upgrading"
    DONE = "Done"
    FAILED = "Failed"


class ReleaseReconciler:
    """Installs or upgrades a single named release."""

    def __init__(
        self,
        name: str,
        namespace: str,
        charts: ChartEngine,
        cluster: ClusterApply,
        version: str = BUNDLE_VERSION,
        tmp_dir: Path | None = None,
    ) -> None:
        """Initialize ReleaseReconciler."""
        self._name = name
        self._version = version
        self._namespace = namespace
        self._charts = charts
        self._cluster = cluster
        self._tmp_dir = tmp_dir
        self.state = ReleaseState.UNKNOWN

    @property
    def name(self) -> str:
        """Name of the release."""
        return self._name

    async def _with_dependencies(self, chart_dir: Path) -> ChartDescriptor:
        """Load a chart, downloading missing dependencies first."""
        chart = await self._charts.load(chart_dir)
        if missing := await self._charts.check_dependencies(chart_dir, chart):
            _LOGGER.info("Downloading dependencies %s", ", ".join(missing))
            await self._charts.download_dependencies(chart_dir)
            chart = await self._charts.load(chart_dir)
        return chart

    @asynccontextmanager
    async def _resolve_chart(
        self, source: ChartSource, tag: str
    ) -> AsyncGenerator[Path, None]:
        """Context manager that yields the chart directory to apply.

        Temporary chart directories are removed when the context exits.
        """
        if isinstance(source, RemoteChart):
            chart_dir = await self._charts.locate(source)
            await self._charts.load(chart_dir)
            yield chart_dir
        elif isinstance(source, LocalPackagedChart):
            descriptor = ChartDescriptor.build(
                self._name, self._version, tag, source.path
            )
            write_chart_yaml(source.path, descriptor)
            await self._with_dependencies(source.path)
            yield source.path
        elif isinstance(source, (LocalBundleDirectory, LocalBundleFile)):
            with bundle_chart_dir(
                source, self._name, self._version, self._tmp_dir
            ) as chart_dir:
                await self._with_dependencies(chart_dir)
                yield chart_dir
        else:
            raise SynthesisFailedError(f"Unsupported chart source {source}")

    async def _exists(self) -> bool:
        """Return whether the cluster has a history for the release."""
        try:
            await self._cluster.history(self._name, self._namespace, max_entries=1)
        except ReleaseNotFoundError:
            return False
        except LookupFailedError as err:
            raise LookupFailedError(
                f"Unable to determine whether release {self._name} exists: {err}"
            ) from err
        return True

    async def _apply(
        self, source: ChartSource, chart_dir: Path, values: ValueSet, dry_run: bool
    ) -> None:
        options = ApplyOptions(namespace=self._namespace, dry_run=dry_run)
        if isinstance(source, RemoteChart):
            options.version = source.version
        if not await self._exists():
            self.state = ReleaseState.INSTALLING
            _LOGGER.info("Installing %s...", self._name)
            await self._cluster.install(self._name, chart_dir, values, options)
            return
        self.state = ReleaseState.UPGRADING
        options.max_history = DEFAULT_MAX_HISTORY
        _LOGGER.info("Upgrading %s...", self._name)
        await self._cluster.upgrade(self._name, chart_dir, values, options)

    async def reconcile(
        self,
        source: ChartSource,
        value_files: list[Path],
        image: str = "",
        tag: str = "",
        dry_run: bool = False,
    ) -> None:
        """Install or upgrade the release from the chart source.

        The image and tag are only used for local charts. A dry run resolves
        the chart and values the same way, only the apply is simulated by helm.
        """
        if self.state != ReleaseState.UNKNOWN:
            raise ApplyFailedError(
                self._name, "reconcile", f"reconciler already {self.state.value}"
            )
        try:
            with trace_context(f"release {self._name}"):
                async with self._resolve_chart(source, tag) as chart_dir:
                    with trace_context("values"):
                        values = await assemble_values(
                            source,
                            value_files,
                            image,
                            tag,
                            self._name,
                            self._namespace,
                        )
                    with trace_context("apply"):
                        await self._apply(source, chart_dir, values, dry_run)
        except Exception:
            self.state = ReleaseState.FAILED
            raise
        self.state = ReleaseState.DONE
