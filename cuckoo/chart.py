"""Library for classifying chart sources and synthesizing chart manifests.

A release may be deployed from one of four kinds of sources:

- A remote chart in a helm repository (`--repo` is given).
- A local chart, which is any directory with a `templates` directory. A
  `Chart.yaml` is not needed since it is generated, dependencies are read from
  a `dependencies.yaml` next to the templates.
- A local bundle directory of plain kubernetes manifests.
- A single local manifest file.

Bundles are turned into a chart on the fly:

```python
from cuckoo.chart import classify, bundle_chart_dir

source = classify("", "deploy/manifests", "0.0.0")
with bundle_chart_dir(source, "my-app") as chart_dir:
    chart = await helm.load(chart_dir)
```
"""

from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
import errno
import logging
import os
from pathlib import Path
import shutil
import stat
import tempfile
from typing import Any

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
import yaml

from .exceptions import InputError, SynthesisFailedError

__all__ = [
    "ChartSource",
    "RemoteChart",
    "LocalPackagedChart",
    "LocalBundleDirectory",
    "LocalBundleFile",
    "ChartDescriptor",
    "classify",
    "is_local_chart",
    "write_chart_yaml",
    "read_chart_yaml",
    "bundle_chart_dir",
]

_LOGGER = logging.getLogger(__name__)

CHART_FILE = "Chart.yaml"
VALUES_FILE = "values.yaml"
DEPENDENCIES_FILE = "dependencies.yaml"
TEMPLATES_DIR = "templates"
CHART_API_VERSION = "v2"
CHART_TYPE = "application"
BUNDLE_VERSION = "0.0.0"
BUNDLE_PREFIX = "cuckoo-deploy-"

# Separator replacing path separators when flattening bundle files
FLATTEN_SEPARATOR = "-"


@dataclass(frozen=True)
class RemoteChart:
    """A chart fetched from a helm repository."""

    repo_url: str
    """URL of the helm repository."""

    chart: str
    """Name of the chart in the repository."""

    version: str
    """Version of the chart to fetch."""


@dataclass(frozen=True)
class LocalPackagedChart:
    """A local directory with a `templates` directory."""

    path: Path


@dataclass(frozen=True)
class LocalBundleDirectory:
    """A local directory of plain manifests without a `templates` directory."""

    path: Path


@dataclass(frozen=True)
class LocalBundleFile:
    """A single local manifest file."""

    path: Path


ChartSource = RemoteChart | LocalPackagedChart | LocalBundleDirectory | LocalBundleFile


def classify(repo: str, chart: str | Path, version: str) -> ChartSource:
    """Determine how the chart for a release is sourced.

    Only the local filesystem is inspected, no network access is made.
    """
    if repo:
        return RemoteChart(repo_url=repo, chart=str(chart), version=version)
    path = Path(chart)
    if (path / TEMPLATES_DIR).is_dir():
        return LocalPackagedChart(path)
    try:
        mode = path.stat().st_mode
    except OSError as err:
        raise SynthesisFailedError(
            f"Cannot determine whether chart '{chart}' is file or directory: {err}"
        ) from err
    if stat.S_ISDIR(mode):
        return LocalBundleDirectory(path)
    return LocalBundleFile(path)


def is_local_chart(source: ChartSource) -> bool:
    """Return true if the source is a proper local chart."""
    return isinstance(source, LocalPackagedChart)


@dataclass(kw_only=True)
class ChartDescriptor(DataClassDictMixin):
    """The contents of a `Chart.yaml` file."""

    api_version: str = field(
        metadata=field_options(alias="apiVersion"), default=CHART_API_VERSION
    )
    """The chart API version."""

    type: str = CHART_TYPE
    """The type of the chart."""

    name: str
    """The name of the chart, equal to the release name for generated charts."""

    version: str
    """The version of the chart."""

    app_version: str = field(metadata=field_options(alias="appVersion"), default="")
    """The version of the deployed application."""

    dependencies: list[dict[str, Any]] = field(default_factory=list)
    """Dependency declarations, passed through to helm unchanged."""

    class Config(BaseConfig):
        serialize_by_alias = True

    @classmethod
    def build(
        cls, name: str, version: str, app_version: str, chart_dir: Path
    ) -> "ChartDescriptor":
        """Create a descriptor, reading dependencies from `chart_dir` if present."""
        return cls(
            name=name,
            version=version,
            app_version=app_version,
            dependencies=read_dependencies(chart_dir),
        )

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ChartDescriptor":
        """Parse a ChartDescriptor from a Chart.yaml document."""
        if not (name := doc.get("name")):
            raise InputError(f"Invalid chart missing name: {doc}")
        if not (version := doc.get("version")):
            raise InputError(f"Invalid chart {name} missing version: {doc}")
        return cls(
            api_version=str(doc.get("apiVersion", CHART_API_VERSION)),
            type=str(doc.get("type", CHART_TYPE)),
            name=str(name),
            version=str(version),
            app_version=str(doc.get("appVersion", "")),
            dependencies=list(doc.get("dependencies") or []),
        )

    def yaml(self) -> str:
        """Return the Chart.yaml document."""
        return yaml.dump(self.to_dict(), sort_keys=False)


def read_dependencies(chart_dir: Path) -> list[dict[str, Any]]:
    """Read dependency declarations from the sidecar file, if it exists."""
    dependency_file = chart_dir / DEPENDENCIES_FILE
    if not dependency_file.is_file():
        return []
    try:
        dependencies = yaml.safe_load(dependency_file.read_text())
    except (OSError, ValueError, yaml.YAMLError) as err:
        raise SynthesisFailedError(
            f"Cannot parse dependencies file {dependency_file}: {err}"
        ) from err
    if dependencies is None:
        return []
    if not isinstance(dependencies, list):
        raise SynthesisFailedError(
            f"Expected a list in dependencies file {dependency_file}, "
            f"found {type(dependencies).__name__}"
        )
    for dependency in dependencies:
        if not isinstance(dependency, dict) or not dependency.get("name"):
            raise SynthesisFailedError(
                f"Expected a mapping with a name for each dependency in "
                f"{dependency_file}, found {dependency!r}"
            )
    return dependencies


def write_chart_yaml(chart_dir: Path, descriptor: ChartDescriptor) -> Path:
    """Write the descriptor as `Chart.yaml` into the chart directory."""
    chart_file = chart_dir / CHART_FILE
    _LOGGER.debug(
        "Writing %s for chart %s (%s)", chart_file, descriptor.name, descriptor.version
    )
    try:
        chart_file.write_text(descriptor.yaml())
    except OSError as err:
        raise SynthesisFailedError(f"Cannot write {chart_file}: {err}") from err
    return chart_file


def read_chart_yaml(chart_dir: Path) -> ChartDescriptor:
    """Read the `Chart.yaml` of a chart directory."""
    chart_file = chart_dir / CHART_FILE
    try:
        doc = yaml.safe_load(chart_file.read_text())
    except (OSError, ValueError, yaml.YAMLError) as err:
        raise InputError(f"Unable to load chart {chart_file}: {err}") from err
    if not isinstance(doc, dict):
        raise InputError(f"Unable to load chart {chart_file}: expected a mapping")
    return ChartDescriptor.parse_doc(doc)


def flatten_name(path: Path) -> str:
    """Return a file name for the path that is unique within a bundle."""
    return str(path).replace(os.sep, FLATTEN_SEPARATOR).lstrip(FLATTEN_SEPARATOR)


def _bundle_files(source: LocalBundleDirectory | LocalBundleFile) -> list[Path]:
    """Return the files that make up a bundle."""
    if isinstance(source, LocalBundleFile):
        return [source.path]
    files: list[Path] = []
    for root, dirs, names in os.walk(source.path):
        dirs.sort()
        for name in sorted(names):
            path = Path(root) / name
            if path == source.path / DEPENDENCIES_FILE:
                continue
            files.append(path)
    return files


def _link(source: Path, target: Path) -> None:
    """Hard link a file, copying it instead when crossing filesystems."""
    try:
        os.link(source, target)
    except OSError as err:
        if err.errno != errno.EXDEV:
            raise
        shutil.copy2(source, target)


def bundle_dir(source: LocalBundleDirectory | LocalBundleFile) -> Path:
    """Return the directory holding the sidecar files of a bundle."""
    if isinstance(source, LocalBundleFile):
        return source.path.parent
    return source.path


@contextmanager
def bundle_chart_dir(
    source: LocalBundleDirectory | LocalBundleFile,
    name: str,
    version: str = BUNDLE_VERSION,
    tmp_dir: Path | None = None,
) -> Generator[Path, None, None]:
    """Context manager that builds a temporary chart from bundle files.

    Every file is linked into the `templates` directory under a flattened name
    and a `Chart.yaml` is generated, its appVersion is always `0.0.0`. The
    directory is removed on exit.
    """
    with tempfile.TemporaryDirectory(prefix=BUNDLE_PREFIX, dir=tmp_dir) as tmp:
        chart_dir = Path(tmp)
        templates_dir = chart_dir / TEMPLATES_DIR
        templates_dir.mkdir()
        try:
            files = _bundle_files(source)
        except OSError as err:
            raise SynthesisFailedError(
                f"Cannot read files of bundle '{source.path}': {err}"
            ) from err
        for file in files:
            target = templates_dir / flatten_name(file)
            try:
                _link(file, target)
            except OSError as err:
                raise SynthesisFailedError(
                    f"Cannot link to file '{file}': {err}"
                ) from err
        _LOGGER.debug("Linked %d files of bundle %s", len(files), source.path)
        descriptor = ChartDescriptor.build(
            name, version, BUNDLE_VERSION, bundle_dir(source)
        )
        write_chart_yaml(chart_dir, descriptor)
        yield chart_dir
