"""Tests for the release library."""

from pathlib import Path
from typing import Any

import pytest

from cuckoo.chart import (
    ChartDescriptor,
    LocalBundleDirectory,
    LocalPackagedChart,
    RemoteChart,
    read_chart_yaml,
)
from cuckoo.exceptions import (
    ApplyFailedError,
    LookupFailedError,
    ReleaseNotFoundError,
    SynthesisFailedError,
)
from cuckoo.helm import ApplyOptions, ChartEngine, ClusterApply
from cuckoo.release import ReleaseReconciler, ReleaseState


class FakeCharts(ChartEngine):
    """Chart engine backed by the local filesystem."""

    def __init__(self, remote_dir: Path) -> None:
        self.remote_dir = remote_dir
        self.loaded: list[ChartDescriptor] = []
        self.downloads: list[Path] = []

    async def locate(self, chart: RemoteChart) -> Path:
        chart_dir = self.remote_dir / chart.chart
        chart_dir.mkdir(parents=True, exist_ok=True)
        (chart_dir / "Chart.yaml").write_text(f"name: {chart.chart}\nversion: 1.0.0\n")
        return chart_dir

    async def load(self, chart_dir: Path) -> ChartDescriptor:
        chart = read_chart_yaml(chart_dir)
        self.loaded.append(chart)
        return chart

    async def check_dependencies(
        self, chart_dir: Path, chart: ChartDescriptor
    ) -> list[str]:
        return [
            dep["name"]
            for dep in chart.dependencies
            if not (chart_dir / "charts" / dep["name"]).is_dir()
        ]

    async def download_dependencies(self, chart_dir: Path) -> None:
        self.downloads.append(chart_dir)
        chart = read_chart_yaml(chart_dir)
        for dep in chart.dependencies:
            (chart_dir / "charts" / dep["name"]).mkdir(parents=True)


class FakeCluster(ClusterApply):
    """Cluster recording applied releases."""

    def __init__(
        self, releases: set[str] | None = None, history_error: bool = False
    ) -> None:
        self.releases = releases or set()
        self.history_error = history_error
        self.fail_apply = False
        self.applied: list[tuple[str, str, Path, dict[str, Any], ApplyOptions]] = []
        self.chart_files: list[list[str]] = []

    async def history(
        self, name: str, namespace: str, max_entries: int
    ) -> list[dict[str, Any]]:
        if self.history_error:
            raise LookupFailedError("Kubernetes cluster unreachable")
        if name not in self.releases:
            raise ReleaseNotFoundError(name)
        return [{"revision": 1}][:max_entries]

    async def _apply(
        self,
        action: str,
        name: str,
        chart_dir: Path,
        values: dict[str, Any],
        options: ApplyOptions,
    ) -> None:
        self.chart_files.append(
            sorted(str(p.relative_to(chart_dir)) for p in chart_dir.rglob("*"))
        )
        self.applied.append((action, name, chart_dir, values, options))
        if self.fail_apply:
            raise ApplyFailedError(name, action, "timed out")
        self.releases.add(name)

    async def install(
        self, name: str, chart_dir: Path, values: dict[str, Any], options: ApplyOptions
    ) -> None:
        await self._apply("install", name, chart_dir, values, options)

    async def upgrade(
        self, name: str, chart_dir: Path, values: dict[str, Any], options: ApplyOptions
    ) -> None:
        await self._apply("upgrade", name, chart_dir, values, options)


@pytest.fixture(name="charts")
def charts_fixture(tmp_path: Path) -> FakeCharts:
    return FakeCharts(tmp_path / "remote")


@pytest.fixture(name="cluster")
def cluster_fixture() -> FakeCluster:
    return FakeCluster()


@pytest.fixture(name="chart_dir")
def chart_dir_fixture(tmp_path: Path) -> Path:
    """Fixture for a local chart without Chart.yaml."""
    chart_dir = tmp_path / "chart"
    (chart_dir / "templates").mkdir(parents=True)
    (chart_dir / "templates" / "deployment.yaml").write_text("kind: Deployment\n")
    (chart_dir / "values.yaml").write_text("fullname: {{ .Name }}\n")
    (chart_dir / "dependencies.yaml").write_text(
        "- name: postgresql\n  version: 12.1.2\n"
    )
    return chart_dir


async def test_install_local_chart(
    charts: FakeCharts, cluster: FakeCluster, chart_dir: Path
) -> None:
    """Test a release without history is installed."""
    reconciler = ReleaseReconciler(
        "my-app", "staging", charts, cluster, version="0.1.0"
    )
    assert reconciler.state == ReleaseState.UNKNOWN

    await reconciler.reconcile(
        LocalPackagedChart(chart_dir), [], "registry.example.com/app", "1.4.3"
    )

    assert reconciler.state == ReleaseState.DONE
    assert len(cluster.applied) == 1
    action, name, applied_dir, values, options = cluster.applied[0]
    assert (action, name, applied_dir) == ("install", "my-app", chart_dir)
    assert values == {"image": {"name": "registry.example.com/app", "tag": "1.4.3"}}
    assert options.namespace == "staging"
    assert options.args == [
        "--namespace",
        "staging",
        "--timeout",
        "15m0s",
        "--wait",
        "--atomic",
    ]
    assert options.max_history is None

    chart = read_chart_yaml(chart_dir)
    assert chart.name == "my-app"
    assert chart.version == "0.1.0"
    assert chart.app_version == "1.4.3"
    assert charts.downloads == [chart_dir]
    assert (chart_dir / "values.yaml").read_text() == "fullname: my-app\n"


async def test_upgrade_existing_release(
    charts: FakeCharts, chart_dir: Path
) -> None:
    """Test a release with history is upgraded."""
    cluster = FakeCluster(releases={"my-app"})
    reconciler = ReleaseReconciler("my-app", "staging", charts, cluster)
    await reconciler.reconcile(LocalPackagedChart(chart_dir), [], "app", "1.4.3")

    action, _, _, _, options = cluster.applied[0]
    assert action == "upgrade"
    assert options.max_history == 10
    assert reconciler.state == ReleaseState.DONE


async def test_dependencies_present(
    charts: FakeCharts, cluster: FakeCluster, chart_dir: Path
) -> None:
    """Test dependencies are not downloaded again."""
    (chart_dir / "charts" / "postgresql").mkdir(parents=True)
    reconciler = ReleaseReconciler("my-app", "staging", charts, cluster)
    await reconciler.reconcile(LocalPackagedChart(chart_dir), [], "app", "1.4.3")
    assert charts.downloads == []


async def test_second_deploy_upgrades(
    charts: FakeCharts, cluster: FakeCluster, chart_dir: Path
) -> None:
    """Test deploying twice installs and then upgrades."""
    for _ in range(2):
        reconciler = ReleaseReconciler("my-app", "staging", charts, cluster)
        await reconciler.reconcile(LocalPackagedChart(chart_dir), [], "app", "1.4.3")
    assert [applied[0] for applied in cluster.applied] == ["install", "upgrade"]


async def test_remote_chart(
    charts: FakeCharts, cluster: FakeCluster, tmp_path: Path
) -> None:
    """Test a remote chart is applied with its version and without image values."""
    values = tmp_path / "values.yaml"
    values.write_text("ingress:\n  host: {{ .Name }}.example.com\n")
    reconciler = ReleaseReconciler("proxy", "ingress", charts, cluster)
    await reconciler.reconcile(
        RemoteChart("https://charts.example.com", "nginx", "1.0.0"),
        [values],
        "ignored",
        "ignored",
    )

    action, _, applied_dir, applied_values, options = cluster.applied[0]
    assert action == "install"
    assert applied_dir == tmp_path / "remote" / "nginx"
    assert applied_values == {"ingress": {"host": "proxy.example.com"}}
    assert options.version == "1.0.0"
    assert [chart.name for chart in charts.loaded] == ["nginx"]


async def test_bundle(
    charts: FakeCharts, cluster: FakeCluster, tmp_path: Path
) -> None:
    """Test a bundle is applied from a temporary chart that is removed after."""
    bundle = tmp_path / "manifests"
    bundle.mkdir()
    (bundle / "configmap.yaml").write_text("kind: ConfigMap\n")
    reconciler = ReleaseReconciler(
        "config", "staging", charts, cluster, tmp_dir=tmp_path
    )
    await reconciler.reconcile(LocalBundleDirectory(bundle), [], "app", "1.4.3")

    action, _, applied_dir, values, _ = cluster.applied[0]
    assert action == "install"
    assert values == {}
    assert "Chart.yaml" in cluster.chart_files[0]
    assert len([f for f in cluster.chart_files[0] if f.startswith("templates/")]) == 1
    assert charts.loaded[0].app_version == "0.0.0"
    assert not applied_dir.exists()
    assert not (bundle / "Chart.yaml").exists()


async def test_bundle_removed_on_failure(
    charts: FakeCharts, cluster: FakeCluster, tmp_path: Path
) -> None:
    """Test the temporary chart of a bundle is removed when the apply fails."""
    bundle = tmp_path / "manifests"
    bundle.mkdir()
    (bundle / "configmap.yaml").write_text("kind: ConfigMap\n")
    cluster.fail_apply = True
    reconciler = ReleaseReconciler(
        "config", "staging", charts, cluster, tmp_dir=tmp_path
    )
    with pytest.raises(ApplyFailedError, match="timed out"):
        await reconciler.reconcile(LocalBundleDirectory(bundle), [], "", "")

    assert reconciler.state == ReleaseState.FAILED
    assert not cluster.applied[0][2].exists()
    assert not list(tmp_path.glob("cuckoo-deploy-*"))


async def test_dry_run(
    charts: FakeCharts, cluster: FakeCluster, chart_dir: Path
) -> None:
    """Test the dry run flag is passed to the apply."""
    reconciler = ReleaseReconciler("my-app", "staging", charts, cluster)
    await reconciler.reconcile(
        LocalPackagedChart(chart_dir), [], "app", "1.4.3", dry_run=True
    )
    assert cluster.applied[0][4].dry_run


async def test_history_failure(charts: FakeCharts, chart_dir: Path) -> None:
    """Test a failing history query is not mistaken for a new release."""
    cluster = FakeCluster(history_error=True)
    reconciler = ReleaseReconciler("my-app", "staging", charts, cluster)
    message = "Unable to determine whether release my-app exists"
    with pytest.raises(LookupFailedError, match=message):
        await reconciler.reconcile(LocalPackagedChart(chart_dir), [], "app", "1.4.3")
    assert cluster.applied == []
    assert reconciler.state == ReleaseState.FAILED


async def test_reconcile_once(
    charts: FakeCharts, cluster: FakeCluster, chart_dir: Path
) -> None:
    """Test a reconciler can not be reused."""
    reconciler = ReleaseReconciler("my-app", "staging", charts, cluster)
    await reconciler.reconcile(LocalPackagedChart(chart_dir), [], "app", "1.4.3")
    with pytest.raises(ApplyFailedError, match="already Done"):
        await reconciler.reconcile(LocalPackagedChart(chart_dir), [], "app", "1.4.3")
    assert len(cluster.applied) == 1


async def test_invalid_dependencies(
    charts: FakeCharts, cluster: FakeCluster, chart_dir: Path
) -> None:
    """Test a dependency that is not a mapping fails the synthesis."""
    (chart_dir / "dependencies.yaml").write_text("- postgresql\n")
    reconciler = ReleaseReconciler("my-app", "staging", charts, cluster)
    with pytest.raises(SynthesisFailedError, match="mapping with a name"):
        await reconciler.reconcile(LocalPackagedChart(chart_dir), [], "app", "1.4.3")
    assert reconciler.state == ReleaseState.FAILED
    assert cluster.applied == []
    assert not (chart_dir / "Chart.yaml").exists()
