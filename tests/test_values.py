"""Tests for the values library."""

from pathlib import Path
from typing import Any

import pytest

from cuckoo.chart import (
    LocalBundleDirectory,
    LocalBundleFile,
    LocalPackagedChart,
    RemoteChart,
)
from cuckoo.exceptions import InputError
from cuckoo.values import (
    assemble_values,
    merge_values_files,
    render_placeholders,
    set_value,
    substitute_placeholders,
)


@pytest.mark.parametrize(
    ("content", "expected"),
    [
        ("host: {{ .Name }}.example.com", "host: my-app.example.com"),
        ("ns: {{.Namespace}}", "ns: staging"),
        ("a: {{- .Name -}}-{{ .Namespace }}", "a:my-app-staging"),
        ("a: {{ .Name }} {{- .Namespace }}", "a: my-appstaging"),
        ("a: {{ .Name -}}\n  b", "a: my-appb"),
        ("a: {{ .Name }} \nb: {{.Namespace}}", "a: my-app \nb: staging"),
        ("a: {{ .Values.name }}", "a: {{ .Values.name }}"),
        ("plain: value", "plain: value"),
    ],
)
def test_render_placeholders(content: str, expected: str) -> None:
    """Test replacing release placeholders."""
    assert render_placeholders(content, "my-app", "staging") == expected


async def test_substitute_placeholders(tmp_path: Path) -> None:
    """Test value files are rewritten in place."""
    values = tmp_path / "values.yaml"
    values.write_text("ingress:\n  host: {{ .Name }}.{{ .Namespace }}.example.com\n")
    await substitute_placeholders(values, "my-app", "staging")
    assert values.read_text() == "ingress:\n  host: my-app.staging.example.com\n"


async def test_substitute_missing_file(tmp_path: Path) -> None:
    """Test substituting a file that does not exist."""
    with pytest.raises(InputError, match="Cannot read values file"):
        await substitute_placeholders(tmp_path / "missing.yaml", "my-app", "staging")


async def test_substitute_undecodable_file(tmp_path: Path) -> None:
    """Test substituting a file that is not valid UTF-8."""
    values = tmp_path / "values.yaml"
    values.write_bytes(b"key: \xff\xfe\n")
    with pytest.raises(InputError, match="Cannot read values file"):
        await substitute_placeholders(values, "my-app", "staging")


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("image.tag", {"image": {"name": "app", "tag": "1.0.0"}}),
        ("replicas", {"image": {"name": "app"}, "replicas": "1.0.0"}),
        ("image.labels.app\\.kubernetes\\.io/name", {
            "image": {"name": "app", "labels": {"app.kubernetes.io/name": "1.0.0"}}
        }),
    ],
)
def test_set_value(path: str, expected: dict[str, Any]) -> None:
    """Test setting values at dotted paths."""
    assert set_value({"image": {"name": "app"}}, path, "1.0.0") == expected


def test_set_value_replaces_scalar() -> None:
    """Test a scalar in the way of a path is replaced with a map."""
    assert set_value({"image": "app:latest"}, "image.tag", "1.0.0") == {
        "image": {"tag": "1.0.0"}
    }


async def test_merge_values_files(tmp_path: Path) -> None:
    """Test later value files take precedence."""
    first = tmp_path / "first.yaml"
    first.write_text("image:\n  name: app\n  pullPolicy: Always\nports: [80, 443]\n")
    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    second = tmp_path / "second.yaml"
    second.write_text("image:\n  pullPolicy: IfNotPresent\nports: [8080]\n")

    assert await merge_values_files([first, empty, second]) == {
        "image": {"name": "app", "pullPolicy": "IfNotPresent"},
        "ports": [8080],
    }


@pytest.mark.parametrize(
    ("content", "match"),
    [
        ("a: [unterminated", "Cannot load values file"),
        ("- a\n- b\n", "to contain a mapping"),
    ],
)
async def test_merge_invalid_values(tmp_path: Path, content: str, match: str) -> None:
    """Test value files that can not be merged."""
    values = tmp_path / "values.yaml"
    values.write_text(content)
    with pytest.raises(InputError, match=match):
        await merge_values_files([values])


@pytest.fixture(name="chart_dir")
def chart_dir_fixture(tmp_path: Path) -> Path:
    """Fixture for a local chart with default values."""
    chart_dir = tmp_path / "chart"
    (chart_dir / "templates").mkdir(parents=True)
    (chart_dir / "values.yaml").write_text("fullname: {{ .Name }}\nreplicas: 1\n")
    return chart_dir


@pytest.fixture(name="user_values")
def user_values_fixture(tmp_path: Path) -> Path:
    """Fixture for a user supplied value file."""
    values = tmp_path / "production.yaml"
    values.write_text(
        "image:\n  name: overridden\n  tag: overridden\n"
        "ingress:\n  host: {{ .Name }}.{{ .Namespace }}.example.com\n"
    )
    return values


async def test_assemble_local_chart(chart_dir: Path, user_values: Path) -> None:
    """Test the image is always injected for local charts."""
    values = await assemble_values(
        LocalPackagedChart(chart_dir),
        [user_values],
        "registry.example.com/group/app",
        "1.4.3",
        "my-app",
        "production",
    )
    assert values == {
        "image": {"name": "registry.example.com/group/app", "tag": "1.4.3"},
        "ingress": {"host": "my-app.production.example.com"},
    }
    assert (chart_dir / "values.yaml").read_text() == "fullname: my-app\nreplicas: 1\n"


async def test_assemble_local_chart_without_files(chart_dir: Path) -> None:
    """Test the image values without any user value file."""
    values = await assemble_values(
        LocalPackagedChart(chart_dir), [], "app", "", "my-app", "default"
    )
    assert values == {"image": {"name": "app", "tag": ""}}


@pytest.mark.parametrize(
    "source",
    [
        RemoteChart("https://charts.example.com", "nginx", "1.0.0"),
        LocalBundleDirectory(Path("manifests")),
        LocalBundleFile(Path("manifests/deployment.yaml")),
    ],
)
async def test_assemble_without_image(source: Any, user_values: Path) -> None:
    """Test no image keys are injected for other chart sources."""
    values = await assemble_values(
        source, [user_values], "app", "1.4.3", "my-app", "production"
    )
    assert values == {
        "image": {"name": "overridden", "tag": "overridden"},
        "ingress": {"host": "my-app.production.example.com"},
    }


async def test_assemble_unsupported_source() -> None:
    """Test an unknown chart source."""
    with pytest.raises(InputError, match="Unsupported chart source"):
        await assemble_values(
            "deploy/helm", [], "app", "1.4.3", "my-app", "default"  # type: ignore[arg-type]
        )


async def test_assemble_undecodable_values(chart_dir: Path, tmp_path: Path) -> None:
    """Test a user value file that is not valid UTF-8."""
    values = tmp_path / "binary.yaml"
    values.write_bytes(b"key: \xff\xfe\n")
    with pytest.raises(InputError, match="binary.yaml"):
        await assemble_values(
            LocalPackagedChart(chart_dir), [values], "app", "1.4.3", "my-app", "default"
        )


async def test_merge_undecodable_values(tmp_path: Path) -> None:
    """Test merging a value file that is not valid UTF-8."""
    values = tmp_path / "binary.yaml"
    values.write_bytes(b"key: \xff\xfe\n")
    with pytest.raises(InputError, match="Cannot load values file"):
        await merge_values_files([values])
