"""Module for assembling the values of a release.

Value files may reference the release with `{{ .Name }}` and `{{ .Namespace }}`
placeholders. These are substituted in place before the files are merged, so
callers must treat the given value files as modified.
"""

import logging
from pathlib import Path
import re
from typing import Any

import aiofiles
from aiofiles.ospath import exists
import yaml

from .chart import (
    VALUES_FILE,
    ChartSource,
    LocalBundleDirectory,
    LocalBundleFile,
    LocalPackagedChart,
    RemoteChart,
)
from .exceptions import InputError

__all__ = [
    "ValueSet",
    "assemble_values",
    "merge_values_files",
    "substitute_placeholders",
]

_LOGGER = logging.getLogger(__name__)

ValueSet = dict[str, Any]

IMAGE_NAME_KEY = "image.name"
IMAGE_TAG_KEY = "image.tag"

# A leading or trailing "-" trims the adjacent whitespace, as in Go templates
_PLACEHOLDER = re.compile(
    r"(?P<before>\s*(?=\{\{-))?\{\{-?\s*\.(?P<field>Name|Namespace)\s*-?\}\}"
    r"(?P<after>(?<=-\}\})\s*)?"
)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge two dictionaries, similar to how Helm merges values. Lists are replaced entirely (Helm behavior)."""
    result = base.copy()
    for key, override_value in override.items():
        base_value = result.get(key)
        if (
            base_value is not None
            and isinstance(base_value, dict)
            and isinstance(override_value, dict)
        ):
            result[key] = _deep_merge(base_value, override_value)
        else:
            result[key] = override_value
    return result


def set_value(values: dict[str, Any], path: str, value: Any) -> dict[str, Any]:
    """Set a value at a dotted key path, creating intermediate maps."""
    raw_parts = re.split(r"(?<!\\)\.", path)
    parts = [re.sub(r"\\(.)", r"\1", raw_part) for raw_part in raw_parts]

    inner_values = values
    for part in parts[:-1]:
        if not isinstance(inner_values.get(part), dict):
            inner_values[part] = {}
        inner_values = inner_values[part]

    inner_values[parts[-1]] = value
    return values


def render_placeholders(content: str, name: str, namespace: str) -> str:
    """Replace the release name and namespace placeholders in the content."""
    replacements = {"Name": name, "Namespace": namespace}
    return _PLACEHOLDER.sub(lambda match: replacements[match.group("field")], content)


async def substitute_placeholders(path: Path, name: str, namespace: str) -> None:
    """Replace the release placeholders of a value file in place."""
    try:
        async with aiofiles.open(path) as values_file:
            content = await values_file.read()
        rendered = render_placeholders(content, name, namespace)
        if rendered == content:
            return
        _LOGGER.debug("Substituting release placeholders in %s", path)
        async with aiofiles.open(path, mode="w") as values_file:
            await values_file.write(rendered)
    except (OSError, ValueError) as err:
        raise InputError(f"Cannot read values file {path}: {err}") from err


async def merge_values_files(files: list[Path]) -> ValueSet:
    """Merge value files in order, later files taking precedence."""
    values: ValueSet = {}
    for file in files:
        try:
            async with aiofiles.open(file) as values_file:
                content = await values_file.read()
            doc = yaml.safe_load(content)
        except (OSError, ValueError, yaml.YAMLError) as err:
            raise InputError(f"Cannot load values file {file}: {err}") from err
        # Handle empty YAML file case
        if doc is None:
            continue
        if not isinstance(doc, dict):
            raise InputError(
                f"Expected values file {file} to contain a mapping, found {type(doc).__name__}"
            )
        values = _deep_merge(values, doc)
    return values


async def assemble_values(
    source: ChartSource,
    value_files: list[Path],
    image: str,
    tag: str,
    name: str,
    namespace: str,
) -> ValueSet:
    """Return the values for a release of the chart source.

    The default `values.yaml` of a local chart is substituted in place and left
    for helm to load as chart defaults. User value files are substituted and
    merged in order. Local charts additionally get `image.name` and `image.tag`
    set to the resolved image and tag.
    """
    if isinstance(source, LocalPackagedChart):
        defaults = source.path / VALUES_FILE
        if await exists(defaults):
            await substitute_placeholders(defaults, name, namespace)
    elif not isinstance(source, (RemoteChart, LocalBundleDirectory, LocalBundleFile)):
        raise InputError(f"Unsupported chart source {source}")

    for file in value_files:
        await substitute_placeholders(file, name, namespace)
    values = await merge_values_files(value_files)

    if isinstance(source, LocalPackagedChart):
        set_value(values, IMAGE_NAME_KEY, image)
        set_value(values, IMAGE_TAG_KEY, tag)
    return values
