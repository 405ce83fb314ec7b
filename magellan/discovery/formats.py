"""
Magellan - Data Formats.

JSON/YAML marshalling shared by the CLI, the collector output writer
and the BMC ID map loader.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Any, Union

import yaml


class DataFormat(str, Enum):
    """Supported output/input formats."""
    LIST = "list"
    JSON = "json"
    YAML = "yaml"


JSON_EXTENSIONS = {".json"}
YAML_EXTENSIONS = {".yaml", ".yml"}


def data_format_from_string(value: str, default: DataFormat = DataFormat.JSON) -> DataFormat:
    """
    Parse a format name ('json', 'YAML', ...).

    Raises:
        ValueError: Unknown format name.
    """
    if not value:
        return default
    try:
        return DataFormat(value.strip().lower())
    except ValueError as e:
        choices = ", ".join(f.value for f in DataFormat)
        raise ValueError(f"unknown data format '{value}' (expected one of: {choices})") from e


def data_format_from_file_ext(path: Union[str, Path], default: Union[str, DataFormat] = DataFormat.JSON) -> DataFormat:
    """Infer the format from a file extension, falling back to default."""
    suffix = Path(str(path)).suffix.lower()
    if suffix in JSON_EXTENSIONS:
        return DataFormat.JSON
    if suffix in YAML_EXTENSIONS:
        return DataFormat.YAML
    if isinstance(default, DataFormat):
        return default
    return data_format_from_string(default)


def file_ext(fmt: DataFormat) -> str:
    return "yaml" if fmt == DataFormat.YAML else "json"


def marshal(data: Any, fmt: DataFormat) -> str:
    """
    Serialize to JSON (indent 4) or YAML.

    Raises:
        ValueError: Format is not serializable (list).
    """
    if fmt == DataFormat.JSON:
        return json.dumps(data, indent=4, default=str)
    if fmt == DataFormat.YAML:
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    raise ValueError(f"cannot marshal data as '{fmt.value}'")


def unmarshal(text: Union[str, bytes], fmt: DataFormat) -> Any:
    """
    Parse JSON or YAML.

    Raises:
        ValueError: Unparsable input or unsupported format.
    """
    if fmt == DataFormat.JSON:
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"invalid JSON: {e}") from e
    if fmt == DataFormat.YAML:
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ValueError(f"invalid YAML: {e}") from e
    raise ValueError(f"cannot unmarshal data as '{fmt.value}'")
