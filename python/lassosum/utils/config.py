"""Utility functions for reading job configuration files and environment settings."""
import os
from pathlib import Path
from typing import Dict, TypeVar, Union

import msgspec
from ruamel.yaml import YAML

# A ConfigDict has string keys and values of type ConfigDictValue, or
# a list of ConfigDictValues.  A ConfigDictValue is a str, int, float, bool,
# or (nested) ConfigDict.

ConfigDict = Dict[str, Union["ConfigDictValue", list["ConfigDictValue"]]]
ConfigDictValue = Union[str, int, float, bool, "ConfigDict"]

T = TypeVar("T")

DEFAULT_MARKER_CHUNK_SIZE = 2000


def get_marker_chunk_size() -> int:
    """Number of markers read from a genotype panel at a time when scoring."""
    chunk_size = int(os.getenv("LASSOSUM_MARKER_CHUNK_SIZE", DEFAULT_MARKER_CHUNK_SIZE))
    if chunk_size <= 0:
        raise ValueError(f"LASSOSUM_MARKER_CHUNK_SIZE must be positive, got {chunk_size}")
    return chunk_size


def read_yaml(config_path: str | Path) -> ConfigDict:
    """Read a YAML file and return the parsed mapping."""
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file {config_path} not found.")

    with config_path.open(encoding="utf-8") as config_file:
        config_dict = YAML(typ="safe").load(config_file)

    if not isinstance(config_dict, dict):
        raise ValueError(f"Expected a mapping at the top level of {config_path}, got {type(config_dict)}")

    return config_dict


def load_job_config(config_path: str | Path, config_type: type[T]) -> T:
    """Read a YAML file and validate it against a msgspec Struct type."""
    config_dict = read_yaml(config_path)
    try:
        return msgspec.convert(config_dict, type=config_type)
    except msgspec.ValidationError as e:
        raise ValueError(f"Invalid configuration in {config_path}: {e}") from e
