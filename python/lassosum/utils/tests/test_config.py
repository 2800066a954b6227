import pytest
from msgspec import Struct

from lassosum.utils.config import (
    DEFAULT_MARKER_CHUNK_SIZE,
    get_marker_chunk_size,
    load_job_config,
    read_yaml,
)


class ExampleConfig(Struct, frozen=True, forbid_unknown_fields=True, rename="camel"):
    input_path: str
    threshold: float = 0.5


def test_read_yaml(tmp_path):
    config_path = tmp_path / "config.yml"
    config_path.write_text("inputPath: /data/in.tsv\nnested:\n  values: [1, 2]\n")

    assert read_yaml(config_path) == {"inputPath": "/data/in.tsv", "nested": {"values": [1, 2]}}


def test_read_yaml_errors(tmp_path):
    with pytest.raises(FileNotFoundError, match="not found"):
        read_yaml(tmp_path / "missing.yml")

    config_path = tmp_path / "list.yml"
    config_path.write_text("- a\n- b\n")
    with pytest.raises(ValueError, match="Expected a mapping"):
        read_yaml(config_path)


def test_load_job_config(tmp_path):
    config_path = tmp_path / "config.yml"
    config_path.write_text("inputPath: /data/in.tsv\nthreshold: 0.1\n")

    assert load_job_config(config_path, ExampleConfig) == ExampleConfig(input_path="/data/in.tsv", threshold=0.1)


def test_load_job_config_invalid(tmp_path):
    config_path = tmp_path / "config.yml"
    config_path.write_text("inputPath: /data/in.tsv\nunexpected: true\n")

    with pytest.raises(ValueError, match="Invalid configuration"):
        load_job_config(config_path, ExampleConfig)


def test_marker_chunk_size(monkeypatch):
    monkeypatch.delenv("LASSOSUM_MARKER_CHUNK_SIZE", raising=False)
    assert get_marker_chunk_size() == DEFAULT_MARKER_CHUNK_SIZE

    monkeypatch.setenv("LASSOSUM_MARKER_CHUNK_SIZE", "128")
    assert get_marker_chunk_size() == 128

    monkeypatch.setenv("LASSOSUM_MARKER_CHUNK_SIZE", "0")
    with pytest.raises(ValueError, match="must be positive"):
        get_marker_chunk_size()
