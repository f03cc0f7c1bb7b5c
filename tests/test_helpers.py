"""
Unit tests for helper utilities.
"""

import json

import pytest

from mailbox_migration import utils
from mailbox_migration.utils.helpers import (
    atomic_write_text,
    atomic_writer,
    default_batch_name,
    generate_run_id,
    load_config_file,
    merge_dicts,
)


class TestIdentifiers:
    """Test cases for run and batch identifiers."""

    def test_run_ids_are_unique(self):
        first, second = generate_run_id(), generate_run_id()
        assert first.startswith("run_")
        assert first != second

    def test_default_batch_name_derives_from_run_id(self):
        assert default_batch_name("run_20240101_120000_abcd1234") == "MigrationBatch_20240101_120000_abcd1234"


class TestConfigFiles:
    """Test cases for configuration file helpers."""

    def test_load_yaml_and_json(self, tmp_path):
        yaml_file = tmp_path / "run.yml"
        yaml_file.write_text("batch:\n  name: Wave1\n", encoding="utf-8")
        json_file = tmp_path / "run.json"
        json_file.write_text(json.dumps({"force": True}), encoding="utf-8")

        assert load_config_file(yaml_file) == {"batch": {"name": "Wave1"}}
        assert load_config_file(json_file) == {"force": True}

    def test_missing_and_unsupported_files(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config_file(tmp_path / "missing.yaml")

        ini_file = tmp_path / "run.ini"
        ini_file.write_text("[batch]\n", encoding="utf-8")
        with pytest.raises(ValueError, match="Unsupported"):
            load_config_file(ini_file)

    def test_merge_dicts_is_recursive(self):
        base = {"batch": {"name": "Wave1", "strategy": "bulk"}, "force": False}

        merged = merge_dicts(base, {"batch": {"name": "Wave2"}, "force": True})

        assert merged == {"batch": {"name": "Wave2", "strategy": "bulk"}, "force": True}
        assert base["batch"]["name"] == "Wave1"


class TestAtomicWrites:
    """Test cases for atomic file replacement."""

    def test_write_creates_parent_directories(self, tmp_path):
        target = tmp_path / "nested" / "state.json"

        atomic_write_text(target, "{}")

        assert target.read_text(encoding="utf-8") == "{}"
        assert list(target.parent.iterdir()) == [target]

    def test_failed_write_keeps_previous_content(self, tmp_path):
        target = atomic_write_text(tmp_path / "state.json", "old")

        with pytest.raises(RuntimeError):
            with atomic_writer(target) as f:
                f.write("partial")
                raise RuntimeError("interrupted")

        assert target.read_text(encoding="utf-8") == "old"
        assert list(tmp_path.iterdir()) == [target]


def test_utils_exports_only_used_helpers():
    assert sorted(utils.__all__) == sorted([
        "generate_run_id",
        "default_batch_name",
        "load_config_file",
        "merge_dicts",
        "atomic_write_text",
        "atomic_writer",
        "setup_logging",
        "get_logger",
        "RunLogger",
    ])
