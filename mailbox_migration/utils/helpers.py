"""
Helper utilities for the Mailbox Migration Assistant.

This module contains small functions used throughout the application for
identifiers, formatting, configuration files and atomic file writes.
"""

import json
import os
import tempfile
import uuid
from contextlib import contextmanager
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, Iterator, TextIO, Union

import yaml


def generate_run_id() -> str:
    """Generate a unique run ID."""
    timestamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S")
    unique_id = str(uuid.uuid4())[:8]
    return f"run_{timestamp}_{unique_id}"


def default_batch_name(run_id: str) -> str:
    """Batch name used when the operator did not supply one."""
    return f"MigrationBatch_{run_id.removeprefix('run_')}"


def load_config_file(file_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.

    Args:
        file_path: Path to configuration file

    Returns:
        Configuration dictionary
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    with open(file_path, 'r', encoding='utf-8') as f:
        if file_path.suffix.lower() in ['.yaml', '.yml']:
            return yaml.safe_load(f)
        elif file_path.suffix.lower() == '.json':
            return json.load(f)
        else:
            raise ValueError(f"Unsupported configuration file format: {file_path.suffix}")


def merge_dicts(dict1: Dict[str, Any], dict2: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge two dictionaries.

    Args:
        dict1: Base dictionary
        dict2: Dictionary to merge (takes precedence)

    Returns:
        Merged dictionary
    """
    result = dict1.copy()

    for key, value in dict2.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_dicts(result[key], value)
        else:
            result[key] = value

    return result


@contextmanager
def atomic_writer(file_path: Union[str, Path]) -> Iterator[TextIO]:
    """
    Open a text stream that replaces ``file_path`` in one step on success.

    Content goes to a temporary file in the same directory, which is
    flushed, synced and moved over the target with ``os.replace``; readers
    only ever see the old or the new document. On error the temporary file
    is removed and the target is left untouched.
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{file_path.name}.", suffix=".tmp", dir=file_path.parent)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, file_path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def atomic_write_text(file_path: Union[str, Path], content: str) -> Path:
    """Replace a file's content in one step."""
    with atomic_writer(file_path) as f:
        f.write(content)
    return Path(file_path)
