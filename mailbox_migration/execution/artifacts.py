"""
Validation result artifacts.

Each finished window of results is written to its own JSON file under
``windows/``. When every window is done they are concatenated into
``validation_results.json`` and the window files are removed. All writes
replace the target atomically.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from mailbox_migration.models.results import ValidationResult
from mailbox_migration.utils.helpers import atomic_writer, atomic_write_text

logger = logging.getLogger(__name__)

COMBINED_RESULTS_FILENAME = "validation_results.json"
WINDOWS_DIRNAME = "windows"
MANIFEST_FILENAME = "manifest.json"


class ResultArtifactStore:
    """Reads and writes the validation result files of one run."""

    def __init__(self, work_dir: Union[str, Path]):
        self.work_dir = Path(work_dir)
        self.windows_dir = self.work_dir / WINDOWS_DIRNAME
        self.combined_path = self.work_dir / COMBINED_RESULTS_FILENAME

    def window_path(self, index: int) -> Path:
        return self.windows_dir / f"window_{index:05d}.json"

    def save_window(self, index: int, results: List[ValidationResult]) -> Path:
        """Persist one complete window of results."""
        payload = [result.model_dump(mode="json") for result in results]
        path = atomic_write_text(self.window_path(index), json.dumps(payload, indent=2))
        logger.debug(f"Saved window {index} ({len(results)} results) to {path}")
        return path

    def load_window(self, index: int) -> Optional[List[ValidationResult]]:
        """
        Load a persisted window.

        Returns:
            The window's results, or None when the window is absent or
            unreadable and has to be validated again
        """
        path = self.window_path(index)
        if not path.exists():
            return None
        try:
            return self._read_results(path)
        except (OSError, ValueError, PydanticValidationError) as e:
            logger.warning(f"Discarding unreadable window file {path}: {e}")
            return None

    @property
    def manifest_path(self) -> Path:
        return self.windows_dir / MANIFEST_FILENAME

    def save_manifest(self, manifest: Dict[str, Any]) -> None:
        """Record the settings the persisted windows were produced with."""
        atomic_write_text(self.manifest_path, json.dumps(manifest, indent=2))

    def load_manifest(self) -> Optional[Dict[str, Any]]:
        try:
            with open(self.manifest_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable window manifest {self.manifest_path}: {e}")
            return None

    def list_windows(self) -> List[int]:
        if not self.windows_dir.exists():
            return []
        indexes = []
        for path in self.windows_dir.glob("window_*.json"):
            try:
                indexes.append(int(path.stem.split("_", 1)[1]))
            except ValueError:
                continue
        return sorted(indexes)

    def combine(self, window_count: int) -> Path:
        """
        Concatenate windows ``0..window_count-1`` into the combined file.

        Windows are read one at a time and streamed into the output.
        """
        written = 0
        with atomic_writer(self.combined_path) as out:
            out.write("[")
            for index in range(window_count):
                window = self.load_window(index)
                if window is None:
                    raise FileNotFoundError(f"Missing validation window {index} in {self.windows_dir}")
                for result in window:
                    out.write(",\n" if written else "\n")
                    out.write(json.dumps(result.model_dump(mode="json")))
                    written += 1
            out.write("\n]\n")

        logger.info(f"Combined {window_count} windows ({written} results) into {self.combined_path}")
        return self.combined_path

    def remove_windows(self) -> None:
        for index in self.list_windows():
            self.window_path(index).unlink(missing_ok=True)
        self.manifest_path.unlink(missing_ok=True)
        if self.windows_dir.exists() and not any(self.windows_dir.iterdir()):
            self.windows_dir.rmdir()

    def results_exist(self, location: Optional[Union[str, Path]] = None) -> bool:
        return Path(location or self.combined_path).is_file()

    def load_results(self, location: Optional[Union[str, Path]] = None) -> List[ValidationResult]:
        """Load the combined results of a run."""
        return self._read_results(Path(location or self.combined_path))

    @staticmethod
    def _read_results(path: Path) -> List[ValidationResult]:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"{path} does not contain a list of results")
        return [ValidationResult.model_validate(item) for item in data]
