"""
Persistence of the run state checkpoint.

The state file is rewritten as a whole after every stage transition. A
file that cannot be decoded is moved aside and the run starts fresh;
older schema versions are migrated on load.
"""

import json
import logging
from datetime import datetime, UTC
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError as PydanticValidationError

from mailbox_migration.core.exceptions import StateFileError
from mailbox_migration.models.state import MigrationRunState, migrate_state_payload
from mailbox_migration.utils.helpers import atomic_write_text

logger = logging.getLogger(__name__)


class RunStateStore:
    """Loads and saves one run state file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.quarantined_path: Optional[Path] = None

    def exists(self) -> bool:
        return self.path.is_file()

    def save(self, state: MigrationRunState) -> Path:
        """Atomically replace the state file with ``state``."""
        state.updated_at = datetime.now(UTC)
        atomic_write_text(self.path, state.model_dump_json(indent=2))
        logger.debug(f"Run state saved at stage {state.current_stage.value}")
        return self.path

    def read(self) -> MigrationRunState:
        """
        Decode the state file.

        Raises:
            StateFileError: If the file is missing, unreadable or invalid
        """
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise StateFileError(f"Run state file not found: {self.path}")
        except (OSError, UnicodeDecodeError, ValueError) as e:
            raise StateFileError(f"Run state file {self.path} is not valid JSON: {e}")

        if not isinstance(data, dict):
            raise StateFileError(f"Run state file {self.path} does not contain an object")

        try:
            return MigrationRunState.model_validate(migrate_state_payload(data))
        except PydanticValidationError as e:
            raise StateFileError(
                f"Run state file {self.path} has invalid content",
                details={"errors": e.errors(include_url=False)}
            )

    def load(self) -> Optional[MigrationRunState]:
        """
        Load the persisted state for resuming.

        Returns:
            The state, or None when there is no usable state file; a corrupt
            file is renamed to ``<name>.corrupt-<timestamp>``
        """
        if not self.exists():
            return None
        try:
            return self.read()
        except StateFileError as e:
            self.quarantine(e)
            return None

    def quarantine(self, error: StateFileError) -> Path:
        timestamp = datetime.now(UTC).strftime("%Y%m%d%H%M%S")
        target = self.path.with_name(f"{self.path.name}.corrupt-{timestamp}")
        self.path.replace(target)
        self.quarantined_path = target
        logger.warning(f"{error.message}; moved it to {target} and starting a new run")
        return target
