"""
Mailbox input file reader.

Reads mailbox identities from a delimited text file one row at a time, so
the full input is never held in memory.
"""

import csv
import logging
from pathlib import Path
from typing import Iterator, Optional, Set, Union

from mailbox_migration.core.exceptions import InputFileError

logger = logging.getLogger(__name__)

CANDIDATE_DELIMITERS = ",;\t|"
SNIFF_SAMPLE_SIZE = 8192


class MailboxInputReader:
    """
    Streams mailbox identities from a CSV-style input file.

    The delimiter is detected from the first lines of the file and the
    identity column is matched case-insensitively. Blank identities are
    skipped; repeated identities are dropped, the first one wins.
    """

    def __init__(
        self,
        file_path: Union[str, Path],
        identity_column: str = "EmailAddress",
        encoding: str = "utf-8-sig"
    ):
        self.file_path = Path(file_path)
        self.identity_column = identity_column
        self.encoding = encoding
        self.delimiter: Optional[str] = None
        self.column_name: Optional[str] = None
        self.duplicates_skipped = 0

    def open(self) -> "MailboxInputReader":
        """
        Validate the file before any remote work starts.

        Raises:
            InputFileError: If the file is missing, has no identity column
                or has no data rows
        """
        if not self.file_path.is_file():
            raise InputFileError(f"Input file not found: {self.file_path}")

        try:
            with open(self.file_path, "r", encoding=self.encoding, newline="") as f:
                sample = f.read(SNIFF_SAMPLE_SIZE)
        except (OSError, UnicodeDecodeError) as e:
            raise InputFileError(f"Cannot read input file {self.file_path}: {e}")

        if not sample.strip():
            raise InputFileError(f"Input file is empty: {self.file_path}")

        try:
            self.delimiter = csv.Sniffer().sniff(sample, delimiters=CANDIDATE_DELIMITERS).delimiter
        except csv.Error:
            self.delimiter = ","

        header = next(csv.reader(sample.splitlines(), delimiter=self.delimiter), [])
        wanted = self.identity_column.lower()
        for name in header:
            if name.strip().lower() == wanted:
                self.column_name = name
                break
        else:
            raise InputFileError(
                f"Input file {self.file_path} has no '{self.identity_column}' column",
                details={"columns": [name.strip() for name in header]}
            )

        if next(self._iter_raw(), None) is None:
            raise InputFileError(f"Input file {self.file_path} contains no mailboxes")

        logger.debug(
            f"Input file {self.file_path}: delimiter {self.delimiter!r}, column '{self.column_name}'"
        )
        return self

    def _iter_raw(self) -> Iterator[str]:
        if self.column_name is None:
            self.open()
        with open(self.file_path, "r", encoding=self.encoding, newline="") as f:
            for row in csv.DictReader(f, delimiter=self.delimiter):
                identity = (row.get(self.column_name) or "").strip()
                if identity:
                    yield identity

    def iter_identities(self) -> Iterator[str]:
        """Yield unique identities in file order."""
        seen: Set[str] = set()
        self.duplicates_skipped = 0
        for identity in self._iter_raw():
            key = identity.lower()
            if key in seen:
                self.duplicates_skipped += 1
                logger.warning(f"Duplicate mailbox in input skipped: {identity}")
                continue
            seen.add(key)
            yield identity

    def count(self) -> int:
        """Number of unique identities in the file."""
        seen: Set[str] = set()
        for identity in self._iter_raw():
            seen.add(identity.lower())
        return len(seen)
