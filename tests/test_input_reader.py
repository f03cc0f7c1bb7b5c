"""
Tests for the mailbox input file reader.
"""

import pytest

from mailbox_migration.core.exceptions import InputFileError
from mailbox_migration.execution.input_reader import MailboxInputReader


class TestMailboxInputReader:
    """Test cases for MailboxInputReader."""

    def test_reads_identities_in_order(self, write_input):
        path = write_input(["alice@contoso.com", "bob@contoso.com", "carol@contoso.com"])
        reader = MailboxInputReader(path).open()

        assert list(reader.iter_identities()) == ["alice@contoso.com", "bob@contoso.com", "carol@contoso.com"]
        assert reader.count() == 3

    def test_duplicates_are_skipped_first_wins(self, write_input):
        path = write_input(["alice@contoso.com", "bob@contoso.com", "ALICE@contoso.com"])
        reader = MailboxInputReader(path).open()

        assert list(reader.iter_identities()) == ["alice@contoso.com", "bob@contoso.com"]
        assert reader.duplicates_skipped == 1
        assert reader.count() == 2

    def test_blank_identities_are_ignored(self, tmp_path):
        path = tmp_path / "in.csv"
        path.write_text("EmailAddress,Name\nalice@contoso.com,Alice\n,Nobody\n  ,Blank\n", encoding="utf-8")

        assert list(MailboxInputReader(path).open().iter_identities()) == ["alice@contoso.com"]

    @pytest.mark.parametrize("delimiter", [";", "\t", "|"])
    def test_detects_delimiter(self, write_input, delimiter):
        path = write_input(["alice@contoso.com", "bob@contoso.com"], delimiter=delimiter)
        reader = MailboxInputReader(path).open()

        assert reader.delimiter == delimiter
        assert list(reader.iter_identities()) == ["alice@contoso.com", "bob@contoso.com"]

    def test_column_match_is_case_insensitive(self, write_input):
        path = write_input(["alice@contoso.com"], column="emailaddress")
        assert list(MailboxInputReader(path).open().iter_identities()) == ["alice@contoso.com"]

    def test_custom_identity_column(self, write_input):
        path = write_input(["alice@contoso.com"], column="UserPrincipalName")
        reader = MailboxInputReader(path, identity_column="UserPrincipalName").open()
        assert reader.count() == 1

    def test_byte_order_mark_is_stripped(self, tmp_path):
        path = tmp_path / "in.csv"
        path.write_bytes("\ufeffEmailAddress\nalice@contoso.com\n".encode("utf-8"))
        assert list(MailboxInputReader(path).open().iter_identities()) == ["alice@contoso.com"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(InputFileError, match="not found"):
            MailboxInputReader(tmp_path / "missing.csv").open()

    def test_empty_file(self, tmp_path):
        path = tmp_path / "in.csv"
        path.write_text("", encoding="utf-8")
        with pytest.raises(InputFileError, match="empty"):
            MailboxInputReader(path).open()

    def test_header_only_file(self, tmp_path):
        path = tmp_path / "in.csv"
        path.write_text("EmailAddress,Department\n", encoding="utf-8")
        with pytest.raises(InputFileError, match="no mailboxes"):
            MailboxInputReader(path).open()

    def test_missing_identity_column(self, write_input):
        path = write_input(["alice@contoso.com"], column="Mail")
        with pytest.raises(InputFileError) as exc_info:
            MailboxInputReader(path).open()
        assert exc_info.value.details["columns"] == ["Mail", "Department"]
