"""
Custom exceptions for the Box Counter application.

This module defines application-specific exceptions so that the scan
controller and the operator console can tell a bad label apart from a
broken ledger file. Using custom exceptions allows the application to:
- Show the operator a message that says what to do next
- Keep the raw label text / database path attached for logging
- Catch every application error with a single except clause

Exception hierarchy:
    BoxCounterError (base)
    ├── InvalidLabelError (label text not in a recognized format)
    ├── StorageUnavailableError (ledger file cannot be opened or written)
    │   └── LedgerModeMismatchError (ledger created with another identity mode)
    └── ReportGenerationError (Excel report could not be produced)
"""

from typing import Optional


class BoxCounterError(Exception):
    """
    Base exception for all Box Counter errors.

    Note: This does NOT inherit from built-in errors like ValueError or
    IOError to keep application and system errors apart.
    """

    def get_display_message(self) -> str:
        """Return a message suitable for an operator dialog."""
        return str(self)


class InvalidLabelError(BoxCounterError):
    """
    Raised when a decoded label cannot be turned into a scan record.

    Common causes on the warehouse floor:
    - The camera read a QR that is not one of our shipping labels
    - The label was printed without an invoice or package number
    - A partial read produced truncated text

    The error is recoverable: nothing is written to the ledger and the
    operator is asked to scan again.

    Attributes:
        raw_text (str): The decoded text that failed to parse
    """

    def __init__(self, message: str, raw_text: Optional[str] = None):
        super().__init__(message)
        self.raw_text = raw_text

    def get_display_message(self) -> str:
        return f"❌ Invalid label: {self}"


class StorageUnavailableError(BoxCounterError):
    """
    Raised when the local ledger database cannot be opened or written.

    Typical causes:
    - Disk full / quota exceeded
    - Database file locked by another process beyond the busy timeout
    - Permission problems on the data directory
    - Corrupted database file

    The scan is NOT recorded. The caller must show this to the operator so
    the box can be scanned again once the problem is fixed.

    Attributes:
        db_path (str): Path of the ledger database file, if known
    """

    def __init__(self, message: str, db_path: Optional[str] = None):
        super().__init__(message)
        self.db_path = db_path

    def get_display_message(self) -> str:
        location = f"\n\nDatabase: {self.db_path}" if self.db_path else ""
        return (
            f"❌ Scan NOT saved: {self}{location}\n\n"
            f"Check free disk space and scan the box again."
        )


class LedgerModeMismatchError(StorageUnavailableError):
    """
    Raised when a ledger is opened with a different identity-key mode
    than the one it was created with.

    Overwrite and append ledgers build their primary keys differently, so
    mixing them in one file would corrupt the duplicate signal. Use
    scan_ledger.migrate_ledger() to copy the data into a new file instead.

    Attributes:
        stored_mode (str): Mode recorded in the ledger file
        requested_mode (str): Mode the caller asked for
    """

    def __init__(self, message: str, db_path: Optional[str] = None,
                 stored_mode: Optional[str] = None, requested_mode: Optional[str] = None):
        super().__init__(message, db_path)
        self.stored_mode = stored_mode
        self.requested_mode = requested_mode

    def get_display_message(self) -> str:
        return (
            f"The ledger at {self.db_path} was created in '{self.stored_mode}' mode "
            f"but the configuration asks for '{self.requested_mode}'.\n\n"
            f"Change [Ledger] Mode back, or migrate the ledger to a new file."
        )


class ReportGenerationError(BoxCounterError):
    """
    Raised when a report cannot be produced from a valid ledger snapshot.

    Report failures never touch the ledger: the events stay stored and the
    export can simply be retried.
    """

    def get_display_message(self) -> str:
        return f"❌ Could not generate report: {self}"
