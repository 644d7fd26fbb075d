"""
Pytest configuration file for Box Counter tests.

Puts the 'src' directory on sys.path so tests import modules the same way
the application does (from logger import get_logger, ...), and provides
shared ledger/event helpers.
"""

import os
import sys
from datetime import datetime
from pathlib import Path

import pytest

# Run Qt headless unless a platform is chosen explicitly
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

repo_root = Path(__file__).parent.parent

src_dir = repo_root / 'src'
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

from label_parser import ScanRecord  # noqa: E402
from scan_ledger import LedgerStore, MODE_APPEND, MODE_OVERWRITE  # noqa: E402


# Naive datetimes are local time, so day keys below never depend on the TZ
DAY_ONE = datetime(2025, 11, 5, 9, 0, 0)
DAY_TWO = datetime(2025, 11, 6, 9, 0, 0)


class FakeClock:
    """Monotonic clock stand-in for cooldown tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_record(invoice_id: str = "A100", package_index: int = 1,
                expected: int = 0, client: str = "ACME", **kwargs) -> ScanRecord:
    return ScanRecord(
        invoice_id=invoice_id,
        package_index=package_index,
        expected_package_count=expected,
        client=client,
        **kwargs,
    )


@pytest.fixture
def append_ledger(tmp_path):
    return LedgerStore(tmp_path / "append.db", mode=MODE_APPEND)


@pytest.fixture
def overwrite_ledger(tmp_path):
    return LedgerStore(tmp_path / "overwrite.db", mode=MODE_OVERWRITE)


@pytest.fixture
def fake_clock():
    return FakeClock()
