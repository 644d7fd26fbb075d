"""
Session controller - the single entry point for decoded labels.

The camera/scanner calls on_label_decoded() for every decode. The
controller:
1. Drops decodes that arrive while a previous one is still being processed
2. Ignores the same text read again within the cooldown window (a label
   held in front of the camera is decoded on every frame)
3. Parses the label and writes it to the ledger
4. Reports Recorded / RecordedDuplicate / Rejected to the UI via Qt signals
"""

import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from PySide6.QtCore import QObject, Signal

from exceptions import BoxCounterError, InvalidLabelError, StorageUnavailableError
from label_parser import LabelParser
from logger import get_logger, set_day_context, set_operator_context
from scan_ledger import LedgerStore, ScanEvent, day_key_for

logger = get_logger(__name__)

RECORDED = "RECORDED"
RECORDED_DUPLICATE = "RECORDED_DUPLICATE"
REJECTED = "REJECTED"

STATE_IDLE = "IDLE"
STATE_BUSY = "BUSY"

DEFAULT_COOLDOWN_SECONDS = 0.7


@dataclass(frozen=True)
class ScanOutcome:
    """
    Result of one processed decode.

    Attributes:
        kind: RECORDED, RECORDED_DUPLICATE or REJECTED
        raw_text: The (trimmed) decoded text
        event: Stored event for recorded outcomes
        reason: Why the scan was rejected
        error: The exception behind a rejection
    """
    kind: str
    raw_text: str
    event: Optional[ScanEvent] = None
    reason: str = ""
    error: Optional[BoxCounterError] = None

    @property
    def recorded(self) -> bool:
        return self.kind in (RECORDED, RECORDED_DUPLICATE)

    @property
    def message(self) -> str:
        """Short operator-facing text."""
        if self.kind == RECORDED:
            client = f" — {self.event.client}" if self.event.client else ""
            return f"✅ Recorded: {self.event.box_label}{client}"
        if self.kind == RECORDED_DUPLICATE:
            return f"⚠️ Repeated: {self.event.box_label} (not counted again)"
        if self.error is not None:
            return self.error.get_display_message()
        return f"❌ {self.reason}"


class SessionController(QObject):
    """
    Coordinates scanner input, label parsing and the ledger.

    Signals:
        scan_recorded(ScanOutcome): A label was stored (new or repeated box)
        scan_rejected(ScanOutcome): A label was refused (bad label or storage failure)
        day_changed(str): A new shift was started for the given day
        ledger_cleared(): Every stored scan was deleted

    Attributes:
        ledger (LedgerStore): Where scans are stored
        parser (LabelParser): Turns decoded text into ScanRecords
        cooldown_seconds (float): Window in which the same text is ignored
    """
    scan_recorded = Signal(object)
    scan_rejected = Signal(object)
    day_changed = Signal(str)
    ledger_cleared = Signal()

    def __init__(self, ledger: LedgerStore, parser: Optional[LabelParser] = None,
                 cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
                 clock: Callable[[], float] = time.monotonic,
                 now: Optional[Callable[[], datetime]] = None):
        """
        Args:
            ledger: Ledger store receiving the scans
            parser: Label parser (default LabelParser())
            cooldown_seconds: Repeat window for identical text
            clock: Monotonic clock used for the cooldown (injectable for tests)
            now: Wall clock used for scan timestamps (injectable for tests)
        """
        super().__init__()
        self.ledger = ledger
        self.parser = parser or LabelParser()
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._now = now or (lambda: datetime.now().astimezone())

        self._gate = threading.Lock()
        self._state = STATE_IDLE
        self._last_text: Optional[str] = None
        self._last_processed_at = 0.0

        set_day_context(self.active_day)
        logger.info(f"SessionController ready (mode={ledger.mode}, cooldown={cooldown_seconds}s)")

    @property
    def state(self) -> str:
        return self._state

    @property
    def active_day(self) -> str:
        """Day partition new scans go into and the screen shows."""
        return day_key_for(self._now())

    def _is_repeat(self, text: str) -> bool:
        if text != self._last_text:
            return False
        return self._clock() - self._last_processed_at < self.cooldown_seconds

    def on_label_decoded(self, raw_text: str, operator: str = "") -> Optional[ScanOutcome]:
        """
        Process one decoded label.

        Returns:
            ScanOutcome, or None when the decode was ignored (controller busy,
            or the same text inside the cooldown window). Ignored decodes
            never touch the ledger.
        """
        text = (raw_text or "").strip()

        if not self._gate.acquire(blocking=False):
            logger.debug("Decode dropped: controller busy")
            return None

        try:
            if self._is_repeat(text):
                logger.debug("Decode ignored: same label inside cooldown")
                return None

            self._state = STATE_BUSY
            outcome = self._process(text, operator)
        finally:
            self._state = STATE_IDLE
            self._gate.release()

        if outcome.recorded:
            self.scan_recorded.emit(outcome)
        else:
            self.scan_rejected.emit(outcome)
        return outcome

    def _process(self, text: str, operator: str) -> ScanOutcome:
        set_operator_context(operator)
        set_day_context(self.active_day)

        try:
            record = self.parser.parse(text)
        except InvalidLabelError as e:
            self._remember(text)
            logger.warning(f"Rejected label: {e}")
            return ScanOutcome(kind=REJECTED, raw_text=text, reason=str(e), error=e)

        event = self.ledger.make_event(record, operator=operator, captured_at=self._now())
        try:
            result = self.ledger.put(event)
        except StorageUnavailableError as e:
            # Not remembered: the operator must be able to rescan right away
            self._last_text = None
            logger.error(f"Scan {record.box_label} NOT saved: {e}")
            return ScanOutcome(kind=REJECTED, raw_text=text, reason=str(e), error=e)

        self._remember(text)
        if result.duplicate:
            logger.info(f"Repeated box {result.event.box_label} ({self.ledger.mode})")
            return ScanOutcome(kind=RECORDED_DUPLICATE, raw_text=text, event=result.event)

        logger.info(f"Recorded box {result.event.box_label}")
        return ScanOutcome(kind=RECORDED, raw_text=text, event=result.event)

    def _remember(self, text: str) -> None:
        self._last_text = text
        self._last_processed_at = self._clock()

    # ------------------------------------------------------------------
    # Operator controls
    # ------------------------------------------------------------------

    def day_events(self):
        """Snapshot of the active day's events."""
        return self.ledger.query_by_day(self.active_day)

    def reset_day(self) -> str:
        """
        Start a new shift.

        History is never deleted: earlier days stay in the ledger under their
        own day key. Only the repeat memory is cleared.
        """
        self._last_text = None
        day = self.active_day
        set_day_context(day)
        logger.info(f"New shift started for {day}")
        self.day_changed.emit(day)
        return day

    def wipe_all(self) -> int:
        """Delete every scan of every day."""
        removed = self.ledger.clear()
        self._last_text = None
        self.ledger_cleared.emit()
        return removed
