import sys
from typing import Optional

from PySide6.QtWidgets import QApplication, QMainWindow, QMessageBox
from PySide6.QtCore import QTimer

from app_config import AppConfig, load_config
from exceptions import ReportGenerationError, StorageUnavailableError
from logger import get_logger
from reconciliation import day_overview, summarize
from report_exporter import export_day_report
from scan_console_widget import ScanConsoleWidget
from scan_ledger import LedgerStore
from session_controller import RECORDED_DUPLICATE, ScanOutcome, SessionController

logger = get_logger(__name__)

NOTIFICATION_CLEAR_MS = 3500


class MainWindow(QMainWindow):
    """
    The main application window.

    Opens the ledger from config.ini, wires the scanner widget to the
    session controller and refreshes the day view after every scan.

    Attributes:
        config (AppConfig): Loaded settings
        ledger (LedgerStore): The scan ledger
        controller (SessionController): Scan processing
        console (ScanConsoleWidget): The operator screen
    """
    def __init__(self, config: Optional[AppConfig] = None, ledger: Optional[LedgerStore] = None):
        super().__init__()
        self.setWindowTitle("Box Counter")
        self.resize(1024, 768)

        logger.info("Initializing MainWindow")
        self.config = config or load_config()

        if ledger is None:
            try:
                ledger = LedgerStore(self.config.db_path, mode=self.config.ledger_mode,
                                     timeout=self.config.busy_timeout)
            except StorageUnavailableError as e:
                logger.error(f"Failed to open ledger: {e}")
                QMessageBox.critical(self, "Storage Error", e.get_display_message())
                sys.exit(1)
        self.ledger = ledger

        self.controller = SessionController(self.ledger, cooldown_seconds=self.config.cooldown_seconds)

        self.console = ScanConsoleWidget()
        self.setCentralWidget(self.console)

        self.console.label_scanned.connect(self.on_label_scanned)
        self.console.export_requested.connect(self.export_report)
        self.console.reset_day_requested.connect(self.reset_day)
        self.console.wipe_all_requested.connect(self.wipe_all)

        self.controller.scan_recorded.connect(self._on_scan_recorded)
        self.controller.scan_rejected.connect(self._on_scan_rejected)
        self.controller.day_changed.connect(lambda _day: self.refresh_view())
        self.controller.ledger_cleared.connect(self.refresh_view)

        self._clear_timer = QTimer(self)
        self._clear_timer.setSingleShot(True)
        self._clear_timer.timeout.connect(lambda: self.console.show_notification("", "black"))

        self.refresh_view()
        self.console.set_focus_to_scanner()
        logger.info("MainWindow initialized successfully")

    def notify(self, text: str, color: str):
        self.console.show_notification(text, color)
        self._clear_timer.start(NOTIFICATION_CLEAR_MS)

    def refresh_view(self):
        """Recompute the day's counters and invoice statuses from the ledger."""
        day = self.controller.active_day
        try:
            events = self.ledger.query_by_day(day)
        except StorageUnavailableError as e:
            self.notify(e.get_display_message(), "red")
            return
        self.console.display_overview(day, day_overview(events))
        self.console.display_invoice_statuses(summarize(events))

    def on_label_scanned(self, text: str):
        """Central callback for every scanner/camera decode."""
        self.controller.on_label_decoded(text, self.console.operator_name())
        self.console.set_focus_to_scanner()

    def _on_scan_recorded(self, outcome: ScanOutcome):
        color = "orange" if outcome.kind == RECORDED_DUPLICATE else "green"
        self.notify(outcome.message, color)
        self.refresh_view()

    def _on_scan_rejected(self, outcome: ScanOutcome):
        self.notify(outcome.message, "red")

    def export_report(self):
        day = self.controller.active_day
        try:
            events = self.ledger.query_by_day(day)
            path = export_day_report(events, day, self.config.report_dir)
        except (ReportGenerationError, StorageUnavailableError) as e:
            logger.warning(f"Export failed: {e}")
            QMessageBox.warning(self, "Export", e.get_display_message())
            return
        self.notify(f"📊 Exported: {path.name}", "green")
        QMessageBox.information(self, "Export Complete", f"Report saved to:\n{path}")

    def reset_day(self):
        reply = QMessageBox.question(
            self, "New shift",
            "Start a new shift? Earlier days are kept (they are stored by date).",
        )
        if reply != QMessageBox.Yes:
            return
        self.controller.reset_day()
        self.notify("New shift ready, scan as usual.", "green")

    def wipe_all(self):
        reply = QMessageBox.question(
            self, "Wipe all",
            "Delete EVERYTHING stored on this device, for every day?",
        )
        if reply != QMessageBox.Yes:
            return
        try:
            self.controller.wipe_all()
        except StorageUnavailableError as e:
            QMessageBox.critical(self, "Storage Error", e.get_display_message())
            return
        self.notify("🧹 Everything deleted.", "green")


def main():
    app = QApplication(sys.argv)
    window = MainWindow()
    window.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
