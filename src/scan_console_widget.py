from datetime import datetime
from typing import List

from PySide6.QtWidgets import (
    QWidget, QHBoxLayout, QVBoxLayout, QTableWidget, QTableWidgetItem,
    QLabel, QLineEdit, QHeaderView, QPushButton, QAbstractItemView, QFormLayout
)
from PySide6.QtGui import QFont, QColor
from PySide6.QtCore import Qt, Signal

from reconciliation import DayOverview, InvoiceStatus


def _hour_minute(iso_text: str) -> str:
    try:
        return datetime.fromisoformat(iso_text.replace("Z", "+00:00")).astimezone().strftime("%H:%M")
    except ValueError:
        return ""


class ScanConsoleWidget(QWidget):
    """
    The operator screen for counting boxes.

    Shows the day's counters, the last scans and the per-invoice progress,
    and captures input from a USB/Bluetooth scanner (keyboard wedge) in a
    hidden line edit.

    Attributes:
        label_scanned (Signal): Emitted with the raw text when Enter is
                                pressed in the scanner input.
        export_requested (Signal): Export button clicked.
        reset_day_requested (Signal): "New shift" button clicked.
        wipe_all_requested (Signal): "Wipe all" button clicked.
        operator_input (QLineEdit): Name of the operator scanning.
        recent_table (QTableWidget): Last scans of the day, newest first.
        invoice_table (QTableWidget): Scanned / expected per invoice.
        notification_label (QLabel): Large coloured feedback for the last scan.
        scanner_input (QLineEdit): Hidden input receiving scanner keystrokes.
    """
    label_scanned = Signal(str)
    export_requested = Signal()
    reset_day_requested = Signal()
    wipe_all_requested = Signal()

    def __init__(self, parent: QWidget = None):
        super().__init__(parent)

        main_layout = QHBoxLayout(self)

        # Left: tables
        left_widget = QWidget()
        left_layout = QVBoxLayout(left_widget)

        left_layout.addWidget(QLabel("Last scans:"))
        self.recent_table = QTableWidget()
        self.recent_table.setColumnCount(5)
        self.recent_table.setHorizontalHeaderLabels(["Time", "Client", "Invoice", "Box", "Address"])
        self.recent_table.horizontalHeader().setSectionResizeMode(QHeaderView.ResizeToContents)
        self.recent_table.horizontalHeader().setStretchLastSection(True)
        self.recent_table.setEditTriggers(QTableWidget.NoEditTriggers)
        self.recent_table.setSelectionMode(QAbstractItemView.NoSelection)
        self.recent_table.setFocusPolicy(Qt.NoFocus)
        left_layout.addWidget(self.recent_table)

        left_layout.addWidget(QLabel("Invoices:"))
        self.invoice_table = QTableWidget()
        self.invoice_table.setColumnCount(4)
        self.invoice_table.setHorizontalHeaderLabels(["Invoice", "Client", "Scanned / Expected", "Status"])
        self.invoice_table.horizontalHeader().setSectionResizeMode(QHeaderView.ResizeToContents)
        self.invoice_table.horizontalHeader().setStretchLastSection(True)
        self.invoice_table.setEditTriggers(QTableWidget.NoEditTriggers)
        self.invoice_table.setSelectionMode(QAbstractItemView.NoSelection)
        self.invoice_table.setFocusPolicy(Qt.NoFocus)
        left_layout.addWidget(self.invoice_table)

        # Right: counters, feedback, controls
        right_widget = QWidget()
        right_layout = QVBoxLayout(right_widget)
        right_layout.setAlignment(Qt.AlignTop)

        form = QFormLayout()
        self.operator_input = QLineEdit()
        self.operator_input.setPlaceholderText("Operator name")
        form.addRow("Operator:", self.operator_input)

        self.day_label = QLabel("-")
        self.total_label = QLabel("0")
        self.invoices_label = QLabel("0")
        self.last_label = QLabel("-")
        form.addRow("Day:", self.day_label)
        form.addRow("Scans:", self.total_label)
        form.addRow("Invoices:", self.invoices_label)
        form.addRow("Last box:", self.last_label)
        right_layout.addLayout(form)

        self.notification_label = QLabel("")
        notif_font = QFont(); notif_font.setPointSize(24); notif_font.setBold(True)
        self.notification_label.setFont(notif_font)
        self.notification_label.setAlignment(Qt.AlignCenter)
        self.notification_label.setWordWrap(True)
        right_layout.addWidget(self.notification_label)

        raw_scan_title = QLabel("Last read:")
        raw_scan_title.setAlignment(Qt.AlignCenter)
        self.raw_scan_label = QLabel("-")
        self.raw_scan_label.setAlignment(Qt.AlignCenter)
        self.raw_scan_label.setObjectName("RawScanLabel")
        self.raw_scan_label.setWordWrap(True)
        right_layout.addWidget(raw_scan_title)
        right_layout.addWidget(self.raw_scan_label)

        self.scanner_input = QLineEdit()
        self.scanner_input.setFixedSize(1, 1)
        self.scanner_input.returnPressed.connect(self._on_scan)
        right_layout.addWidget(self.scanner_input)

        right_layout.addStretch()

        self.export_button = QPushButton("📊 Export Excel")
        self.export_button.clicked.connect(self.export_requested.emit)
        self.reset_day_button = QPushButton("New shift")
        self.reset_day_button.clicked.connect(self.reset_day_requested.emit)
        self.wipe_all_button = QPushButton("🧹 Wipe all")
        self.wipe_all_button.clicked.connect(self.wipe_all_requested.emit)
        for button in (self.export_button, self.reset_day_button, self.wipe_all_button):
            button.setFocusPolicy(Qt.NoFocus)
            right_layout.addWidget(button)

        main_layout.addWidget(left_widget, stretch=2)
        main_layout.addWidget(right_widget, stretch=1)

    def _on_scan(self):
        """Emit label_scanned with the scanner text and clear the input."""
        text = self.scanner_input.text()
        self.scanner_input.clear()
        self.update_raw_scan_display(text)
        self.label_scanned.emit(text)

    def operator_name(self) -> str:
        return self.operator_input.text().strip()

    def show_notification(self, text: str, color_name: str):
        self.notification_label.setText(text)
        self.notification_label.setStyleSheet(f"color: {color_name};")

    def update_raw_scan_display(self, text: str):
        self.raw_scan_label.setText(text)

    def display_overview(self, day_key: str, overview: DayOverview):
        """Fill the counters and the last-scans table."""
        self.day_label.setText(day_key)
        self.total_label.setText(str(overview.total_scans))
        self.invoices_label.setText(str(overview.invoice_count))
        self.last_label.setText(overview.latest.box_label if overview.latest else "-")

        self.recent_table.setRowCount(len(overview.recent))
        for row, event in enumerate(overview.recent):
            self.recent_table.setItem(row, 0, QTableWidgetItem(_hour_minute(event.captured_at_iso)))
            self.recent_table.setItem(row, 1, QTableWidgetItem(event.client))
            self.recent_table.setItem(row, 2, QTableWidgetItem(event.invoice_id))
            self.recent_table.setItem(row, 3, QTableWidgetItem(str(event.package_index)))
            self.recent_table.setItem(row, 4, QTableWidgetItem(event.address))

    def display_invoice_statuses(self, statuses: List[InvoiceStatus]):
        """Fill the per-invoice table; complete invoices in green."""
        self.invoice_table.setRowCount(len(statuses))
        for row, status in enumerate(statuses):
            expected = str(status.expected_count) if status.expected_count else "?"
            self.invoice_table.setItem(row, 0, QTableWidgetItem(status.invoice_id))
            self.invoice_table.setItem(row, 1, QTableWidgetItem(status.client))
            self.invoice_table.setItem(row, 2, QTableWidgetItem(f"{status.scanned_count} / {expected}"))

            if status.complete:
                status_item = QTableWidgetItem("Complete")
                status_item.setBackground(QColor("lightgreen"))
            else:
                status_item = QTableWidgetItem("Incomplete")
                status_item.setBackground(QColor("yellow"))
            self.invoice_table.setItem(row, 3, status_item)

    def set_focus_to_scanner(self):
        """Keep keyboard focus on the hidden scanner input."""
        self.scanner_input.setFocus()
