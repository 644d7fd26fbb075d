"""
Unit tests for src/report_exporter.py.

Tests cover:
- Sheet contents built by build_report_frames()
- Workbook written by export_day_report() (sheets, highlighting, filename)
- ReportGenerationError for an empty day and an unwritable target
"""

from datetime import timedelta

import pytest
from openpyxl import load_workbook

import report_exporter
from conftest import DAY_ONE, make_record
from exceptions import ReportGenerationError
from report_exporter import (
    COMPLETE_FILL, SHEET_CLIENTS, SHEET_DETAIL, SHEET_INVOICES, STATUS_COMPLETE,
    STATUS_INCOMPLETE, build_report_frames, export_day_report, report_filename,
)


@pytest.fixture
def day_events(append_ledger):
    scans = [
        ("A100", 1, 2, "acme"),
        ("A100", 2, 2, "ACME"),
        ("A100", 2, 2, "ACME"),
        ("B200", 1, 3, "Beta"),
    ]
    for minute, (invoice, package, expected, client) in enumerate(scans):
        record = make_record(invoice, package, expected=expected, client=client)
        append_ledger.put(append_ledger.make_event(record, "ana", DAY_ONE + timedelta(minutes=minute)))
    return append_ledger.query_by_day("2025-11-05")


class TestBuildReportFrames:
    def test_detail_sorted_by_capture_time(self, day_events):
        frames = build_report_frames(reversed(day_events))
        detail = frames[SHEET_DETAIL]
        assert len(detail) == 4
        assert list(detail["Bulto N°"]) == [1, 2, 2, 1]
        assert list(detail["Operador"]) == ["ana"] * 4

    def test_client_summary(self, day_events):
        clients = build_report_frames(day_events)[SHEET_CLIENTS]
        acme = clients[clients["Cliente"] == "ACME"].iloc[0]
        assert acme["Pedidos (Facturas)"] == 1
        assert acme["Cajas Escaneadas"] == 2
        assert acme["Cajas Esperadas"] == 2
        assert acme["Facturas Completas"] == 1

    def test_invoice_status(self, day_events):
        invoices = build_report_frames(day_events)[SHEET_INVOICES]
        assert list(invoices["Factura"]) == ["A100", "B200"]
        assert list(invoices["Estado"]) == [STATUS_COMPLETE, STATUS_INCOMPLETE]


class TestExportDayReport:
    def test_writes_workbook(self, day_events, tmp_path):
        path = export_day_report(day_events, "2025-11-05", tmp_path)

        assert path == tmp_path / report_filename("2025-11-05")
        assert path.name == "resumen_clientes_2025-11-05.xlsx"

        workbook = load_workbook(path)
        assert workbook.sheetnames == [SHEET_DETAIL, SHEET_CLIENTS, SHEET_INVOICES]

        invoice_sheet = workbook[SHEET_INVOICES]
        assert invoice_sheet["A2"].value == "A100"
        assert invoice_sheet["A2"].fill.start_color.rgb.endswith(COMPLETE_FILL.start_color.rgb[-6:])
        assert invoice_sheet["A3"].fill.fill_type is None

    def test_creates_output_dir(self, day_events, tmp_path):
        path = export_day_report(day_events, "2025-11-05", tmp_path / "nested" / "reports")
        assert path.exists()

    def test_empty_day_raises(self, tmp_path):
        with pytest.raises(ReportGenerationError, match="no scans"):
            export_day_report([], "2025-11-05", tmp_path)

    def test_unwritable_target_raises(self, day_events, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(ReportGenerationError):
            export_day_report(day_events, "2025-11-05", blocker / "sub")

    def test_export_does_not_touch_ledger(self, day_events, append_ledger, tmp_path):
        before = append_ledger.count()
        export_day_report(day_events, "2025-11-05", tmp_path)
        assert append_ledger.count() == before


class TestControlCharacters:
    @pytest.fixture
    def gs1_events(self, append_ledger):
        record = make_record("A100", 1, expected=1, client="ACME\x1dGS1", address="Calle\x1e 1")
        append_ledger.put(append_ledger.make_event(record, "ana", DAY_ONE))
        return append_ledger.query_by_day("2025-11-05")

    def test_control_characters_stripped_from_frames(self, gs1_events):
        detail = build_report_frames(gs1_events)[SHEET_DETAIL]
        assert detail["Cliente"].iloc[0] == "ACMEGS1"
        assert detail["Dirección"].iloc[0] == "Calle 1"

    def test_label_with_group_separator_exports(self, gs1_events, tmp_path):
        path = export_day_report(gs1_events, "2025-11-05", tmp_path)
        sheet = load_workbook(path)[SHEET_DETAIL]
        assert sheet["B2"].value == "ACMEGS1"

    def test_writer_rejection_raises_report_error(self, gs1_events, tmp_path, monkeypatch):
        monkeypatch.setattr(report_exporter, "_cell_value", lambda value: value)
        with pytest.raises(ReportGenerationError):
            export_day_report(gs1_events, "2025-11-05", tmp_path)
