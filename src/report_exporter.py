"""
Daily Excel report.

Builds the workbook the warehouse sends at the end of a shift:
- "Detalle": one row per scan, oldest first
- "Resumen_por_Cliente": invoices, boxes scanned and boxes expected per client
- "Facturas": per-invoice status, complete invoices highlighted in green

The report only reads a snapshot of events; a failure here never affects
the ledger.
"""

from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Optional, Union

import pandas as pd
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import IllegalCharacterError

from exceptions import ReportGenerationError
from logger import get_logger
from reconciliation import summarize, summarize_by_client
from scan_ledger import ScanEvent

logger = get_logger(__name__)

SHEET_DETAIL = "Detalle"
SHEET_CLIENTS = "Resumen_por_Cliente"
SHEET_INVOICES = "Facturas"

DETAIL_COLUMNS = [
    "Fecha", "Cliente", "Dirección", "Localidad", "Provincia", "Orden",
    "Factura", "Bulto N°", "Total Bultos", "Transporte", "Operador", "ID Caja",
]
DETAIL_WIDTHS = [20, 26, 22, 16, 14, 10, 10, 10, 12, 14, 12, 16]

CLIENT_COLUMNS = ["Cliente", "Pedidos (Facturas)", "Cajas Escaneadas", "Cajas Esperadas", "Facturas Completas"]
INVOICE_COLUMNS = ["Factura", "Cliente", "Escaneadas", "Esperadas", "Estado"]

STATUS_COMPLETE = "✅ completo"
STATUS_INCOMPLETE = "⚠️ incompleto"

COMPLETE_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")


def report_filename(day_key: str) -> str:
    return f"resumen_clientes_{day_key}.xlsx"


def _local_time(iso_text: str) -> str:
    try:
        moment = datetime.fromisoformat(iso_text.replace("Z", "+00:00"))
    except ValueError:
        return iso_text
    return moment.astimezone().strftime("%d/%m/%Y %H:%M:%S")


def _cell_value(value):
    """Drop control characters (e.g. GS1 group separators) that worksheets reject."""
    if isinstance(value, str):
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    return value


def build_report_frames(events: Iterable[ScanEvent]) -> Dict[str, pd.DataFrame]:
    """
    Build the three report sheets as DataFrames.

    Args:
        events: Snapshot of one day's events (not modified)

    Returns:
        Dict of sheet name -> DataFrame
    """
    ordered = sorted(events, key=lambda e: (e.captured_at_epoch_ms, e.identity_key))

    detail = pd.DataFrame(
        [
            [
                _local_time(e.captured_at_iso), e.client, e.address, e.locality, e.region,
                e.order_ref, e.invoice_id, e.package_index,
                e.expected_package_count or "", e.carrier, e.operator, e.identity_key,
            ]
            for e in ordered
        ],
        columns=DETAIL_COLUMNS,
    )

    clients = pd.DataFrame(
        [
            [s.client, s.invoice_count, s.scanned_count, s.expected_count, s.complete_invoices]
            for s in summarize_by_client(ordered)
        ],
        columns=CLIENT_COLUMNS,
    )

    invoices = pd.DataFrame(
        [
            [
                s.invoice_id, s.client, s.scanned_count, s.expected_count or "?",
                STATUS_COMPLETE if s.complete else STATUS_INCOMPLETE,
            ]
            for s in summarize(ordered)
        ],
        columns=INVOICE_COLUMNS,
    )

    frames = {SHEET_DETAIL: detail, SHEET_CLIENTS: clients, SHEET_INVOICES: invoices}
    for df in frames.values():
        for column in df.columns:
            df[column] = df[column].map(_cell_value)
    return frames


def export_day_report(events: Iterable[ScanEvent], day_key: str,
                      output_dir: Union[str, Path], filename: Optional[str] = None) -> Path:
    """
    Write the day's workbook to output_dir.

    Returns:
        Path of the written .xlsx file

    Raises:
        ReportGenerationError: If there is nothing to export or the file cannot be written
    """
    events = list(events)
    if not events:
        raise ReportGenerationError(f"no scans recorded for {day_key}")

    output_path = Path(output_dir) / (filename or report_filename(day_key))
    logger.info(f"Exporting {len(events)} scans for {day_key} to {output_path}")

    try:
        frames = build_report_frames(events)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with pd.ExcelWriter(output_path, engine='openpyxl') as writer:
            for sheet_name, df in frames.items():
                df.to_excel(writer, index=False, sheet_name=sheet_name)

            detail_sheet = writer.sheets[SHEET_DETAIL]
            for idx, width in enumerate(DETAIL_WIDTHS, start=1):
                detail_sheet.column_dimensions[get_column_letter(idx)].width = width

            client_sheet = writer.sheets[SHEET_CLIENTS]
            client_sheet.column_dimensions["A"].width = 30
            for letter in "BCDE":
                client_sheet.column_dimensions[letter].width = 18

            invoice_sheet = writer.sheets[SHEET_INVOICES]
            status_col_idx = INVOICE_COLUMNS.index("Estado") + 1
            for row in invoice_sheet.iter_rows(min_row=2, max_row=invoice_sheet.max_row):
                if row[status_col_idx - 1].value == STATUS_COMPLETE:
                    for cell in row:
                        cell.fill = COMPLETE_FILL

    except (OSError, ValueError, IllegalCharacterError) as e:
        logger.error(f"Failed to export report: {e}", exc_info=True)
        raise ReportGenerationError(f"could not write {output_path.name}: {e}") from e

    logger.info(f"Report saved: {output_path}")
    return output_path
