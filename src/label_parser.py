"""
Label parser - turns decoded QR/barcode text into a ScanRecord.

Shipping labels have been printed in three encodings over time, and boxes
with all three are still in circulation:

1. Structured object (JSON):
       {"cliente": "ACME", "factura": "A100", "bulto": 2, "total_bultos": 5}
2. Tagged key=value pairs joined by "|":
       OC=778|FAC=A100|B=2|T=5|CL=ACME|DI=Av. Siempre Viva 742|LO=Rosario|PR=Santa Fe|TR=Andreani
3. Positional pipe form (legacy):
       ACME|Av. Siempre Viva 742|Rosario|Santa Fe|778|A100|2|5|Andreani

The parser tries them in that order. All three produce the same ScanRecord
for the same label data.
"""

import json
import math
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from exceptions import InvalidLabelError
from logger import get_logger

logger = get_logger(__name__)

# Synonym keys accepted in the structured-object form, in lookup order
OBJECT_KEYS: Dict[str, List[str]] = {
    'client': ['client', 'cliente'],
    'address': ['address', 'direccion'],
    'locality': ['locality', 'localidad'],
    'region': ['region', 'provincia'],
    'order_ref': ['orderRef', 'orden'],
    'invoice_id': ['invoice', 'invoiceId', 'fac', 'factura'],
    'package_index': ['packageIndex', 'bulto', 'b'],
    'expected_package_count': ['expectedPackageCount', 'total', 'total_bultos'],
    'carrier': ['carrier', 'transporte'],
}

# Tags of the key=value form (case-insensitive)
PIPE_TAGS: Dict[str, str] = {
    'OC': 'order_ref',
    'FAC': 'invoice_id',
    'B': 'package_index',
    'T': 'expected_package_count',
    'CL': 'client',
    'DI': 'address',
    'LO': 'locality',
    'PR': 'region',
    'TR': 'carrier',
}

# Field order of the legacy positional form
POSITIONAL_FIELDS = [
    'client', 'address', 'locality', 'region', 'order_ref',
    'invoice_id', 'package_index', 'expected_package_count', 'carrier',
]
MIN_POSITIONAL_FIELDS = 7

# Largest value a SQLite INTEGER column can hold
MAX_COUNT = 2 ** 63 - 1


@dataclass(frozen=True)
class ScanRecord:
    """Canonical content of one package label."""
    invoice_id: str
    package_index: int
    client: str = ""
    address: str = ""
    locality: str = ""
    region: str = ""
    order_ref: str = ""
    expected_package_count: int = 0
    carrier: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @property
    def box_label(self) -> str:
        """Short "invoice-package" text shown to the operator."""
        return f"{self.invoice_id}-{self.package_index}"


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _to_int(value: Any) -> Optional[int]:
    """
    Coerce a label value to an integer.

    Accepts "3", " 3 ", 3, 3.0 and "3.0". Anything else (text, NaN,
    infinity, 3.5, booleans) returns None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number) or not number.is_integer():
        return None
    return int(number)


def _build_record(fields: Dict[str, Any], raw_text: str, missing_message: str) -> ScanRecord:
    """Validate invoice/package and coerce the numeric fields."""
    invoice_id = _clean(fields.get('invoice_id'))
    package_raw = _clean(fields.get('package_index'))
    if not invoice_id or not package_raw:
        raise InvalidLabelError(missing_message, raw_text=raw_text)

    package_index = _to_int(package_raw)
    if package_index is None or package_index <= 0:
        raise InvalidLabelError(
            f"package number must be a positive integer, got '{package_raw}'",
            raw_text=raw_text,
        )
    if package_index > MAX_COUNT:
        raise InvalidLabelError(f"package number out of range: '{package_raw}'", raw_text=raw_text)

    expected = _to_int(fields.get('expected_package_count'))
    if expected is not None and expected > MAX_COUNT:
        logger.warning(f"Expected box count out of range ({expected}), treated as unknown")
        expected = 0
    if expected is None or expected < 0:
        expected = 0

    return ScanRecord(
        invoice_id=invoice_id,
        package_index=package_index,
        client=_clean(fields.get('client')),
        address=_clean(fields.get('address')),
        locality=_clean(fields.get('locality')),
        region=_clean(fields.get('region')),
        order_ref=_clean(fields.get('order_ref')),
        expected_package_count=expected,
        carrier=_clean(fields.get('carrier')),
    )


def _parse_object(text: str) -> ScanRecord:
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidLabelError(f"malformed label object: {e.msg}", raw_text=text) from e

    if not isinstance(obj, dict):
        raise InvalidLabelError("label object is not a key/value map", raw_text=text)

    fields = {}
    for field, keys in OBJECT_KEYS.items():
        for key in keys:
            if obj.get(key) is not None:
                fields[field] = obj[key]
                break

    return _build_record(fields, text, "missing invoice or package number")


def _split_tagged(text: str) -> Dict[str, str]:
    """Split "K=V|K=V" into an upper-cased tag dict; parts without "=" are skipped."""
    tags = {}
    for part in text.split("|"):
        key, sep, value = part.partition("=")
        if not sep:
            continue
        tags[key.strip().upper()] = value.strip()
    return tags


def _looks_tagged(text: str) -> bool:
    return "=" in text and any(tag in PIPE_TAGS for tag in _split_tagged(text))


def _parse_tagged(text: str) -> ScanRecord:
    tags = _split_tagged(text)
    fields = {field: tags[tag] for tag, field in PIPE_TAGS.items() if tag in tags}
    return _build_record(fields, text, "missing FAC or B")


def _parse_positional(text: str) -> ScanRecord:
    parts = text.split("|")
    if len(parts) > len(POSITIONAL_FIELDS):
        logger.debug(f"Positional label has {len(parts)} fields, ignoring {len(parts) - len(POSITIONAL_FIELDS)} extra")
    fields = dict(zip(POSITIONAL_FIELDS, parts))
    return _build_record(fields, text, "missing invoice or package number")


def parse_label(raw_text: Optional[str]) -> ScanRecord:
    """
    Parse decoded label text into a ScanRecord.

    Args:
        raw_text: Text emitted by the scanner/camera

    Returns:
        ScanRecord with trimmed strings and integer counts

    Raises:
        InvalidLabelError: If no format matches or invoice/package is missing
    """
    text = (raw_text or "").strip()
    if not text:
        raise InvalidLabelError("empty label", raw_text=raw_text)

    if text.startswith("{") and text.endswith("}"):
        record = _parse_object(text)
        label_format = "object"
    elif "|" in text and _looks_tagged(text):
        record = _parse_tagged(text)
        label_format = "tagged"
    elif text.count("|") + 1 >= MIN_POSITIONAL_FIELDS:
        record = _parse_positional(text)
        label_format = "positional"
    else:
        raise InvalidLabelError("unrecognized format", raw_text=raw_text)

    logger.debug(f"Parsed {label_format} label: {record.box_label}")
    return record


class LabelParser:
    """Injectable wrapper around parse_label() for the session controller."""

    def parse(self, raw_text: str) -> ScanRecord:
        return parse_label(raw_text)
