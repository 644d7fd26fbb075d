"""
Reconciliation of scanned boxes against expected box counts.

All functions here are pure: they take a snapshot of ScanEvents (usually
one day from LedgerStore.query_by_day) and derive rollups from it. Nothing
is stored, and the input is never modified.

Counting rules:
- A box is (invoice, package number). Scanning box 3 twice still counts
  one box, even when the ledger keeps both scans.
- The expected count of an invoice is the largest "total boxes" printed on
  any of its labels, so one mislabeled box cannot lower it.
- An invoice with no known expected count is never complete.
"""

import unicodedata
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from scan_ledger import ScanEvent

NO_CLIENT = "SIN CLIENTE"


@dataclass(frozen=True)
class InvoiceStatus:
    invoice_id: str
    client: str
    scanned_count: int
    expected_count: int
    complete: bool

    @property
    def missing_count(self) -> int:
        return max(self.expected_count - self.scanned_count, 0)


@dataclass(frozen=True)
class ClientSummary:
    """
    Per-client rollup.

    Attributes:
        client: Normalized client name (upper-case, single spaces)
        invoice_count: Distinct invoices seen for the client
        scanned_count: Distinct boxes seen
        scan_count: Raw number of scans, repeats included
        expected_count: Sum of each invoice's expected count, counted once per invoice
        complete_invoices: Invoices whose boxes are all scanned
    """
    client: str
    invoice_count: int
    scanned_count: int
    scan_count: int
    expected_count: int
    complete_invoices: int


@dataclass(frozen=True)
class DayOverview:
    """Header figures of the scan screen."""
    total_scans: int
    invoice_count: int
    box_count: int
    latest: Optional[ScanEvent]
    recent: List[ScanEvent] = field(default_factory=list)


@dataclass
class _Group:
    display_id: str = ""
    client: str = ""
    packages: Set[int] = field(default_factory=set)
    expected: int = 0
    scans: int = 0

    def add(self, event: ScanEvent) -> None:
        if not self.display_id and event.invoice_id.strip():
            self.display_id = event.invoice_id.strip()
        if not self.client and event.client.strip():
            self.client = event.client.strip()
        self.packages.add(event.package_index)
        self.expected = max(self.expected, event.expected_package_count or 0)
        self.scans += 1

    @property
    def complete(self) -> bool:
        return self.expected > 0 and len(self.packages) >= self.expected


def collation_key(text: str) -> Tuple[str, str]:
    """
    Sort key that ignores case and accents ("Álvarez" sorts with "alvarez"),
    falling back to the exact text so ties are still deterministic.
    """
    decomposed = unicodedata.normalize("NFKD", text)
    base = "".join(c for c in decomposed if not unicodedata.combining(c))
    return base.casefold(), text


def normalize_client(client: str) -> str:
    name = " ".join((client or "").split()).upper()
    return name or NO_CLIENT


def _invoice_key(event: ScanEvent) -> str:
    return event.invoice_id.strip().lower()


def _capture_order(events: Iterable[ScanEvent]) -> List[ScanEvent]:
    # "First seen" values must not depend on the order the caller passed in
    return sorted(events, key=lambda e: (e.captured_at_epoch_ms, e.identity_key))


def _group_by_invoice(events: List[ScanEvent]) -> "OrderedDict[str, _Group]":
    groups: "OrderedDict[str, _Group]" = OrderedDict()
    for event in events:
        groups.setdefault(_invoice_key(event), _Group()).add(event)
    return groups


def summarize(events: Iterable[ScanEvent]) -> List[InvoiceStatus]:
    """
    Per-invoice completion status.

    Returns:
        One InvoiceStatus per invoice, sorted by invoice id (case- and
        accent-insensitive)
    """
    groups = _group_by_invoice(_capture_order(events))

    statuses = [
        InvoiceStatus(
            invoice_id=group.display_id or key,
            client=group.client,
            scanned_count=len(group.packages),
            expected_count=group.expected,
            complete=group.complete,
        )
        for key, group in groups.items()
    ]
    return sorted(statuses, key=lambda s: collation_key(s.invoice_id))


def summarize_by_client(events: Iterable[ScanEvent]) -> List[ClientSummary]:
    """Per-client rollup, sorted by normalized client name."""
    by_client: Dict[str, "OrderedDict[str, _Group]"] = {}
    for event in _capture_order(events):
        invoices = by_client.setdefault(normalize_client(event.client), OrderedDict())
        invoices.setdefault(_invoice_key(event), _Group()).add(event)

    summaries = []
    for client, invoices in by_client.items():
        summaries.append(ClientSummary(
            client=client,
            invoice_count=len(invoices),
            scanned_count=sum(len(g.packages) for g in invoices.values()),
            scan_count=sum(g.scans for g in invoices.values()),
            expected_count=sum(g.expected for g in invoices.values()),
            complete_invoices=sum(1 for g in invoices.values() if g.complete),
        ))
    return sorted(summaries, key=lambda s: collation_key(s.client))


def day_overview(events: Iterable[ScanEvent], recent_limit: int = 10) -> DayOverview:
    ordered = _capture_order(events)
    newest_first = list(reversed(ordered))
    boxes = {(_invoice_key(e), e.package_index) for e in ordered}
    return DayOverview(
        total_scans=len(ordered),
        invoice_count=len({_invoice_key(e) for e in ordered}),
        box_count=len(boxes),
        latest=newest_first[0] if newest_first else None,
        recent=newest_first[:recent_limit],
    )
