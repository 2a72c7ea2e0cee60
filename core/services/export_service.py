"""
Accounting exports of invoices: CSV for spreadsheets, FEC for accountants.

Read-only reports derived from invoice rows. The FEC writes one balanced
sales-journal entry per invoice: client debit (411000) against VAT
collected (445710) and services revenue (706000).
"""

import csv
import io
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable
from uuid import UUID

from core.database import BillingDatabase
from core.exceptions import DocumentValidationError

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("csv", "fec")

CSV_HEADERS = [
    "Numéro", "Client", "Email", "Date Émission", "Date Échéance", "Date Paiement",
    "Montant HT", "TVA", "Total TTC", "Montant Payé", "Devise", "Statut",
]

FEC_HEADERS = [
    "JournalCode", "JournalLib", "EcritureNum", "EcritureDate", "CompteNum", "CompteLib",
    "CompAuxNum", "CompAuxLib", "PieceRef", "PieceDate", "EcritureLib", "Debit", "Credit",
    "EcritureLet", "DateLet", "ValidDate", "Montantdevise", "Idevise",
]

FEC_JOURNAL = ("VE", "Journal des Ventes")
ACCOUNT_CLIENTS = ("411000", "Clients")
ACCOUNT_VAT_COLLECTED = ("445710", "TVA Collectée")
ACCOUNT_SERVICES = ("706000", "Prestations de services")


@dataclass(frozen=True)
class ExportFile:
    content: str
    content_type: str
    filename: str


def _amount(cents: int | None, decimal_comma: bool = False) -> str:
    value = f"{(cents or 0) / 100:.2f}"
    return value.replace(".", ",") if decimal_comma else value


def _as_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


def _fr_date(value: Any) -> str:
    day = _as_date(value)
    return day.strftime("%d/%m/%Y") if day else ""


def _fec_date(value: Any) -> str:
    day = _as_date(value)
    return day.strftime("%Y%m%d") if day else ""


def invoices_to_csv(rows: Iterable[dict[str, Any]]) -> str:
    """Comma-separated export with French headers and dot decimals."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for row in rows:
        writer.writerow([
            row["number"],
            row.get("client_name") or "N/A",
            row.get("client_email") or "",
            _fr_date(row.get("issue_date")),
            _fr_date(row.get("due_date")),
            _fr_date(row.get("paid_at")),
            _amount(row.get("subtotal_cents")),
            _amount(row.get("vat_amount_cents")),
            _amount(row.get("total_cents")),
            _amount(row.get("paid_cents")),
            row.get("currency") or "EUR",
            row["status"],
        ])
    return buffer.getvalue()


def _fec_line(
    entry_number: int,
    entry_date: str,
    account: tuple[str, str],
    client_name: str,
    reference: str,
    label: str,
    debit: int,
    credit: int,
    currency: str,
) -> list[str]:
    return [
        FEC_JOURNAL[0], FEC_JOURNAL[1], str(entry_number), entry_date,
        account[0], account[1], "", client_name,
        reference, entry_date, label,
        _amount(debit, decimal_comma=True), _amount(credit, decimal_comma=True),
        "", "", entry_date,
        _amount(debit or credit, decimal_comma=True), currency,
    ]


def invoices_to_fec(rows: Iterable[dict[str, Any]]) -> str:
    """Tab-separated FEC with comma decimals. Each entry balances."""
    lines = ["\t".join(FEC_HEADERS)]
    for entry_number, row in enumerate(rows, start=1):
        number = row["number"]
        entry_date = _fec_date(row.get("issue_date"))
        client_name = row.get("client_name") or "Client"
        currency = row.get("currency") or "EUR"
        total = row.get("total_cents") or 0
        vat = row.get("vat_amount_cents") or 0
        subtotal = row.get("subtotal_cents") or 0

        entry = [
            _fec_line(entry_number, entry_date, ACCOUNT_CLIENTS, client_name, number,
                      f"Facture {number}", debit=total, credit=0, currency=currency),
        ]
        if vat > 0:
            entry.append(_fec_line(entry_number, entry_date, ACCOUNT_VAT_COLLECTED, "", number,
                                   f"TVA Facture {number}", debit=0, credit=vat, currency=currency))
        entry.append(_fec_line(entry_number, entry_date, ACCOUNT_SERVICES, "", number,
                               f"Prestation Facture {number}", debit=0, credit=subtotal, currency=currency))

        # Tabs and newlines would break the flat file
        lines.extend(
            "\t".join(field.replace("\t", " ").replace("\n", " ") for field in line)
            for line in entry
        )
    return "\n".join(lines) + "\n"


def export_filename(export_format: str, start: date | None = None, end: date | None = None) -> str:
    parts = ["factures"]
    if start:
        parts.append(start.isoformat())
    if end:
        parts.append(end.isoformat())
    extension = "txt" if export_format == "fec" else "csv"
    prefix = "FEC_" if export_format == "fec" else ""
    return f"{prefix}{'_'.join(parts)}.{extension}"


class ExportService:
    """Builds invoice export files for an organization."""

    def __init__(self, db: BillingDatabase):
        self.db = db

    def export_invoices(
        self,
        organization_id: UUID,
        export_format: str = "csv",
        start: date | None = None,
        end: date | None = None,
        status: str | None = None,
    ) -> ExportFile:
        """
        Raises:
            DocumentValidationError: Unknown format or start after end
        """
        if export_format not in EXPORT_FORMATS:
            raise DocumentValidationError(f"Unknown export format '{export_format}'")
        if start and end and start > end:
            raise DocumentValidationError("Export start date is after its end date")
        if status == "all":
            status = None

        rows = self.db.list_invoices_for_export(organization_id, start, end, status)
        logger.info("Exporting %s invoices as %s for org %s", len(rows), export_format, organization_id)

        if export_format == "fec":
            return ExportFile(
                content=invoices_to_fec(rows),
                content_type="text/plain; charset=utf-8",
                filename=export_filename("fec", start, end),
            )
        return ExportFile(
            content=invoices_to_csv(rows),
            content_type="text/csv; charset=utf-8",
            filename=export_filename("csv", start, end),
        )
