"""
In-memory stand-ins for the store and the cache.

FakeBillingDatabase mirrors BillingDatabase method for method, including
the behaviours tests depend on: transactions that roll back on exception,
compare-and-swap transitions, unique payment references, the webhook
ledger and duplicate document numbers.
"""

import copy
import json
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from core.exceptions import DocumentValidationError
from core.models import (
    DocumentSequence,
    DocumentType,
    Invoice,
    LineItem,
    LineItemInput,
    Notification,
    NotificationCreate,
    Organization,
    Payment,
    Quote,
    SequenceSettings,
)
from core.plans import Plan
from utils.timezone import now_utc

_MODELS = {DocumentType.QUOTE: Quote, DocumentType.INVOICE: Invoice}

_STATE = (
    "organizations", "documents", "items", "sequences", "payments",
    "webhook_events", "notifications", "members", "contacts", "companies", "projects",
)


class FakeBillingDatabase:
    """Dict-backed BillingDatabase."""

    def __init__(self):
        self.organizations: dict[UUID, dict] = {}
        self.documents: dict[DocumentType, dict[UUID, dict]] = {t: {} for t in DocumentType}
        self.items: dict[UUID, list[dict]] = {}
        self.sequences: dict[tuple[UUID, DocumentType], dict] = {}
        self.payments: dict[str, dict] = {}
        self.webhook_events: dict[str, str] = {}
        self.notifications: list[dict] = []
        self.members: dict[UUID, list[UUID]] = {}
        self.contacts: dict[UUID, dict] = {}
        self.companies: dict[UUID, dict] = {}
        self.projects: dict[UUID, int] = {}

        self.in_transaction = False
        self.commits = 0
        self.rollbacks = 0
        self.failing_notification_users: set[UUID] = set()

    # =========================================================================
    # TEST SETUP HELPERS
    # =========================================================================

    def add_organization(self, organization_id: UUID | None = None, **fields) -> Organization:
        row = {
            "id": organization_id or uuid4(),
            "name": "Atelier Test",
            "plan": Plan.STARTER,
            "monthly_invoice_count": 0,
            "last_invoice_reset_date": None,
            "stripe_account_id": None,
            "stripe_secret_key_encrypted": None,
            "stripe_publishable_key": None,
            "commission_rate": Decimal("0"),
            "created_at": now_utc(),
            "updated_at": now_utc(),
        }
        row.update(fields)
        self.organizations[row["id"]] = row
        return Organization.model_validate(row)

    def add_member(self, organization_id: UUID, user_id: UUID | None = None) -> UUID:
        user_id = user_id or uuid4()
        self.members.setdefault(organization_id, []).append(user_id)
        return user_id

    def add_contact(
        self,
        organization_id: UUID,
        email: str | None = "client@example.com",
        first_name: str = "Marie",
        last_name: str = "Curie",
    ) -> UUID:
        contact_id = uuid4()
        self.contacts[contact_id] = {
            "organization_id": organization_id,
            "email": email,
            "first_name": first_name,
            "last_name": last_name,
            "deleted_at": None,
        }
        return contact_id

    def add_company(self, organization_id: UUID, name: str, email: str | None = None) -> UUID:
        company_id = uuid4()
        self.companies[company_id] = {
            "organization_id": organization_id,
            "name": name,
            "email": email,
            "deleted_at": None,
        }
        return company_id

    def set_status(self, document_type: DocumentType, document_id: UUID, status: str, **fields) -> None:
        """Force a document into a status, bypassing the state machine."""
        self.documents[document_type][document_id].update(status=status, **fields)

    def row(self, document_type: DocumentType, document_id: UUID) -> dict:
        return self.documents[document_type][document_id]

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    @contextmanager
    def transaction(self):
        if self.in_transaction:
            yield self
            return

        snapshot = {name: copy.deepcopy(getattr(self, name)) for name in _STATE}
        self.in_transaction = True
        try:
            yield self
        except Exception:
            for name, value in snapshot.items():
                setattr(self, name, value)
            self.rollbacks += 1
            raise
        else:
            self.commits += 1
        finally:
            self.in_transaction = False

    # =========================================================================
    # ORGANIZATIONS
    # =========================================================================

    def get_organization(self, organization_id: UUID) -> Organization | None:
        row = self.organizations.get(organization_id)
        return Organization.model_validate(row) if row else None

    def get_organization_for_update(self, organization_id: UUID) -> Organization | None:
        return self.get_organization(organization_id)

    def get_organization_by_stripe_account(self, account_id: str) -> Organization | None:
        for row in self.organizations.values():
            if row["stripe_account_id"] == account_id:
                return Organization.model_validate(row)
        return None

    def reset_invoice_counter(self, organization_id: UUID, reset_at: datetime) -> None:
        self.organizations[organization_id].update(monthly_invoice_count=0, last_invoice_reset_date=reset_at)

    def increment_invoice_counter(self, organization_id: UUID) -> int:
        row = self.organizations[organization_id]
        row["monthly_invoice_count"] += 1
        return row["monthly_invoice_count"]

    def set_stripe_account(self, organization_id: UUID, account_id: str) -> None:
        self.organizations[organization_id]["stripe_account_id"] = account_id

    def set_stripe_keys(
        self,
        organization_id: UUID,
        secret_key_encrypted: str | None,
        publishable_key: str | None,
    ) -> None:
        self.organizations[organization_id].update(
            stripe_secret_key_encrypted=secret_key_encrypted,
            stripe_publishable_key=publishable_key,
        )

    def set_plan(self, organization_id: UUID, plan: Plan, commission_rate: Decimal) -> Organization | None:
        row = self.organizations.get(organization_id)
        if row is None:
            return None
        row.update(plan=plan, commission_rate=commission_rate, updated_at=now_utc())
        return Organization.model_validate(row)

    def list_member_ids(self, organization_id: UUID) -> list[UUID]:
        return list(self.members.get(organization_id, []))

    # =========================================================================
    # QUOTA COUNTS
    # =========================================================================

    def count_documents_created_since(
        self,
        document_type: DocumentType,
        organization_id: UUID,
        since: datetime,
    ) -> int:
        return sum(
            1 for row in self.documents[document_type].values()
            if row["organization_id"] == organization_id and row["created_at"] >= since
        )

    def count_active(self, table: str, organization_id: UUID) -> int:
        if table == "contacts":
            return sum(
                1 for row in self.contacts.values()
                if row["organization_id"] == organization_id and row["deleted_at"] is None
            )
        if table == "projects":
            return self.projects.get(organization_id, 0)
        raise ValueError(f"Cannot count table {table}")

    def get_client_email(
        self,
        organization_id: UUID,
        contact_id: UUID | None,
        company_id: UUID | None,
    ) -> str | None:
        contact = self.contacts.get(contact_id)
        if contact and contact["organization_id"] == organization_id and contact["email"]:
            return contact["email"]
        company = self.companies.get(company_id)
        if company and company["organization_id"] == organization_id:
            return company["email"]
        return None

    # =========================================================================
    # DOCUMENT SEQUENCES
    # =========================================================================

    def ensure_sequence(
        self,
        organization_id: UUID,
        document_type: DocumentType,
        prefix: str,
        padding_length: int,
    ) -> None:
        self.sequences.setdefault((organization_id, document_type), {
            "id": uuid4(),
            "organization_id": organization_id,
            "document_type": document_type,
            "prefix": prefix,
            "suffix": "",
            "current_number": 1,
            "padding_length": padding_length,
            "include_year": True,
            "updated_at": now_utc(),
        })

    def advance_sequence(self, organization_id: UUID, document_type: DocumentType) -> DocumentSequence:
        row = self.sequences.get((organization_id, document_type))
        if row is None:
            raise RuntimeError(f"Sequence missing for {document_type.value} in {organization_id}")
        issued = DocumentSequence.model_validate(row)
        row["current_number"] += 1
        return issued

    def get_sequence(self, organization_id: UUID, document_type: DocumentType) -> DocumentSequence | None:
        row = self.sequences.get((organization_id, document_type))
        return DocumentSequence.model_validate(row) if row else None

    def list_sequences(self, organization_id: UUID) -> list[DocumentSequence]:
        return [
            DocumentSequence.model_validate(row)
            for (org_id, _), row in sorted(self.sequences.items(), key=lambda kv: kv[0][1].value)
            if org_id == organization_id
        ]

    def update_sequence(self, organization_id: UUID, settings: SequenceSettings) -> DocumentSequence | None:
        row = self.sequences.get((organization_id, settings.document_type))
        if row is None or row["current_number"] > settings.current_number:
            return None
        row.update(settings.model_dump(exclude={"document_type"}), updated_at=now_utc())
        return DocumentSequence.model_validate(row)

    # =========================================================================
    # DOCUMENTS
    # =========================================================================

    def _model(self, document_type: DocumentType, row: dict | None, with_items: bool = True):
        if row is None:
            return None
        document = _MODELS[document_type].model_validate(row)
        if with_items:
            document.items = self.get_items(document_type, document.id)
        return document

    def insert_document(self, document_type: DocumentType, values: dict[str, Any]):
        for row in self.documents[document_type].values():
            if row["organization_id"] == values["organization_id"] and row["number"] == values["number"]:
                raise DocumentValidationError(
                    f"Number {values['number']} is already used; adjust the numbering settings"
                )
        row = {"deleted_at": None, **values}
        if document_type == DocumentType.QUOTE:
            row.setdefault("view_count", 0)
        self.documents[document_type][row["id"]] = row
        return self._model(document_type, row, with_items=False)

    def replace_items(
        self,
        document_type: DocumentType,
        document_id: UUID,
        items: list[dict[str, Any]],
    ) -> list[LineItem]:
        self.items[document_id] = [
            {"id": uuid4(), "document_id": document_id, "position": position, **item}
            for position, item in enumerate(items)
        ]
        return self.get_items(document_type, document_id)

    def get_items(self, document_type: DocumentType, document_id: UUID) -> list[LineItem]:
        return [LineItem.model_validate(item) for item in self.items.get(document_id, [])]

    def _active_row(self, document_type: DocumentType, document_id: UUID) -> dict | None:
        row = self.documents[document_type].get(document_id)
        return row if row and row["deleted_at"] is None else None

    def get_document(
        self,
        document_type: DocumentType,
        organization_id: UUID,
        document_id: UUID,
        with_items: bool = True,
    ):
        row = self._active_row(document_type, document_id)
        if row is None or row["organization_id"] != organization_id:
            return None
        return self._model(document_type, row, with_items)

    def get_document_unscoped(self, document_type: DocumentType, document_id: UUID):
        return self._model(document_type, self._active_row(document_type, document_id))

    def list_documents(
        self,
        document_type: DocumentType,
        organization_id: UUID,
        status: str | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list:
        rows = [
            row for row in self.documents[document_type].values()
            if row["organization_id"] == organization_id and row["deleted_at"] is None
            and (status is None or row["status"] == status)
            and (search is None or search.lower() in f"{row['number']} {row.get('title') or ''}".lower())
        ]
        rows.sort(key=lambda row: row["created_at"], reverse=True)
        return [self._model(document_type, row, with_items=False) for row in rows[offset:offset + limit]]

    def update_document(
        self,
        document_type: DocumentType,
        organization_id: UUID,
        document_id: UUID,
        fields: dict[str, Any],
        expected_status: str,
    ):
        return self.transition(
            document_type, organization_id, document_id,
            from_statuses=(expected_status,), to_status=expected_status, fields=fields,
        )

    def transition(
        self,
        document_type: DocumentType,
        organization_id: UUID,
        document_id: UUID,
        from_statuses: tuple[str, ...],
        to_status: str,
        fields: dict[str, Any] | None = None,
    ):
        row = self._active_row(document_type, document_id)
        if row is None or row["organization_id"] != organization_id or row["status"] not in from_statuses:
            return None
        row.update(fields or {})
        row.update(status=to_status, updated_at=now_utc())
        return self._model(document_type, row)

    def soft_delete(self, document_type: DocumentType, organization_id: UUID, document_id: UUID) -> bool:
        row = self._active_row(document_type, document_id)
        if row is None or row["organization_id"] != organization_id:
            return False
        row["deleted_at"] = now_utc()
        return True

    def list_deleted_documents(
        self,
        document_type: DocumentType,
        organization_id: UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> list:
        rows = [
            row for row in self.documents[document_type].values()
            if row["organization_id"] == organization_id and row["deleted_at"] is not None
        ]
        rows.sort(key=lambda row: row["deleted_at"], reverse=True)
        return [self._model(document_type, row, with_items=False) for row in rows[offset:offset + limit]]

    def restore_document(self, document_type: DocumentType, organization_id: UUID, document_id: UUID):
        row = self.documents[document_type].get(document_id)
        if row is None or row["organization_id"] != organization_id or row["deleted_at"] is None:
            return None
        row.update(deleted_at=None, updated_at=now_utc())
        return self._model(document_type, row)

    def increment_quote_views(self, quote_id: UUID) -> None:
        row = self._active_row(DocumentType.QUOTE, quote_id)
        if row is not None:
            row["view_count"] += 1

    def list_overdue_invoices(self, today: date, limit: int = 500) -> list[Invoice]:
        rows = [
            row for row in self.documents[DocumentType.INVOICE].values()
            if row["deleted_at"] is None and row["status"] == "sent"
            and row.get("due_date") and row["due_date"] < today
        ]
        return [self._model(DocumentType.INVOICE, row, with_items=False) for row in rows[:limit]]

    def list_expired_quotes(self, today: date, limit: int = 500) -> list[Quote]:
        rows = [
            row for row in self.documents[DocumentType.QUOTE].values()
            if row["deleted_at"] is None and row["status"] == "sent"
            and row.get("valid_until") and row["valid_until"] < today
        ]
        return [self._model(DocumentType.QUOTE, row, with_items=False) for row in rows[:limit]]

    def _client_name(self, row: dict) -> str | None:
        company = self.companies.get(row.get("company_id"))
        if company:
            return company["name"]
        contact = self.contacts.get(row.get("contact_id"))
        if contact:
            return f"{contact['first_name']} {contact['last_name']}".strip() or None
        return None

    def list_invoices_for_export(
        self,
        organization_id: UUID,
        start: date | None,
        end: date | None,
        status: str | None,
    ) -> list[dict[str, Any]]:
        rows = []
        for row in self.documents[DocumentType.INVOICE].values():
            if row["organization_id"] != organization_id or row["deleted_at"] is not None:
                continue
            if (start and row["issue_date"] < start) or (end and row["issue_date"] > end):
                continue
            if status and row["status"] != status:
                continue
            rows.append({
                **row,
                "client_name": self._client_name(row),
                "client_email": self.get_client_email(organization_id, row.get("contact_id"), row.get("company_id")),
                "paid_cents": sum(
                    p["amount_cents"] for p in self.payments.values() if p["invoice_id"] == row["id"]
                ),
            })
        rows.sort(key=lambda row: (row["issue_date"], row["number"]))
        return rows

    # =========================================================================
    # PAYMENTS AND WEBHOOK LEDGER
    # =========================================================================

    def record_webhook_event(self, reference: str, event_type: str) -> bool:
        if reference in self.webhook_events:
            return False
        self.webhook_events[reference] = event_type
        return True

    def insert_payment(self, values: dict[str, Any]) -> Payment | None:
        if values["reference"] in self.payments:
            return None
        self.payments[values["reference"]] = dict(values)
        return Payment.model_validate(values)

    def get_payment_by_reference(self, reference: str) -> Payment | None:
        row = self.payments.get(reference)
        return Payment.model_validate(row) if row else None

    def get_payment_by_payment_intent(self, payment_intent_id: str) -> Payment | None:
        for row in self.payments.values():
            if row["stripe_payment_intent_id"] == payment_intent_id:
                return Payment.model_validate(row)
        return None

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    def insert_notification(self, data: NotificationCreate) -> Notification:
        if data.user_id in self.failing_notification_users:
            raise RuntimeError(f"insert failed for user {data.user_id}")
        row = {**data.model_dump(), "id": uuid4(), "read_at": None, "created_at": now_utc()}
        self.notifications.append(row)
        return Notification.model_validate(row)

    def list_notifications(
        self,
        organization_id: UUID,
        user_id: UUID,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        rows = [
            row for row in reversed(self.notifications)
            if row["organization_id"] == organization_id and row["user_id"] == user_id
            and (not unread_only or row["read_at"] is None)
        ]
        return [Notification.model_validate(row) for row in rows[:limit]]

    def mark_notification_read(self, organization_id: UUID, user_id: UUID, notification_id: UUID) -> bool:
        for row in self.notifications:
            if (row["id"] == notification_id and row["organization_id"] == organization_id
                    and row["user_id"] == user_id and row["read_at"] is None):
                row["read_at"] = now_utc()
                return True
        return False


class FakeValkey:
    """Dict-backed ValkeyClient. TTLs are recorded, never elapsed."""

    def __init__(self):
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def set(self, key: str, value: str, expire_seconds: int | None = None) -> None:
        self.values[key] = value
        if expire_seconds:
            self.ttls[key] = expire_seconds
        else:
            self.ttls.pop(key, None)

    def delete(self, key: str) -> bool:
        self.ttls.pop(key, None)
        return self.values.pop(key, None) is not None

    def ttl(self, key: str) -> int:
        if key not in self.values:
            return -2
        return self.ttls.get(key, -1)

    def expire(self, key: str, seconds: int) -> bool:
        if key not in self.values:
            return False
        self.ttls[key] = seconds
        return True

    def incr(self, key: str) -> int:
        value = int(self.values.get(key, "0")) + 1
        self.values[key] = str(value)
        return value

    def set_json(self, key: str, value: dict | list, expire_seconds: int | None = None) -> None:
        self.set(key, json.dumps(value), expire_seconds)

    def get_json(self, key: str) -> dict | list | None:
        raw = self.get(key)
        return json.loads(raw) if raw is not None else None


def line_item(unit_price_cents: int = 10000, quantity: str = "1", vat_rate: str = "20") -> LineItemInput:
    """One line item input; 100,00 € HT at 20% VAT by default."""
    return LineItemInput(
        description="Développement site vitrine",
        quantity=Decimal(quantity),
        unit_price_cents=unit_price_cents,
        vat_rate=Decimal(vat_rate),
    )
