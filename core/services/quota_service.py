"""
Plan quota enforcement.

Invoices use a stored monthly counter on the organization that resets
lazily: the first check in a new calendar month (UTC) zeroes it. Quotes are
counted from rows created since the start of the month. Contacts and
projects are absolute ceilings counted from live rows, so there is no
counter to drift.

Checks lock the organization row, so when the reservation runs inside the
creating transaction, concurrent creations for one organization serialize
and cannot both take the last slot.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from core.database import BillingDatabase
from core.exceptions import NotFoundError, QuotaExceededError
from core.models import DocumentType, Organization
from core.plans import UNLIMITED, QuotaResource, get_plan_limits
from utils.timezone import now_utc, same_calendar_month, start_of_month

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    resource: QuotaResource
    current_plan: str
    limit: int
    used: int
    upgrade_required: bool = False

    @property
    def remaining(self) -> int | None:
        """Slots left after this decision. None when unlimited."""
        if self.limit == UNLIMITED:
            return None
        return max(self.limit - self.used, 0)

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "resource": self.resource.value,
            "current_plan": self.current_plan,
            "limit": self.limit,
            "used": self.used,
            "remaining": self.remaining,
            "upgrade_required": self.upgrade_required,
        }


class QuotaService:
    """Service for plan ceilings."""

    def __init__(self, db: BillingDatabase):
        self.db = db

    def _monthly_invoice_count(self, db: BillingDatabase, org: Organization, reset: bool) -> int:
        now = now_utc()
        last_reset = org.last_invoice_reset_date
        if last_reset is not None and same_calendar_month(last_reset, now):
            return org.monthly_invoice_count
        if reset:
            db.reset_invoice_counter(org.id, now)
            logger.info("Monthly invoice counter reset for org %s", org.id)
        return 0

    def _used(self, db: BillingDatabase, org: Organization, resource: QuotaResource, reset: bool) -> int:
        if resource == QuotaResource.INVOICES:
            return self._monthly_invoice_count(db, org, reset)
        if resource == QuotaResource.QUOTES:
            return db.count_documents_created_since(
                DocumentType.QUOTE, org.id, start_of_month(now_utc())
            )
        return db.count_active(resource.value, org.id)

    def check_and_reserve(
        self,
        organization_id: UUID,
        resource: QuotaResource,
        db: BillingDatabase | None = None,
    ) -> QuotaDecision:
        """
        Decide whether one more unit of resource may be created, and
        reserve it when allowed.

        For invoices the reservation increments the monthly counter. For the
        counted resources it is the organization row lock held until the
        enclosing transaction commits the new row.

        Raises:
            NotFoundError: If the organization does not exist
        """
        with (db or self.db).transaction() as tx:
            org = tx.get_organization_for_update(organization_id)
            if org is None:
                raise NotFoundError("organization", organization_id)

            plan = org.plan.value
            limit = get_plan_limits(org.plan).limit_for(resource)
            if limit == UNLIMITED:
                return QuotaDecision(True, resource, plan, limit, used=0)

            used = self._used(tx, org, resource, reset=True)
            if used >= limit:
                logger.info(
                    "Quota denied: org %s at %s/%s %s on %s plan",
                    organization_id, used, limit, resource.value, plan,
                )
                return QuotaDecision(False, resource, plan, limit, used, upgrade_required=True)

            if resource == QuotaResource.INVOICES:
                tx.increment_invoice_counter(organization_id)
            return QuotaDecision(True, resource, plan, limit, used + 1)

    def require(
        self,
        organization_id: UUID,
        resource: QuotaResource,
        db: BillingDatabase | None = None,
    ) -> QuotaDecision:
        """check_and_reserve, raising QuotaExceededError on denial."""
        decision = self.check_and_reserve(organization_id, resource, db=db)
        if not decision.allowed:
            raise QuotaExceededError(resource.value, decision.current_plan, decision.limit)
        return decision

    def get_usage(self, organization_id: UUID) -> dict:
        """Current usage and ceilings for every resource. Read-only."""
        org = self.db.get_organization(organization_id)
        if org is None:
            raise NotFoundError("organization", organization_id)

        limits = get_plan_limits(org.plan)
        usage = {
            resource.value: {
                "used": self._used(self.db, org, resource, reset=False),
                "limit": limits.limit_for(resource),
            }
            for resource in QuotaResource
        }
        return {
            "plan": org.plan.value,
            "usage": usage,
            "payment_methods": list(limits.payment_methods),
            "features": list(limits.features),
        }
