"""Subscription plans and their ceilings. -1 means unlimited."""

from enum import Enum

from pydantic import BaseModel

UNLIMITED = -1


class Plan(str, Enum):
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"


class QuotaResource(str, Enum):
    """Resources gated by plan ceilings."""

    INVOICES = "invoices"
    QUOTES = "quotes"
    CONTACTS = "contacts"
    PROJECTS = "projects"


class PlanLimits(BaseModel):
    max_invoices_per_month: int
    max_quotes_per_month: int
    max_contacts: int
    max_projects: int
    payment_methods: tuple[str, ...]
    features: tuple[str, ...]

    model_config = {"frozen": True}

    def limit_for(self, resource: QuotaResource) -> int:
        return {
            QuotaResource.INVOICES: self.max_invoices_per_month,
            QuotaResource.QUOTES: self.max_quotes_per_month,
            QuotaResource.CONTACTS: self.max_contacts,
            QuotaResource.PROJECTS: self.max_projects,
        }[resource]


_ALL_METHODS = ("stripe", "paypal", "bank_transfer", "cash", "check")

PLAN_LIMITS: dict[Plan, PlanLimits] = {
    Plan.FREE: PlanLimits(
        max_invoices_per_month=10,
        max_quotes_per_month=10,
        max_contacts=50,
        max_projects=5,
        payment_methods=("stripe",),
        features=("basic_invoicing", "email_sending"),
    ),
    Plan.STARTER: PlanLimits(
        max_invoices_per_month=100,
        max_quotes_per_month=100,
        max_contacts=500,
        max_projects=50,
        payment_methods=_ALL_METHODS,
        features=("basic_invoicing", "email_sending", "ai_email", "templates", "quotes"),
    ),
    Plan.PRO: PlanLimits(
        max_invoices_per_month=UNLIMITED,
        max_quotes_per_month=UNLIMITED,
        max_contacts=UNLIMITED,
        max_projects=UNLIMITED,
        payment_methods=_ALL_METHODS,
        features=("all",),
    ),
}


def get_plan_limits(plan: str | Plan | None) -> PlanLimits:
    """Limits for a plan. Unknown or missing plans get the free tier."""
    try:
        return PLAN_LIMITS[Plan(plan)]
    except ValueError:
        return PLAN_LIMITS[Plan.FREE]


def has_feature(plan: str | Plan | None, feature: str) -> bool:
    features = get_plan_limits(plan).features
    return "all" in features or feature in features


def has_payment_method(plan: str | Plan | None, method: str) -> bool:
    return method in get_plan_limits(plan).payment_methods
