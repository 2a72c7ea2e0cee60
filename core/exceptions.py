"""Typed exceptions for billing failures.

Services raise these; api/errors.py maps each to an HTTP status and error code.
Idempotent no-ops (duplicate webhook, already-paid invoice) are not errors
and never raise.
"""


class BillingError(Exception):
    """Base class for billing errors. Message is safe to show to the user."""

    code = "BILLING_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class DocumentValidationError(BillingError):
    """Input rejected before any mutation (bad line item, missing client)."""

    code = "VALIDATION_ERROR"


class NotFoundError(BillingError):
    """Entity missing, soft-deleted, or owned by another organization."""

    code = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type.capitalize()} {entity_id} not found")


class QuotaExceededError(BillingError):
    """Plan ceiling reached. The user can act on it by upgrading."""

    code = "QUOTA_EXCEEDED"

    def __init__(self, resource: str, current_plan: str, limit: int):
        self.resource = resource
        self.current_plan = current_plan
        self.limit = limit
        self.upgrade_required = True
        super().__init__(
            f"Limit of {limit} {resource} reached on the {current_plan} plan. "
            "Upgrade your plan to continue."
        )


class InvalidTransitionError(BillingError):
    """Status change not permitted from the document's current status."""

    code = "INVALID_TRANSITION"

    def __init__(self, document_type: str, from_status: str, to_status: str):
        self.document_type = document_type
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cannot move {document_type} from '{from_status}' to '{to_status}'"
        )


class DocumentImmutableError(BillingError):
    """Monetary fields are frozen once a document leaves draft."""

    code = "DOCUMENT_IMMUTABLE"


class PaymentConfigurationError(BillingError):
    """Organization payment setup is incomplete (no Connect account, no key)."""

    code = "PAYMENT_CONFIGURATION"


class PaymentProviderError(BillingError):
    """Stripe rejected the request."""

    code = "PAYMENT_PROVIDER_ERROR"
    retryable = False


class PaymentProviderUnavailableError(PaymentProviderError):
    """Stripe unreachable or timed out. Caller may retry."""

    code = "PAYMENT_PROVIDER_UNAVAILABLE"
    retryable = True


class AlreadyPaidError(BillingError):
    """Invoice is already paid; no checkout can be opened."""

    code = "ALREADY_PAID"


class PlanRestrictionError(BillingError):
    """Feature or payment method not included in the organization's plan."""

    code = "PLAN_RESTRICTION"

    def __init__(self, message: str, current_plan: str):
        self.current_plan = current_plan
        self.upgrade_required = True
        super().__init__(message)
