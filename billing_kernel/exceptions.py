"""
Typed exception hierarchy for the billing kernel and the recurring engine.

Every error has a typed class (catch by type, not by message), a ``code``
class attribute (machine-readable, API-safe) and carries its context as
attributes rather than only inside the message string.

    BillingKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidIntervalError
    |   +-- InvalidProfileFieldError
    |
    +-- NotFoundError
    |   +-- ProfileNotFoundError
    |   +-- TemplateInvoiceNotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- OrganizationNotFoundError
    |
    +-- AccessError
    |   +-- OrganizationAccessDeniedError
    |   +-- FeatureNotAvailableError
    |
    +-- InvoiceError
    |   +-- TemplateHasNoItemsError
    |   +-- CrossTenantTemplateError
    |   +-- DeliveryError
    |
    +-- ProfileStateError
    |   +-- ProfileCancelledError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

Category        | Code                          | When Raised
----------------|-------------------------------|---------------------------------------
Validation      | INVALID_INTERVAL              | Unknown unit or non-positive count
                | INVALID_PROFILE_FIELD         | due_days < 0, bad variant, bad status
----------------|-------------------------------|---------------------------------------
Not found       | PROFILE_NOT_FOUND             | Recurring profile id doesn't exist
                | TEMPLATE_INVOICE_NOT_FOUND    | Template invoice id doesn't exist
                | INVOICE_NOT_FOUND             | Invoice id doesn't exist
                | ORGANIZATION_NOT_FOUND        | Organization id doesn't exist
----------------|-------------------------------|---------------------------------------
Access          | ORGANIZATION_ACCESS_DENIED    | User is neither member nor owner
                | FEATURE_NOT_AVAILABLE         | Plan does not include recurring invoices
----------------|-------------------------------|---------------------------------------
Invoice         | TEMPLATE_HAS_NO_ITEMS         | Template invoice has zero line items
                | CROSS_TENANT_TEMPLATE         | Template belongs to another organization
                | DELIVERY_FAILED               | Invoice e-mail could not be delivered
----------------|-------------------------------|---------------------------------------
Profile state   | PROFILE_CANCELLED             | Transition requested on a CANCELLED profile
----------------|-------------------------------|---------------------------------------
Immutability    | IMMUTABILITY_VIOLATION        | UPDATE/DELETE of a recurring run

Claim contention (the conditional update touching zero rows) is NOT an
error and has no exception class: the losing caller simply does nothing.
"""


class BillingKernelError(Exception):
    """Base exception for all billing errors."""

    code: str = "BILLING_KERNEL_ERROR"


# Validation


class ValidationError(BillingKernelError):
    """Input rejected synchronously at create/update time."""

    code: str = "VALIDATION_ERROR"


class InvalidIntervalError(ValidationError):
    """Interval unit is unknown or interval count is not positive."""

    code: str = "INVALID_INTERVAL"

    def __init__(self, field: str, value: object):
        self.field = field
        self.value = value
        super().__init__(f"Invalid {field}: {value!r}")


class InvalidProfileFieldError(ValidationError):
    """A recurring profile field carries an unacceptable value."""

    code: str = "INVALID_PROFILE_FIELD"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}")


# Not found


class NotFoundError(BillingKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class ProfileNotFoundError(NotFoundError):
    code: str = "PROFILE_NOT_FOUND"

    def __init__(self, profile_id: str):
        self.profile_id = profile_id
        super().__init__(f"Recurring profile not found: {profile_id}")


class TemplateInvoiceNotFoundError(NotFoundError):
    code: str = "TEMPLATE_INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Template invoice not found: {invoice_id}")


class InvoiceNotFoundError(NotFoundError):
    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


class OrganizationNotFoundError(NotFoundError):
    code: str = "ORGANIZATION_NOT_FOUND"

    def __init__(self, organization_id: str):
        self.organization_id = organization_id
        super().__init__(f"Organization not found: {organization_id}")


# Access


class AccessError(BillingKernelError):
    """Base exception for authorization / plan gating failures."""

    code: str = "ACCESS_ERROR"


class OrganizationAccessDeniedError(AccessError):
    code: str = "ORGANIZATION_ACCESS_DENIED"

    def __init__(self, user_id: str, organization_id: str):
        self.user_id = user_id
        self.organization_id = organization_id
        super().__init__(
            f"User {user_id} has no access to organization {organization_id}"
        )


class FeatureNotAvailableError(AccessError):
    code: str = "FEATURE_NOT_AVAILABLE"

    def __init__(self, feature: str, plan_id: str):
        self.feature = feature
        self.plan_id = plan_id
        super().__init__(f"Feature '{feature}' is not available on plan {plan_id}")


# Invoice collaborator


class InvoiceError(BillingKernelError):
    """Base exception for invoice materialization and delivery."""

    code: str = "INVOICE_ERROR"


class TemplateHasNoItemsError(InvoiceError):
    """The template invoice has no line items to clone."""

    code: str = "TEMPLATE_HAS_NO_ITEMS"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Template invoice has no items: {invoice_id}")


class CrossTenantTemplateError(InvoiceError):
    code: str = "CROSS_TENANT_TEMPLATE"

    def __init__(self, invoice_id: str, organization_id: str):
        self.invoice_id = invoice_id
        self.organization_id = organization_id
        super().__init__(
            f"Template invoice {invoice_id} belongs to another organization "
            f"than {organization_id}"
        )


class DeliveryError(InvoiceError):
    code: str = "DELIVERY_FAILED"

    def __init__(self, invoice_id: str, reason: str):
        self.invoice_id = invoice_id
        self.reason = reason
        super().__init__(f"Delivery of invoice {invoice_id} failed: {reason}")


# Profile state


class ProfileStateError(BillingKernelError):
    """Base exception for rejected lifecycle transitions."""

    code: str = "PROFILE_STATE_ERROR"


class ProfileCancelledError(ProfileStateError):
    """CANCELLED is terminal; no further transitions are accepted."""

    code: str = "PROFILE_CANCELLED"

    def __init__(self, profile_id: str, operation: str):
        self.profile_id = profile_id
        self.operation = operation
        super().__init__(
            f"Recurring profile {profile_id} is cancelled; {operation} is not allowed"
        )


# Immutability


class ImmutabilityError(BillingKernelError):
    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
