"""Kernel ORM models: invoices, tenancy, activity feed."""

from billing_kernel.models.activity_log import (
    ActivityEntityType,
    ActivityEventType,
    ActivityLogModel,
)
from billing_kernel.models.invoice import (
    InvoiceItemModel,
    InvoiceModel,
    InvoiceStatus,
    InvoiceVariant,
)
from billing_kernel.models.organization import (
    ClientModel,
    OrganizationMemberModel,
    OrganizationModel,
    PlanId,
    SubscriptionModel,
)

__all__ = [
    "ActivityEntityType",
    "ActivityEventType",
    "ActivityLogModel",
    "ClientModel",
    "InvoiceItemModel",
    "InvoiceModel",
    "InvoiceStatus",
    "InvoiceVariant",
    "OrganizationMemberModel",
    "OrganizationModel",
    "PlanId",
    "SubscriptionModel",
]
