"""Kernel collaborator services consumed by the recurring engine."""

from billing_kernel.services.access_service import AccessService
from billing_kernel.services.activity_service import ActivityService
from billing_kernel.services.base import BaseService
from billing_kernel.services.invoice_service import (
    InvoiceMailer,
    InvoiceService,
    InvoiceSnapshot,
    LineItemSpec,
    LoggingMailer,
    TemplateInvoice,
)

__all__ = [
    "AccessService",
    "ActivityService",
    "BaseService",
    "InvoiceMailer",
    "InvoiceService",
    "InvoiceSnapshot",
    "LineItemSpec",
    "LoggingMailer",
    "TemplateInvoice",
]
