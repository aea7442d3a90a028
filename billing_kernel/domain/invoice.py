"""Invoice value types shared by the kernel models and the recurring domain."""

from enum import Enum


class InvoiceVariant(str, Enum):
    """Presentation variant used when rendering and e-mailing an invoice."""

    UA = "ua"
    INTERNATIONAL = "international"
