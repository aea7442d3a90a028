"""Pure kernel domain primitives."""

from billing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from billing_kernel.domain.invoice import InvoiceVariant

__all__ = ["Clock", "DeterministicClock", "InvoiceVariant", "SystemClock"]
