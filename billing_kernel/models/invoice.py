"""
Module: billing_kernel.models.invoice
Responsibility: ORM persistence for invoices and their line items.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - ``number`` is unique per organization (``INV-<year>-<seq>``).
    - ``recurring_profile_id`` back-references the recurring profile that
      generated the invoice; it is a plain indexed column because the kernel
      does not know the recurring engine's tables.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import TrackedBase, UUIDString
from billing_kernel.domain.invoice import InvoiceVariant  # noqa: F401  re-exported
from billing_kernel.models.organization import ClientModel


class InvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class InvoiceModel(TrackedBase):
    """Invoice header.  Owned by the invoicing collaborator."""

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("organization_id", "number", name="uq_invoices_org_number"),
        Index("ix_invoices_organization", "organization_id"),
        Index("ix_invoices_recurring_profile", "recurring_profile_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    client_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("clients.id"), nullable=True,
    )
    number: Mapped[str] = mapped_column(String(50), nullable=False)
    issue_date: Mapped[datetime]
    due_date: Mapped[datetime | None]
    currency: Mapped[str] = mapped_column(String(3), default="UAH", nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    status: Mapped[str] = mapped_column(
        String(20), default=InvoiceStatus.DRAFT.value, nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime | None]
    recurring_profile_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True,
    )

    items: Mapped[list["InvoiceItemModel"]] = relationship(
        "InvoiceItemModel",
        back_populates="invoice",
        order_by="InvoiceItemModel.position",
        cascade="all, delete-orphan",
    )
    client: Mapped[ClientModel | None] = relationship(ClientModel)


class InvoiceItemModel(TrackedBase):
    """Invoice line item."""

    __tablename__ = "invoice_items"

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(default=0)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantity: Mapped[Decimal]
    unit_price: Mapped[Decimal]
    tax_rate: Mapped[Decimal | None]
    line_total: Mapped[Decimal]

    invoice: Mapped[InvoiceModel] = relationship(
        "InvoiceModel", back_populates="items",
    )
