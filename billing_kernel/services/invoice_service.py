"""
InvoiceService -- the narrow invoicing surface consumed by the recurring engine.

Responsibility:
    Loads template invoices, materializes new invoices by cloning a
    template's line items, and delivers invoices by e-mail through an
    injected ``InvoiceMailer``.

Architecture position:
    Kernel > Services.  Consumed by billing_recurring; never imports it.

Failure modes:
    - TemplateInvoiceNotFoundError / CrossTenantTemplateError /
      TemplateHasNoItemsError from ``load_template`` and
      ``create_from_template`` (fail fast before any row is written).
    - DeliveryError when the invoice cannot be e-mailed.
    - IntegrityError on a concurrent invoice number collision.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
    - General invoice CRUD, PDF rendering, payments.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.exceptions import (
    CrossTenantTemplateError,
    DeliveryError,
    InvoiceNotFoundError,
    TemplateHasNoItemsError,
    TemplateInvoiceNotFoundError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.invoice import (
    InvoiceItemModel,
    InvoiceModel,
    InvoiceStatus,
    InvoiceVariant,
)
from billing_kernel.services.base import BaseService

logger = get_logger("services.invoice")

_CENT = Decimal("0.01")


@dataclass(frozen=True)
class TemplateInvoice:
    """What the recurring engine needs to know about a template invoice."""

    invoice_id: UUID
    organization_id: UUID
    client_id: UUID | None
    currency: str
    notes: str | None
    item_count: int


@dataclass(frozen=True)
class InvoiceSnapshot:
    """Immutable view of a persisted invoice."""

    invoice_id: UUID
    organization_id: UUID
    number: str
    client_id: UUID | None
    issue_date: datetime
    due_date: datetime | None
    currency: str
    total: Decimal
    status: InvoiceStatus
    recurring_profile_id: UUID | None = None

    @classmethod
    def from_model(cls, model: InvoiceModel) -> InvoiceSnapshot:
        return cls(
            invoice_id=model.id,
            organization_id=model.organization_id,
            number=model.number,
            client_id=model.client_id,
            issue_date=model.issue_date,
            due_date=model.due_date,
            currency=model.currency,
            total=model.total,
            status=InvoiceStatus(model.status),
            recurring_profile_id=model.recurring_profile_id,
        )


@dataclass(frozen=True)
class LineItemSpec:
    name: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal | None = None
    description: str | None = None


class InvoiceMailer(Protocol):
    """Outbound e-mail transport for invoices."""

    def deliver(
        self, invoice: InvoiceSnapshot, recipient: str, variant: InvoiceVariant,
    ) -> None: ...


class LoggingMailer:
    """Mailer that only records the dispatch in the structured log."""

    def deliver(
        self, invoice: InvoiceSnapshot, recipient: str, variant: InvoiceVariant,
    ) -> None:
        logger.info(
            "invoice_email_dispatched",
            extra={
                "invoice_id": str(invoice.invoice_id),
                "invoice_number": invoice.number,
                "recipient": recipient,
                "variant": variant.value,
            },
        )


def _line_total(quantity: Decimal, unit_price: Decimal, tax_rate: Decimal | None) -> tuple[Decimal, Decimal]:
    base = quantity * unit_price
    tax = base * (tax_rate or Decimal("0")) / Decimal("100")
    return (
        base.quantize(_CENT, rounding=ROUND_HALF_UP),
        tax.quantize(_CENT, rounding=ROUND_HALF_UP),
    )


class InvoiceService(BaseService):
    """
    Invoice materialization and delivery.

    Contract:
        - ``load_template()`` validates a template for a given tenant.
        - ``create_invoice()`` creates a DRAFT invoice from explicit items.
        - ``create_from_template()`` clones a template into a new DRAFT invoice.
        - ``send_invoice_by_email()`` delivers via the mailer and marks SENT.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        mailer: InvoiceMailer | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._mailer = mailer or LoggingMailer()

    # -------------------------------------------------------------------------
    # Templates
    # -------------------------------------------------------------------------

    def _get_with_items(self, invoice_id: UUID) -> InvoiceModel | None:
        return self._session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.id == invoice_id)
            .options(selectinload(InvoiceModel.items))
        ).scalar_one_or_none()

    def load_template(
        self,
        organization_id: UUID,
        template_invoice_id: UUID,
        require_items: bool = True,
    ) -> TemplateInvoice:
        """
        Load and validate a template invoice for ``organization_id``.

        Raises:
            TemplateInvoiceNotFoundError: template does not exist.
            CrossTenantTemplateError: template belongs to another organization.
            TemplateHasNoItemsError: ``require_items`` and template is empty.
        """
        template = self._get_with_items(template_invoice_id)
        if template is None:
            raise TemplateInvoiceNotFoundError(str(template_invoice_id))
        if template.organization_id != organization_id:
            raise CrossTenantTemplateError(str(template_invoice_id), str(organization_id))
        if require_items and not template.items:
            raise TemplateHasNoItemsError(str(template_invoice_id))

        return TemplateInvoice(
            invoice_id=template.id,
            organization_id=template.organization_id,
            client_id=template.client_id,
            currency=template.currency,
            notes=template.notes,
            item_count=len(template.items),
        )

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def _next_invoice_number(self, organization_id: UUID, issue_date: datetime) -> str:
        prefix = f"INV-{issue_date.year}-"
        last_number = self._session.execute(
            select(InvoiceModel.number)
            .where(
                InvoiceModel.organization_id == organization_id,
                InvoiceModel.number.startswith(prefix),
            )
            # Sequences widen past 9999; a longer number is always a later one
            .order_by(func.length(InvoiceModel.number).desc(), InvoiceModel.number.desc())
            .limit(1)
        ).scalar_one_or_none()

        next_seq = 1
        if last_number:
            suffix = last_number[len(prefix):]
            if suffix.isdigit():
                next_seq = int(suffix) + 1

        return f"{prefix}{next_seq:04d}"

    def _build_invoice(
        self,
        db_user_id: UUID,
        organization_id: UUID,
        client_id: UUID | None,
        items: Sequence[Any],
        issue_date: datetime,
        due_date: datetime | None,
        currency: str,
        notes: str | None,
        recurring_profile_id: UUID | None,
    ) -> InvoiceModel:
        invoice = InvoiceModel(
            organization_id=organization_id,
            created_by_id=db_user_id,
            client_id=client_id,
            number=self._next_invoice_number(organization_id, issue_date),
            issue_date=issue_date,
            due_date=due_date,
            currency=currency,
            status=InvoiceStatus.DRAFT.value,
            notes=notes,
            recurring_profile_id=recurring_profile_id,
        )

        subtotal = Decimal("0")
        tax_amount = Decimal("0")
        for position, item in enumerate(items):
            base, tax = _line_total(item.quantity, item.unit_price, item.tax_rate)
            subtotal += base
            tax_amount += tax
            invoice.items.append(
                InvoiceItemModel(
                    position=position,
                    name=item.name,
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    tax_rate=item.tax_rate,
                    line_total=base + tax,
                )
            )

        invoice.subtotal = subtotal
        invoice.tax_amount = tax_amount
        invoice.total = subtotal + tax_amount

        self._session.add(invoice)
        self._session.flush()
        return invoice

    def create_invoice(
        self,
        db_user_id: UUID,
        organization_id: UUID,
        items: Sequence[LineItemSpec],
        issue_date: datetime,
        client_id: UUID | None = None,
        due_date: datetime | None = None,
        currency: str = "UAH",
        notes: str | None = None,
    ) -> InvoiceSnapshot:
        """Create a DRAFT invoice from explicit line items.

        Raises:
            ValueError: If ``items`` is empty or an item has non-positive quantity.
        """
        if not items:
            raise ValueError("An invoice requires at least one line item")
        for item in items:
            if item.quantity <= 0:
                raise ValueError(f"Quantity must be positive: {item.name}")
            if item.unit_price < 0:
                raise ValueError(f"Unit price cannot be negative: {item.name}")

        invoice = self._build_invoice(
            db_user_id, organization_id, client_id, items,
            issue_date, due_date, currency, notes, None,
        )
        return InvoiceSnapshot.from_model(invoice)

    def create_from_template(
        self,
        db_user_id: UUID,
        organization_id: UUID,
        client_id: UUID | None,
        template_invoice_id: UUID,
        issue_date: datetime,
        due_date: datetime | None,
        currency: str,
        notes: str | None,
        recurring_profile_id: UUID | None,
    ) -> InvoiceSnapshot:
        """
        Materialize a new DRAFT invoice by cloning the template's line items.

        Fails fast (before writing anything) when the template is missing,
        belongs to another organization, or has no items.
        """
        template = self._get_with_items(template_invoice_id)
        if template is None:
            raise TemplateInvoiceNotFoundError(str(template_invoice_id))
        if template.organization_id != organization_id:
            raise CrossTenantTemplateError(str(template_invoice_id), str(organization_id))
        if not template.items:
            raise TemplateHasNoItemsError(str(template_invoice_id))

        invoice = self._build_invoice(
            db_user_id,
            organization_id,
            client_id,
            list(template.items),
            issue_date,
            due_date,
            currency,
            notes,
            recurring_profile_id,
        )

        logger.info(
            "invoice_created_from_template",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.number,
                "template_invoice_id": str(template_invoice_id),
                "recurring_profile_id": (
                    str(recurring_profile_id) if recurring_profile_id else None
                ),
                "item_count": len(invoice.items),
            },
        )

        return InvoiceSnapshot.from_model(invoice)

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    def send_invoice_by_email(
        self,
        db_user_id: UUID,
        invoice_id: UUID,
        variant: InvoiceVariant,
    ) -> InvoiceSnapshot:
        """
        Deliver an invoice to its client's e-mail address and mark it SENT.

        Raises:
            InvoiceNotFoundError: invoice does not exist.
            DeliveryError: invoice is PAID/CANCELLED, has no client e-mail,
                or the mailer raised.
        """
        invoice = self._session.get(InvoiceModel, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))

        if invoice.status in (InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value):
            raise DeliveryError(str(invoice_id), f"invoice status is {invoice.status}")

        recipient = invoice.client.email if invoice.client is not None else None
        if not recipient:
            raise DeliveryError(str(invoice_id), "client has no e-mail address")

        try:
            self._mailer.deliver(InvoiceSnapshot.from_model(invoice), recipient, variant)
        except DeliveryError:
            raise
        except Exception as exc:
            raise DeliveryError(str(invoice_id), str(exc)) from exc

        invoice.status = InvoiceStatus.SENT.value
        invoice.sent_at = self._clock.now()
        self._session.flush()

        logger.info(
            "invoice_sent",
            extra={
                "invoice_id": str(invoice_id),
                "sent_by": str(db_user_id),
                "variant": variant.value,
            },
        )

        return InvoiceSnapshot.from_model(invoice)

    def get_invoice(self, invoice_id: UUID) -> InvoiceSnapshot:
        invoice = self._session.get(InvoiceModel, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return InvoiceSnapshot.from_model(invoice)
