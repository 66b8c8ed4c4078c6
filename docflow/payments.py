"""
Invoices and payment-to-order conversion.

Workflow:
1. Owner submits a request -> a pending invoice with a shareable reference holds the order payload.
2. Payment is confirmed -> the order is created (status new), then the invoice is marked paid.
3. The new order is dispatched to its delegate; a dispatch failure never undoes the payment.

The order is keyed by its invoice id, so a crash between steps 2 and the paid write is
resumed by confirming again: the existing order is reused and the invoice is marked paid.
"""
import logging
import secrets
import string
import uuid
from datetime import datetime, timedelta

from pydantic import BaseModel

from docflow.config import settings
from docflow.dispatch import Dispatcher, DispatchOutcome, DispatchResult
from docflow.earnings import delegate_payout
from docflow.errors import AlreadyProcessed, DocflowError, InvalidTransition, InvoiceNotFound
from docflow.metrics import invoices_expired_total, orders_created_total
from docflow.models import SYSTEM_ACTOR, Invoice, InvoiceStatus, Order, OrderPayload, OrderStatus, utcnow
from docflow.notifications import NotificationEvent, Notifier
from docflow.order_state import record_transition
from docflow.store import OrderStore

logger = logging.getLogger(__name__)

_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


def generate_invoice_reference(now: datetime | None = None) -> str:
    """IV-YYYYMMDD-XXXX, e.g. IV-20240124-A7B3."""
    now = now or utcnow()
    suffix = "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(4))
    return f"IV-{now:%Y%m%d}-{suffix}"


def generate_delivery_code() -> str:
    """Random 4-digit code the recipient hands to the courier."""
    return str(1000 + secrets.randbelow(9000))


class ConfirmationResult(BaseModel):
    order_id: str
    delegate_assigned: bool
    delegate_id: str | None = None
    dispatch_outcome: DispatchOutcome


class PaymentService:
    def __init__(
        self,
        store: OrderStore,
        dispatcher: Dispatcher,
        notifier: Notifier,
        invoice_ttl: timedelta | None = None,
    ):
        self._store = store
        self._dispatcher = dispatcher
        self._notifier = notifier
        self._invoice_ttl = invoice_ttl or timedelta(hours=settings.invoice_ttl_hours)

    async def create_invoice(self, owner_id: str, payload: OrderPayload, amount: int | None = None) -> Invoice:
        if amount is None:
            if payload.billing is None:
                raise ValueError("amount is required when the payload has no billing breakdown")
            amount = payload.billing.total
        now = utcnow()
        invoice = Invoice(
            id=str(uuid.uuid4()),
            reference=generate_invoice_reference(now),
            owner_id=owner_id,
            amount=amount,
            payload=payload,
            created_at=now,
            expires_at=now + self._invoice_ttl,
        )
        await self._store.insert_invoice(invoice)
        logger.info("Created invoice %s (%s) for owner %s, amount=%d", invoice.id, invoice.reference, owner_id, amount)
        return invoice

    async def get_invoice(self, invoice_id: str) -> Invoice:
        invoice = await self._store.get_invoice(invoice_id)
        if invoice is None:
            raise InvoiceNotFound(invoice_id)
        return invoice

    async def get_invoice_by_reference(self, reference: str) -> Invoice:
        invoice = await self._store.get_invoice_by_reference(reference)
        if invoice is None:
            raise InvoiceNotFound(reference)
        return invoice

    @staticmethod
    def _check_pending(invoice: Invoice) -> None:
        if invoice.status is InvoiceStatus.PAID:
            raise AlreadyProcessed(invoice.id, invoice.order_id)
        if invoice.status is not InvoiceStatus.PENDING:
            raise InvalidTransition(invoice.status.value, InvoiceStatus.PAID.value, reason=f"invoice is {invoice.status.value}")

    def _build_order(self, invoice: Invoice) -> Order:
        p = invoice.payload
        return Order(
            id=str(uuid.uuid4()),
            invoice_id=invoice.id,
            owner_id=invoice.owner_id,
            document_type=p.document_type,
            service=p.service,
            city=p.city,
            copies=p.copies,
            total_amount=invoice.amount,
            delegate_earnings=delegate_payout(p.billing, fallback=p.delegate_earnings or 0),
            status=OrderStatus.NEW,
            billing=p.billing,
            delivery=p.delivery,
            form_data=p.form_data,
            delivery_code=generate_delivery_code(),
            created_at=utcnow(),
        )

    async def confirm_payment(self, invoice_id: str, transaction_ref: str | None = None) -> ConfirmationResult:
        """
        Convert a pending invoice into an order and dispatch it.
        Raises AlreadyProcessed (carrying the existing order id) when the invoice is already paid.
        """
        invoice = await self.get_invoice(invoice_id)
        self._check_pending(invoice)

        # order first: a paid invoice must always have its order
        order = await self._store.create_order(self._build_order(invoice))

        if not await self._store.mark_invoice_paid(invoice_id, order.id, utcnow(), transaction_ref):
            current = await self.get_invoice(invoice_id)
            logger.info("Invoice %s was confirmed concurrently (status=%s)", invoice_id, current.status.value)
            self._check_pending(current)
            # invoice was cancelled or expired under us: the order must not stay live
            await self._void_unpaid_order(invoice_id, current.status)
            raise InvalidTransition(current.status.value, InvoiceStatus.PAID.value)

        orders_created_total.inc()
        logger.info("Invoice %s paid; order_id=%s created", invoice_id, order.id)
        await self._notifier.notify(NotificationEvent.ORDER_CONFIRMED, order.id, {"invoice_id": invoice_id})

        try:
            result = await self._dispatcher.assign(order.id)
        except DocflowError as e:
            logger.warning("Dispatch of order_id=%s failed after payment: %s", order.id, e)
            result = DispatchResult(outcome=DispatchOutcome.FAILED, error=str(e))
        if result.outcome is DispatchOutcome.NO_DELEGATE_AVAILABLE:
            logger.warning("Payment confirmed for order_id=%s but no delegate was assigned", order.id)
        return ConfirmationResult(
            order_id=order.id,
            delegate_assigned=result.delegate_id is not None,
            delegate_id=result.delegate_id,
            dispatch_outcome=result.outcome,
        )

    async def cancel_invoice(self, invoice_id: str) -> Invoice:
        invoice = await self.get_invoice(invoice_id)
        if not await self._store.update_invoice_status(invoice_id, InvoiceStatus.PENDING, InvoiceStatus.CANCELLED):
            current = await self.get_invoice(invoice_id)
            raise InvalidTransition(current.status.value, InvoiceStatus.CANCELLED.value)
        logger.info("Invoice %s (%s) cancelled", invoice_id, invoice.reference)
        await self._void_unpaid_order(invoice_id, InvoiceStatus.CANCELLED)
        return await self.get_invoice(invoice_id)

    async def expire_invoices(self, now: datetime | None = None) -> int:
        """Move every pending invoice past its expiry to expired. Returns how many moved."""
        now = now or utcnow()
        expired = 0
        for invoice in await self._store.list_expired_invoices(now):
            if await self._store.update_invoice_status(invoice.id, InvoiceStatus.PENDING, InvoiceStatus.EXPIRED):
                expired += 1
                await self._void_unpaid_order(invoice.id, InvoiceStatus.EXPIRED)
        if expired:
            invoices_expired_total.inc(expired)
            logger.info("Expired %d pending invoice(s)", expired)
        return expired

    async def _void_unpaid_order(self, invoice_id: str, invoice_status: InvoiceStatus) -> None:
        """
        Cancel the order left behind when a confirmation died between creating the order
        and marking the invoice paid, once that invoice can no longer be paid.
        """
        order = await self._store.get_order_by_invoice(invoice_id)
        if order is None or order.status is not OrderStatus.NEW:
            return
        if not await self._store.update_order(
            order.id, OrderStatus.NEW, {"status": OrderStatus.CANCELLED, "cancelled_at": utcnow()}
        ):
            return
        logger.warning("Cancelled unpaid order_id=%s: invoice %s is %s", order.id, invoice_id, invoice_status.value)
        await record_transition(
            self._store, order.id, OrderStatus.NEW, OrderStatus.CANCELLED, SYSTEM_ACTOR,
            detail={"invoice_id": invoice_id, "invoice_status": invoice_status.value},
        )
