"""
In-process OrderStore. Each conditional write checks and mutates without awaiting in between,
so it is atomic with respect to other tasks on the same event loop.
Used by the test suite and by STORE_BACKEND=memory for local runs.
"""
from datetime import datetime
from typing import Any

from docflow.errors import DuplicateDelegate
from docflow.models import Delegate, Invoice, InvoiceStatus, Order, OrderEvent, OrderStatus, ServiceCategory
from docflow.store import OrderStore


class MemoryStore(OrderStore):
    def __init__(self) -> None:
        self.delegates: dict[str, Delegate] = {}
        self.invoices: dict[str, Invoice] = {}
        self.orders: dict[str, Order] = {}
        self.events: list[OrderEvent] = []
        self._order_by_invoice: dict[str, str] = {}

    async def insert_delegate(self, delegate: Delegate) -> None:
        if delegate.is_available:
            for existing in self.delegates.values():
                if existing.is_available and (existing.city, existing.service) == (delegate.city, delegate.service):
                    raise DuplicateDelegate(f"{delegate.city}/{delegate.service.value} already covered by {existing.id}")
        self.delegates[delegate.id] = delegate.model_copy(deep=True)

    async def get_delegate(self, delegate_id: str) -> Delegate | None:
        d = self.delegates.get(delegate_id)
        return d.model_copy(deep=True) if d else None

    async def find_delegates(self, city: str, service: ServiceCategory) -> list[Delegate]:
        matches = [
            d for d in self.delegates.values()
            if d.is_available and d.city == city and d.service == service
        ]
        return [d.model_copy(deep=True) for d in sorted(matches, key=lambda d: d.id)]

    async def list_available_delegates(self) -> list[Delegate]:
        return [d.model_copy(deep=True) for d in sorted(self.delegates.values(), key=lambda d: d.id) if d.is_available]

    async def insert_invoice(self, invoice: Invoice) -> None:
        if invoice.id in self.invoices or any(i.reference == invoice.reference for i in self.invoices.values()):
            raise ValueError(f"duplicate invoice {invoice.id} / {invoice.reference}")
        self.invoices[invoice.id] = invoice.model_copy(deep=True)

    async def get_invoice(self, invoice_id: str) -> Invoice | None:
        inv = self.invoices.get(invoice_id)
        return inv.model_copy(deep=True) if inv else None

    async def get_invoice_by_reference(self, reference: str) -> Invoice | None:
        for inv in self.invoices.values():
            if inv.reference == reference:
                return inv.model_copy(deep=True)
        return None

    async def mark_invoice_paid(
        self, invoice_id: str, order_id: str, paid_at: datetime, transaction_ref: str | None
    ) -> bool:
        inv = self.invoices.get(invoice_id)
        if inv is None or inv.status is not InvoiceStatus.PENDING:
            return False
        inv.status = InvoiceStatus.PAID
        inv.order_id = order_id
        inv.paid_at = paid_at
        inv.transaction_ref = transaction_ref
        return True

    async def update_invoice_status(self, invoice_id: str, expected: InvoiceStatus, new: InvoiceStatus) -> bool:
        inv = self.invoices.get(invoice_id)
        if inv is None or inv.status is not expected:
            return False
        inv.status = new
        return True

    async def list_expired_invoices(self, now: datetime) -> list[Invoice]:
        return [
            inv.model_copy(deep=True) for inv in self.invoices.values()
            if inv.status is InvoiceStatus.PENDING and inv.expires_at < now
        ]

    async def create_order(self, order: Order) -> Order:
        existing_id = self._order_by_invoice.get(order.invoice_id)
        if existing_id is not None:
            return self.orders[existing_id].model_copy(deep=True)
        self.orders[order.id] = order.model_copy(deep=True)
        self._order_by_invoice[order.invoice_id] = order.id
        return order.model_copy(deep=True)

    async def get_order(self, order_id: str) -> Order | None:
        o = self.orders.get(order_id)
        return o.model_copy(deep=True) if o else None

    async def get_order_by_invoice(self, invoice_id: str) -> Order | None:
        order_id = self._order_by_invoice.get(invoice_id)
        return await self.get_order(order_id) if order_id else None

    async def assign_delegate(self, order_id: str, delegate_id: str, assigned_at: datetime) -> bool:
        o = self.orders.get(order_id)
        if o is None or o.delegate_id is not None or o.status is not OrderStatus.NEW:
            return False
        o.delegate_id = delegate_id
        o.status = OrderStatus.ASSIGNED
        o.assigned_at = assigned_at
        return True

    async def update_order(self, order_id: str, expected_status: OrderStatus, changes: dict[str, Any]) -> bool:
        o = self.orders.get(order_id)
        if o is None or o.status is not expected_status:
            return False
        # validate the whole record before swapping it in, so a bad change writes nothing
        updated = Order.model_validate({**o.model_dump(), **changes})
        self.orders[order_id] = updated
        return True

    async def complete_order(
        self, order_id: str, expected_status: OrderStatus, changes: dict[str, Any], delegate_id: str, earnings: int
    ) -> bool:
        if not await self.update_order(order_id, expected_status, changes):
            return False
        d = self.delegates.get(delegate_id)
        if d is not None:
            d.total_completed += 1
            d.total_earnings += earnings
        return True

    async def append_event(self, event: OrderEvent) -> None:
        self.events.append(event.model_copy(deep=True))

    async def list_events(self, order_id: str) -> list[OrderEvent]:
        return [e.model_copy(deep=True) for e in self.events if e.order_id == order_id]
