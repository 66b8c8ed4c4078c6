"""
Persistence contract used by the engine. Conditional writes return False when their
guard no longer holds; callers re-read and decide, nothing is overwritten blindly.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from docflow.models import Delegate, Invoice, InvoiceStatus, Order, OrderEvent, OrderStatus, ServiceCategory


class OrderStore(ABC):
    # Delegates

    @abstractmethod
    async def insert_delegate(self, delegate: Delegate) -> None:
        """Raises DuplicateDelegate when an available delegate already covers (city, service)."""

    @abstractmethod
    async def get_delegate(self, delegate_id: str) -> Delegate | None: ...

    @abstractmethod
    async def find_delegates(self, city: str, service: ServiceCategory) -> list[Delegate]:
        """Available delegates for (city, service), ordered by id."""

    @abstractmethod
    async def list_available_delegates(self) -> list[Delegate]: ...

    # Invoices

    @abstractmethod
    async def insert_invoice(self, invoice: Invoice) -> None: ...

    @abstractmethod
    async def get_invoice(self, invoice_id: str) -> Invoice | None: ...

    @abstractmethod
    async def get_invoice_by_reference(self, reference: str) -> Invoice | None: ...

    @abstractmethod
    async def mark_invoice_paid(
        self, invoice_id: str, order_id: str, paid_at: datetime, transaction_ref: str | None
    ) -> bool:
        """pending -> paid, only if the invoice is still pending."""

    @abstractmethod
    async def update_invoice_status(self, invoice_id: str, expected: InvoiceStatus, new: InvoiceStatus) -> bool: ...

    @abstractmethod
    async def list_expired_invoices(self, now: datetime) -> list[Invoice]:
        """Pending invoices whose expires_at is before now."""

    # Orders

    @abstractmethod
    async def create_order(self, order: Order) -> Order:
        """Insert the order unless one already exists for its invoice; return whichever is stored."""

    @abstractmethod
    async def get_order(self, order_id: str) -> Order | None: ...

    @abstractmethod
    async def get_order_by_invoice(self, invoice_id: str) -> Order | None: ...

    @abstractmethod
    async def assign_delegate(self, order_id: str, delegate_id: str, assigned_at: datetime) -> bool:
        """Set delegate and move new -> assigned, only if no delegate is set yet."""

    @abstractmethod
    async def update_order(self, order_id: str, expected_status: OrderStatus, changes: dict[str, Any]) -> bool:
        """Apply changes only if the order is still in expected_status."""

    @abstractmethod
    async def complete_order(
        self, order_id: str, expected_status: OrderStatus, changes: dict[str, Any], delegate_id: str, earnings: int
    ) -> bool:
        """
        update_order plus crediting the delegate one completed order and its payout,
        as a single write: either both happen or neither does.
        """

    # Transition log

    @abstractmethod
    async def append_event(self, event: OrderEvent) -> None: ...

    @abstractmethod
    async def list_events(self, order_id: str) -> list[OrderEvent]: ...
