"""
Shared helpers for the test modules: a recording notifier, stores that interleave
concurrent tasks, sample payloads, and shortcuts that walk an order to a given status.
"""
import asyncio
import uuid

from docflow.memory_store import MemoryStore
from docflow.models import (
    Actor,
    ActorRole,
    BillingDetails,
    Delegate,
    DeliveryInfo,
    DocumentLine,
    Order,
    OrderPayload,
    OrderStatus,
    ServiceCategory,
)
from docflow.notifications import NotificationEvent, Notifier
from docflow.services import Services

CITY = "Cocody"
SERVICE = ServiceCategory.MUNICIPAL_OFFICE
OWNER = Actor(role=ActorRole.OWNER, id="user-001")
ADMIN = Actor(role=ActorRole.ADMIN, id="admin-001")
COURIER = Actor(role=ActorRole.COURIER, id="courier-001")


def run(coro):
    return asyncio.run(coro)


def delegate_actor(delegate_id: str) -> Actor:
    return Actor(role=ActorRole.DELEGATE, id=delegate_id)


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        self.calls: list[tuple[NotificationEvent, str, dict | None]] = []

    async def notify(self, event: NotificationEvent, order_id: str, payload: dict | None = None) -> None:
        self.calls.append((event, order_id, payload))

    def events(self, event: NotificationEvent) -> list[str]:
        return [order_id for e, order_id, _ in self.calls if e is event]


class YieldingStore(MemoryStore):
    """Yields to the event loop after every read, so gathered tasks interleave between read and write."""

    async def get_order(self, order_id: str):
        order = await super().get_order(order_id)
        await asyncio.sleep(0)
        return order

    async def get_invoice(self, invoice_id: str):
        invoice = await super().get_invoice(invoice_id)
        await asyncio.sleep(0)
        return invoice


def sample_billing() -> BillingDetails:
    return BillingDetails(
        documents=[DocumentLine(document_type="birth_certificate_extract", unit_price=1500, copies=2)],
        service_fee=2000,
        shipping_fee=1000,
    )


def sample_delivery() -> DeliveryInfo:
    return DeliveryInfo(
        recipient_name="Awa Kone",
        recipient_phone="+2250700000000",
        destination_city="Bouake",
        pickup_method="bus_station",
    )


def sample_payload(city: str = CITY, service: ServiceCategory = SERVICE, with_delivery: bool = True) -> OrderPayload:
    return OrderPayload(
        document_type="birth_certificate_extract",
        service=service,
        city=city,
        copies=2,
        billing=sample_billing(),
        delivery=sample_delivery() if with_delivery else None,
    )


async def seed_delegate(services: Services, city: str = CITY, service: ServiceCategory = SERVICE,
                        delegate_id: str | None = None) -> Delegate:
    delegate = Delegate(
        id=delegate_id or f"del-{uuid.uuid4().hex[:8]}",
        user_id=f"user-{uuid.uuid4().hex[:8]}",
        name="Delegate",
        city=city,
        service=service,
    )
    await services.store.insert_delegate(delegate)
    return delegate


async def paid_order(services: Services, with_delivery: bool = True, city: str = CITY) -> Order:
    """Create and confirm an invoice; returns the resulting order (assigned if a delegate exists)."""
    invoice = await services.payments.create_invoice(OWNER.id, sample_payload(city=city, with_delivery=with_delivery))
    result = await services.payments.confirm_payment(invoice.id)
    return await services.lifecycle.get(result.order_id)


async def order_at(services: Services, status: OrderStatus, with_delivery: bool = True) -> Order:
    """Seed a delegate and drive a fresh order up to `status` along the courier hand-off path."""
    delegate = await seed_delegate(services, city=f"city-{uuid.uuid4().hex[:6]}")
    order = await paid_order(services, with_delivery=with_delivery, city=delegate.city)
    actor = delegate_actor(delegate.id)
    lc = services.lifecycle
    steps = [
        (OrderStatus.IN_PROGRESS, lambda: lc.start(order.id, actor)),
        (OrderStatus.READY, lambda: lc.mark_ready(order.id, actor)),
        (OrderStatus.SHIPPED, lambda: lc.ship(order.id, actor, "UTB", tracking_code="TRK-1")),
        (OrderStatus.IN_TRANSIT, lambda: lc.pick_up(order.id, COURIER)),
        (OrderStatus.DELIVERED, lambda: lc.confirm_delivery(order.id, COURIER, (order.delivery_code))),
        (OrderStatus.COMPLETED, lambda: lc.complete(order.id, OWNER)),
    ]
    if status is OrderStatus.ASSIGNED:
        return order
    for target, step in steps:
        if target is OrderStatus.SHIPPED:
            await lc.assign_courier(order.id, COURIER.id, ADMIN)
        order = await step()
        if target is status:
            break
    return order
