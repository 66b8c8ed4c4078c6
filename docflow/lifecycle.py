"""
Delegate, courier and owner actions that move an order through its lifecycle.
Every write is guarded by the status the action was validated against; if the order moved
in the meantime the action fails with InvalidTransition and nothing is written.
"""
import hmac
import logging
import re
from typing import Any

from docflow.config import settings
from docflow.earnings import delegate_payout
from docflow.errors import (
    DeliveryCodeMismatch,
    InvalidTransition,
    MissingDeliveryInfo,
    MissingShipmentProof,
    MissingShippingCompany,
    OrderNotFound,
)
from docflow.metrics import overrides_total, transitions_rejected_total
from docflow.models import Actor, ActorRole, DeliveryInfo, Order, OrderEvent, OrderStatus, utcnow
from docflow.notifications import NotificationEvent, Notifier
from docflow.order_state import (
    DELEGATE_STATUSES,
    TIMESTAMP_FIELDS,
    authorize,
    is_forward,
    record_transition,
)
from docflow.store import OrderStore

logger = logging.getLogger(__name__)
override_logger = logging.getLogger("docflow.override")

S = OrderStatus

NOTIFY_ON: dict[OrderStatus, NotificationEvent] = {
    S.READY: NotificationEvent.DOCUMENT_READY,
    S.SHIPPED: NotificationEvent.DOCUMENT_SHIPPED,
    S.IN_TRANSIT: NotificationEvent.DELIVERY_PICKED_UP,
    S.DELIVERED: NotificationEvent.DELIVERY_COMPLETED,
}

# Delivery details can still change until the document leaves the delegate
DELIVERY_EDITABLE = frozenset({S.NEW, S.ASSIGNED, S.IN_PROGRESS, S.READY})


class OrderLifecycle:
    def __init__(
        self,
        store: OrderStore,
        notifier: Notifier,
        require_delivery_info: bool | None = None,
    ):
        self._store = store
        self._notifier = notifier
        if require_delivery_info is None:
            require_delivery_info = settings.require_delivery_info_for_ready
        self._require_delivery_info = require_delivery_info

    async def get(self, order_id: str) -> Order:
        order = await self._store.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def _authorize(self, order: Order, actor: Actor, target: OrderStatus) -> None:
        try:
            authorize(order, actor, target)
        except InvalidTransition:
            transitions_rejected_total.labels(current_status=order.status.value, attempted_status=target.value).inc()
            logger.info(
                "Rejected %s -> %s on order_id=%s by %s %s",
                order.status.value, target.value, order.id, actor.role.value, actor.id,
            )
            raise

    async def _write(
        self, order: Order, changes: dict[str, Any], target: OrderStatus | None = None, credit: int | None = None
    ) -> Order:
        """
        Guarded write against the status the caller validated. Returns the stored order.
        With `credit`, the delegate is paid in the same write.
        """
        if credit is None:
            applied = await self._store.update_order(order.id, order.status, changes)
        else:
            applied = await self._store.complete_order(order.id, order.status, changes, order.delegate_id, credit)
        if not applied:
            current = await self.get(order.id)
            attempted = (target or order.status).value
            transitions_rejected_total.labels(current_status=current.status.value, attempted_status=attempted).inc()
            raise InvalidTransition(current.status.value, attempted, reason="order changed concurrently")
        return await self.get(order.id)

    async def _transition(
        self,
        order: Order,
        actor: Actor,
        target: OrderStatus,
        changes: dict[str, Any] | None = None,
        override: bool = False,
        detail: dict | None = None,
    ) -> Order:
        changes = dict(changes or {})
        credit = self.payout(order) if target is S.COMPLETED else None
        changes["status"] = target
        stamp = TIMESTAMP_FIELDS.get(target)
        if stamp and getattr(order, stamp) is None:
            changes[stamp] = utcnow()
        updated = await self._write(order, changes, target, credit)
        logger.info("Order_id=%s %s -> %s by %s %s", order.id, order.status.value, target.value, actor.role.value, actor.id)
        await record_transition(self._store, order.id, order.status, target, actor, override=override, detail=detail)
        if target in NOTIFY_ON:
            await self._notifier.notify(NOTIFY_ON[target], order.id)
        return updated

    # Delegate actions

    async def start(self, order_id: str, actor: Actor) -> Order:
        order = await self.get(order_id)
        self._authorize(order, actor, S.IN_PROGRESS)
        return await self._transition(order, actor, S.IN_PROGRESS)

    async def update_delivery_info(self, order_id: str, actor: Actor, info: DeliveryInfo) -> Order:
        """Fill in or correct recipient details. Owner or the assigned delegate, before shipping."""
        order = await self.get(order_id)
        allowed = (
            (actor.role is ActorRole.OWNER and actor.id == order.owner_id)
            or (actor.role is ActorRole.DELEGATE and actor.id == order.delegate_id)
            or actor.role is ActorRole.ADMIN
        )
        if not allowed:
            raise InvalidTransition(order.status.value, order.status.value, reason="not allowed to edit delivery details")
        if order.status not in DELIVERY_EDITABLE:
            raise InvalidTransition(order.status.value, order.status.value, reason="delivery details are locked once shipped")
        current = order.delivery.model_dump() if order.delivery else {}
        merged = DeliveryInfo(**{**current, **info.model_dump(exclude_none=True)})
        return await self._write(order, {"delivery": merged})

    async def mark_ready(self, order_id: str, actor: Actor) -> Order:
        order = await self.get(order_id)
        self._authorize(order, actor, S.READY)
        if self._require_delivery_info and (order.delivery is None or not order.delivery.is_complete()):
            raise MissingDeliveryInfo(
                "recipient name, phone and destination city are required before the document can be marked ready"
            )
        return await self._transition(order, actor, S.READY)

    async def ship(
        self,
        order_id: str,
        actor: Actor,
        shipping_company: str | None,
        tracking_code: str | None = None,
        receipt_ref: str | None = None,
    ) -> Order:
        """ready -> shipped. Needs the transport company and a tracking code or a receipt photo reference."""
        order = await self.get(order_id)
        self._authorize(order, actor, S.SHIPPED)
        shipping_company = (shipping_company or "").strip()
        tracking_code = (tracking_code or "").strip() or None
        receipt_ref = (receipt_ref or "").strip() or None
        if not shipping_company:
            raise MissingShippingCompany("the transport company name is required")
        if tracking_code is None and receipt_ref is None:
            raise MissingShipmentProof("provide a shipment tracking code or a photo of the shipping receipt")
        return await self._transition(order, actor, S.SHIPPED, {
            "shipping_company": shipping_company,
            "shipping_code": tracking_code,
            "shipping_receipt": receipt_ref,
        })

    # Courier actions

    async def assign_courier(self, order_id: str, courier_id: str, operator: Actor) -> Order:
        if operator.role is not ActorRole.ADMIN:
            raise InvalidTransition(reason="only an admin may assign a courier")
        order = await self.get(order_id)
        if order.status not in (S.READY, S.SHIPPED):
            raise InvalidTransition(order.status.value, order.status.value, reason="courier can only be set on ready or shipped orders")
        updated = await self._write(order, {"courier_id": courier_id})
        logger.info("Courier %s assigned to order_id=%s by admin %s", courier_id, order_id, operator.id)
        return updated

    async def pick_up(self, order_id: str, actor: Actor) -> Order:
        order = await self.get(order_id)
        self._authorize(order, actor, S.IN_TRANSIT)
        return await self._transition(order, actor, S.IN_TRANSIT)

    async def confirm_delivery(self, order_id: str, actor: Actor, code: str) -> Order:
        """
        shipped|in_transit -> delivered, gated by the recipient's 4-digit code.
        A wrong code changes nothing and the courier may submit again.
        """
        order = await self.get(order_id)
        self._authorize(order, actor, S.DELIVERED)
        code = (code or "").strip()
        # ASCII digits only; compare_digest rejects non-ASCII str
        if not re.fullmatch(r"[0-9]{4}", code) or not hmac.compare_digest(code, order.delivery_code):
            logger.info("Delivery code mismatch on order_id=%s by courier %s", order_id, actor.id)
            raise DeliveryCodeMismatch("incorrect delivery code; check the 4-digit code with the recipient")
        return await self._transition(order, actor, S.DELIVERED)

    # Bookkeeping

    async def complete(self, order_id: str, actor: Actor) -> Order:
        """
        Terminal bookkeeping. Completing a completed order is a no-op.
        The delegate is credited in the same write that moves the order to completed.
        """
        order = await self.get(order_id)
        if order.status is S.COMPLETED:
            return order
        self._authorize(order, actor, S.COMPLETED)
        return await self._transition(order, actor, S.COMPLETED)

    async def cancel(self, order_id: str, actor: Actor) -> Order:
        order = await self.get(order_id)
        self._authorize(order, actor, S.CANCELLED)
        return await self._transition(order, actor, S.CANCELLED)

    async def force_status(self, order_id: str, target: OrderStatus, operator: Actor) -> Order:
        """
        Operator override of the actor and proof rules. Still forward-only,
        and never leaves an order in a delegate status without a delegate.
        """
        if operator.role is not ActorRole.ADMIN:
            raise InvalidTransition(reason="only an admin may force a status")
        order = await self.get(order_id)
        if target is S.CANCELLED:
            if order.status is not S.NEW:
                raise InvalidTransition(order.status.value, target.value)
        elif not is_forward(order.status, target):
            raise InvalidTransition(order.status.value, target.value, reason="status can only move forward")
        if target in DELEGATE_STATUSES and order.delegate_id is None:
            raise InvalidTransition(order.status.value, target.value, reason="assign a delegate first")

        overrides_total.labels(action="force_status").inc()
        override_logger.warning(
            "OVERRIDE force_status order_id=%s %s -> %s by admin %s",
            order_id, order.status.value, target.value, operator.id,
        )
        return await self._transition(order, operator, target, override=True)

    # Queries

    @staticmethod
    def payout(order: Order) -> int:
        return delegate_payout(order.billing, fallback=order.delegate_earnings)

    async def earnings(self, order_id: str) -> int:
        return self.payout(await self.get(order_id))

    async def timeline(self, order_id: str) -> list[OrderEvent]:
        await self.get(order_id)
        return await self._store.list_events(order_id)
