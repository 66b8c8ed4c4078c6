"""
Dispatch: bind a new order to the one delegate serving its city and service.
At most one assignment per order is guaranteed by a single guarded write
(delegate IS NULL AND status = 'new'); losing that race is reported as already_assigned.
"""
import logging
from enum import Enum

from pydantic import BaseModel

from docflow.directory import DelegateDirectory
from docflow.errors import DelegateNotFound, DocflowError, InvalidTransition, OrderNotFound
from docflow.metrics import dispatch_outcomes_total, overrides_total
from docflow.models import SYSTEM_ACTOR, Actor, ActorRole, InvoiceStatus, Order, OrderStatus, utcnow
from docflow.notifications import NotificationEvent, Notifier
from docflow.order_state import record_transition
from docflow.store import OrderStore

logger = logging.getLogger(__name__)
override_logger = logging.getLogger("docflow.override")


class DispatchOutcome(str, Enum):
    ASSIGNED = "assigned"
    ALREADY_ASSIGNED = "already_assigned"
    NO_DELEGATE_AVAILABLE = "no_delegate_available"
    FAILED = "failed"  # batch only: the order could not be dispatched at all


class DispatchResult(BaseModel):
    outcome: DispatchOutcome
    delegate_id: str | None = None
    error: str | None = None


class Dispatcher:
    def __init__(self, store: OrderStore, directory: DelegateDirectory, notifier: Notifier):
        self._store = store
        self._directory = directory
        self._notifier = notifier

    async def _load(self, order_id: str) -> Order:
        order = await self._store.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def _require_paid(self, order: Order) -> None:
        invoice = await self._store.get_invoice(order.invoice_id)
        if invoice is None or invoice.status is not InvoiceStatus.PAID:
            raise InvalidTransition(order.status.value, OrderStatus.ASSIGNED.value, reason="invoice is not paid")

    async def assign(self, order_id: str) -> DispatchResult:
        """Idempotent: safe to call again after a retry or a concurrent attempt."""
        order = await self._load(order_id)
        if order.delegate_id is not None:
            dispatch_outcomes_total.labels(outcome=DispatchOutcome.ALREADY_ASSIGNED.value).inc()
            return DispatchResult(outcome=DispatchOutcome.ALREADY_ASSIGNED, delegate_id=order.delegate_id)
        if order.status is not OrderStatus.NEW:
            raise InvalidTransition(order.status.value, OrderStatus.ASSIGNED.value)
        await self._require_paid(order)

        delegate = await self._directory.find_delegate(order.city, order.service)
        if delegate is None:
            dispatch_outcomes_total.labels(outcome=DispatchOutcome.NO_DELEGATE_AVAILABLE.value).inc()
            logger.warning(
                "No delegate available for order_id=%s (city=%s service=%s); order stays new",
                order_id, order.city, order.service.value,
            )
            await self._notifier.notify(
                NotificationEvent.DISPATCH_FAILED,
                order_id,
                {"city": order.city, "service": order.service.value},
            )
            return DispatchResult(outcome=DispatchOutcome.NO_DELEGATE_AVAILABLE)

        if not await self._store.assign_delegate(order_id, delegate.id, utcnow()):
            # another dispatch won the guarded write
            current = await self._load(order_id)
            if current.delegate_id is None:
                raise InvalidTransition(current.status.value, OrderStatus.ASSIGNED.value)
            logger.info("Order_id=%s already assigned to %s by a concurrent dispatch", order_id, current.delegate_id)
            dispatch_outcomes_total.labels(outcome=DispatchOutcome.ALREADY_ASSIGNED.value).inc()
            return DispatchResult(outcome=DispatchOutcome.ALREADY_ASSIGNED, delegate_id=current.delegate_id)

        dispatch_outcomes_total.labels(outcome=DispatchOutcome.ASSIGNED.value).inc()
        logger.info("Assigned order_id=%s to delegate_id=%s", order_id, delegate.id)
        await record_transition(
            self._store, order_id, OrderStatus.NEW, OrderStatus.ASSIGNED, SYSTEM_ACTOR,
            detail={"delegate_id": delegate.id},
        )
        await self._notifier.notify(NotificationEvent.DELEGATE_ASSIGNED, order_id, {"delegate_id": delegate.id})
        return DispatchResult(outcome=DispatchOutcome.ASSIGNED, delegate_id=delegate.id)

    async def assign_batch(self, order_ids: list[str]) -> dict[str, DispatchResult]:
        """Dispatch each order independently; one failure never aborts the others."""
        results: dict[str, DispatchResult] = {}
        for order_id in order_ids:
            try:
                results[order_id] = await self.assign(order_id)
            except DocflowError as e:
                logger.warning("Dispatch failed for order_id=%s: %s", order_id, e)
                results[order_id] = DispatchResult(outcome=DispatchOutcome.FAILED, error=str(e))
        assigned = sum(1 for r in results.values() if r.outcome is DispatchOutcome.ASSIGNED)
        logger.info("Batch dispatch finished: %d/%d newly assigned", assigned, len(order_ids))
        return results

    async def force_assign(self, order_id: str, delegate_id: str, operator: Actor) -> Order:
        """
        Operator override: bind a specific delegate regardless of the directory.
        Allowed on new orders and on assigned orders the delegate has not started yet.
        """
        if operator.role is not ActorRole.ADMIN:
            raise InvalidTransition(reason="only an admin may force-assign a delegate")
        if await self._store.get_delegate(delegate_id) is None:
            raise DelegateNotFound(delegate_id)
        order = await self._load(order_id)

        if order.status is OrderStatus.NEW:
            await self._require_paid(order)
            applied = await self._store.assign_delegate(order_id, delegate_id, utcnow())
        elif order.status is OrderStatus.ASSIGNED:
            applied = await self._store.update_order(order_id, OrderStatus.ASSIGNED, {"delegate_id": delegate_id})
        else:
            raise InvalidTransition(order.status.value, OrderStatus.ASSIGNED.value, reason="order already in progress")
        if not applied:
            current = await self._load(order_id)
            raise InvalidTransition(current.status.value, OrderStatus.ASSIGNED.value, reason="order changed concurrently")

        overrides_total.labels(action="force_assign").inc()
        override_logger.warning(
            "OVERRIDE force_assign order_id=%s delegate %s -> %s by admin %s",
            order_id, order.delegate_id, delegate_id, operator.id,
        )
        await record_transition(
            self._store, order_id, order.status, OrderStatus.ASSIGNED, operator,
            override=True, detail={"delegate_id": delegate_id, "previous_delegate_id": order.delegate_id},
        )
        await self._notifier.notify(NotificationEvent.DELEGATE_ASSIGNED, order_id, {"delegate_id": delegate_id})
        return await self._load(order_id)
