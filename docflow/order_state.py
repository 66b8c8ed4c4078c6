"""
Order lifecycle state machine. Valid transitions, who may trigger them and which timestamp each one stamps.
"""
from docflow.errors import InvalidTransition
from docflow.metrics import transitions_total
from docflow.models import Actor, ActorRole, Order, OrderEvent, OrderStatus, utcnow
from docflow.store import OrderStore

S = OrderStatus

# Current status -> allowed next status
VALID_TRANSITIONS: dict[OrderStatus, list[OrderStatus]] = {
    S.NEW: [S.ASSIGNED, S.CANCELLED],
    S.ASSIGNED: [S.IN_PROGRESS, S.COMPLETED],
    S.IN_PROGRESS: [S.READY, S.COMPLETED],
    S.READY: [S.SHIPPED, S.COMPLETED],
    S.SHIPPED: [S.IN_TRANSIT, S.DELIVERED, S.COMPLETED],
    S.IN_TRANSIT: [S.DELIVERED, S.COMPLETED],
    S.DELIVERED: [S.COMPLETED],
    S.COMPLETED: [],  # terminal
    S.CANCELLED: [],  # terminal
}

# Forward position, used to keep admin overrides from moving backwards
PROGRESSION: list[OrderStatus] = [
    S.NEW, S.ASSIGNED, S.IN_PROGRESS, S.READY, S.SHIPPED, S.IN_TRANSIT, S.DELIVERED, S.COMPLETED,
]

# Statuses in which the order must carry a delegate (and outside of which it must not)
DELEGATE_STATUSES = frozenset(PROGRESSION[1:])

TIMESTAMP_FIELDS: dict[OrderStatus, str] = {
    S.ASSIGNED: "assigned_at",
    S.IN_PROGRESS: "started_at",
    S.READY: "ready_at",
    S.SHIPPED: "shipped_at",
    S.IN_TRANSIT: "in_transit_at",
    S.DELIVERED: "delivered_at",
    S.COMPLETED: "completed_at",
    S.CANCELLED: "cancelled_at",
}

# Target status -> roles allowed to drive the order into it
TRANSITION_ROLES: dict[OrderStatus, frozenset[ActorRole]] = {
    S.ASSIGNED: frozenset({ActorRole.SYSTEM}),
    S.IN_PROGRESS: frozenset({ActorRole.DELEGATE}),
    S.READY: frozenset({ActorRole.DELEGATE}),
    S.SHIPPED: frozenset({ActorRole.DELEGATE}),
    S.IN_TRANSIT: frozenset({ActorRole.COURIER}),
    S.DELIVERED: frozenset({ActorRole.COURIER}),
    S.COMPLETED: frozenset({ActorRole.OWNER, ActorRole.ADMIN, ActorRole.SYSTEM}),
    S.CANCELLED: frozenset({ActorRole.OWNER, ActorRole.ADMIN}),
}


def is_valid_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """True if target is allowed after current."""
    return target in VALID_TRANSITIONS.get(current, [])


def is_forward(current: OrderStatus, target: OrderStatus) -> bool:
    if current not in PROGRESSION or target not in PROGRESSION:
        return False
    return PROGRESSION.index(target) > PROGRESSION.index(current)


def holds_delegate_invariant(order: Order) -> bool:
    return (order.delegate_id is not None) == (order.status in DELEGATE_STATUSES)


def authorize(order: Order, actor: Actor, target: OrderStatus) -> None:
    """
    Raise InvalidTransition unless `actor` may move `order` to `target` from its current status.
    Delegate actions must come from the assigned delegate, courier actions from the assigned courier,
    and owners may only act on their own orders.
    """
    if not is_valid_transition(order.status, target):
        raise InvalidTransition(order.status.value, target.value)
    if actor.role not in TRANSITION_ROLES[target]:
        raise InvalidTransition(
            order.status.value, target.value, reason=f"{actor.role.value} may not move an order to {target.value}"
        )
    if actor.role is ActorRole.DELEGATE and actor.id != order.delegate_id:
        raise InvalidTransition(order.status.value, target.value, reason="not the assigned delegate")
    if actor.role is ActorRole.COURIER and actor.id != order.courier_id:
        raise InvalidTransition(order.status.value, target.value, reason="not the assigned courier")
    if actor.role is ActorRole.OWNER and actor.id != order.owner_id:
        raise InvalidTransition(order.status.value, target.value, reason="not the order owner")


async def record_transition(
    store: OrderStore,
    order_id: str,
    from_status: OrderStatus | None,
    to_status: OrderStatus,
    actor: Actor,
    override: bool = False,
    detail: dict | None = None,
) -> None:
    transitions_total.labels(to_status=to_status.value).inc()
    await store.append_event(OrderEvent(
        order_id=order_id,
        from_status=from_status,
        to_status=to_status,
        actor_role=actor.role,
        actor_id=actor.id,
        override=override,
        detail=detail or {},
        created_at=utcnow(),
    ))
