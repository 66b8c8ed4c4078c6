"""
Async Postgres store: delegates, invoices, orders (current state per order) and order_events (transition log).
The two exactly-once guarantees are single guarded UPDATEs:
invoice pending -> paid and order delegate assignment. Order creation is deduplicated by UNIQUE(invoice_id).
"""
import json
import uuid
from datetime import datetime
from enum import Enum
from typing import Any

import asyncpg
from asyncpg.exceptions import UniqueViolationError
from pydantic import BaseModel

from docflow.config import settings
from docflow.errors import DuplicateDelegate
from docflow.models import Delegate, Invoice, InvoiceStatus, Order, OrderEvent, OrderStatus, ServiceCategory
from docflow.store import OrderStore

_pool: asyncpg.Pool | None = None

JSON_COLUMNS = frozenset({"billing", "delivery", "form_data", "payload", "detail"})
ORDER_COLUMNS = list(Order.model_fields)
INVOICE_COLUMNS = list(Invoice.model_fields)
DELEGATE_COLUMNS = list(Delegate.model_fields)


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=5,
            command_timeout=60,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS delegates (
                id VARCHAR(64) PRIMARY KEY,
                user_id VARCHAR(64) NOT NULL,
                name VARCHAR(255) NOT NULL DEFAULT '',
                city VARCHAR(255) NOT NULL,
                service VARCHAR(50) NOT NULL,
                is_available BOOLEAN NOT NULL DEFAULT TRUE,
                total_completed INT NOT NULL DEFAULT 0,
                total_earnings BIGINT NOT NULL DEFAULT 0
            );
        """)
        # one available delegate per (city, service)
        await conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_delegates_city_service
            ON delegates(city, service) WHERE is_available;
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS invoices (
                id VARCHAR(64) PRIMARY KEY,
                reference VARCHAR(32) NOT NULL UNIQUE,
                owner_id VARCHAR(64) NOT NULL,
                amount BIGINT NOT NULL,
                status VARCHAR(20) NOT NULL DEFAULT 'pending',
                payload JSONB NOT NULL,
                order_id VARCHAR(64) UNIQUE,
                transaction_ref VARCHAR(255),
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                expires_at TIMESTAMPTZ NOT NULL,
                paid_at TIMESTAMPTZ
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id VARCHAR(64) PRIMARY KEY,
                invoice_id VARCHAR(64) NOT NULL UNIQUE REFERENCES invoices(id),
                owner_id VARCHAR(64) NOT NULL,
                document_type VARCHAR(100) NOT NULL,
                service VARCHAR(50) NOT NULL,
                city VARCHAR(255) NOT NULL,
                copies INT NOT NULL,
                total_amount BIGINT NOT NULL,
                delegate_earnings BIGINT NOT NULL DEFAULT 0,
                delegate_id VARCHAR(64) REFERENCES delegates(id),
                courier_id VARCHAR(64),
                status VARCHAR(20) NOT NULL,
                billing JSONB,
                delivery JSONB,
                form_data JSONB NOT NULL DEFAULT '{}'::jsonb,
                delivery_code CHAR(4) NOT NULL,
                shipping_company VARCHAR(255),
                shipping_code VARCHAR(255),
                shipping_receipt TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                assigned_at TIMESTAMPTZ,
                started_at TIMESTAMPTZ,
                ready_at TIMESTAMPTZ,
                shipped_at TIMESTAMPTZ,
                in_transit_at TIMESTAMPTZ,
                delivered_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                cancelled_at TIMESTAMPTZ
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_delegate_id
            ON orders(delegate_id);
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS order_events (
                id UUID PRIMARY KEY,
                order_id VARCHAR(64) NOT NULL,
                from_status VARCHAR(20),
                to_status VARCHAR(20) NOT NULL,
                actor_role VARCHAR(20) NOT NULL,
                actor_id VARCHAR(64) NOT NULL,
                override BOOLEAN NOT NULL DEFAULT FALSE,
                detail JSONB,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_order_events_order_id
            ON order_events(order_id);
        """)


def _encode(column: str, value: Any) -> Any:
    if value is None:
        return None
    if column in JSON_COLUMNS:
        if isinstance(value, BaseModel):
            value = value.model_dump(mode="json")
        return json.dumps(value)
    if isinstance(value, Enum):
        return value.value
    return value


def _decode(row: asyncpg.Record) -> dict:
    data = dict(row)
    for column in JSON_COLUMNS.intersection(data):
        if isinstance(data[column], str):
            data[column] = json.loads(data[column])
    return data


def _rows_affected(status: str) -> int:
    # asyncpg returns the command tag, e.g. "UPDATE 1"
    return int(status.split()[-1])


async def _insert(conn: asyncpg.Connection, table: str, columns: list[str], record: BaseModel, suffix: str = "") -> str:
    values = [_encode(c, getattr(record, c)) for c in columns]
    placeholders = ", ".join(
        f"${i}::jsonb" if c in JSON_COLUMNS else f"${i}" for i, c in enumerate(columns, start=1)
    )
    return await conn.execute(
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) {suffix};",
        *values,
    )


async def _guarded_update(
    conn: asyncpg.Connection, order_id: str, expected_status: OrderStatus, changes: dict[str, Any]
) -> bool:
    """UPDATE orders SET <changes> WHERE id = order_id AND status = expected_status."""
    unknown = set(changes) - set(ORDER_COLUMNS)
    if unknown:
        raise ValueError(f"unknown order columns: {sorted(unknown)}")
    columns = list(changes)
    assignments = ", ".join(
        f"{c} = ${i}::jsonb" if c in JSON_COLUMNS else f"{c} = ${i}" for i, c in enumerate(columns, start=1)
    )
    n = len(columns)
    status = await conn.execute(
        f"UPDATE orders SET {assignments} WHERE id = ${n + 1} AND status = ${n + 2};",
        *[_encode(c, changes[c]) for c in columns],
        order_id,
        expected_status.value,
    )
    return _rows_affected(status) == 1

class PostgresStore(OrderStore):
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def insert_delegate(self, delegate: Delegate) -> None:
        async with self._pool.acquire() as conn:
            try:
                await _insert(conn, "delegates", DELEGATE_COLUMNS, delegate)
            except UniqueViolationError:
                raise DuplicateDelegate(f"{delegate.city}/{delegate.service.value} already covered")

    async def get_delegate(self, delegate_id: str) -> Delegate | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM delegates WHERE id = $1;", delegate_id)
        return Delegate.model_validate(dict(row)) if row else None

    async def find_delegates(self, city: str, service: ServiceCategory) -> list[Delegate]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM delegates
                WHERE city = $1 AND service = $2 AND is_available
                ORDER BY id ASC;
                """,
                city,
                service.value,
            )
        return [Delegate.model_validate(dict(r)) for r in rows]

    async def list_available_delegates(self) -> list[Delegate]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM delegates WHERE is_available ORDER BY id ASC;")
        return [Delegate.model_validate(dict(r)) for r in rows]

    async def insert_invoice(self, invoice: Invoice) -> None:
        async with self._pool.acquire() as conn:
            await _insert(conn, "invoices", INVOICE_COLUMNS, invoice)

    async def get_invoice(self, invoice_id: str) -> Invoice | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM invoices WHERE id = $1;", invoice_id)
        return Invoice.model_validate(_decode(row)) if row else None

    async def get_invoice_by_reference(self, reference: str) -> Invoice | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM invoices WHERE reference = $1;", reference)
        return Invoice.model_validate(_decode(row)) if row else None

    async def mark_invoice_paid(
        self, invoice_id: str, order_id: str, paid_at: datetime, transaction_ref: str | None
    ) -> bool:
        async with self._pool.acquire() as conn:
            status = await conn.execute(
                """
                UPDATE invoices
                SET status = 'paid', order_id = $1, paid_at = $2, transaction_ref = $3
                WHERE id = $4 AND status = 'pending';
                """,
                order_id,
                paid_at,
                transaction_ref,
                invoice_id,
            )
        return _rows_affected(status) == 1

    async def update_invoice_status(self, invoice_id: str, expected: InvoiceStatus, new: InvoiceStatus) -> bool:
        async with self._pool.acquire() as conn:
            status = await conn.execute(
                "UPDATE invoices SET status = $1 WHERE id = $2 AND status = $3;",
                new.value,
                invoice_id,
                expected.value,
            )
        return _rows_affected(status) == 1

    async def list_expired_invoices(self, now: datetime) -> list[Invoice]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM invoices WHERE status = 'pending' AND expires_at < $1 ORDER BY created_at ASC;",
                now,
            )
        return [Invoice.model_validate(_decode(r)) for r in rows]

    async def create_order(self, order: Order) -> Order:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await _insert(conn, "orders", ORDER_COLUMNS, order, suffix="ON CONFLICT (invoice_id) DO NOTHING")
                row = await conn.fetchrow("SELECT * FROM orders WHERE invoice_id = $1;", order.invoice_id)
        return Order.model_validate(_decode(row))

    async def get_order(self, order_id: str) -> Order | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM orders WHERE id = $1;", order_id)
        return Order.model_validate(_decode(row)) if row else None

    async def get_order_by_invoice(self, invoice_id: str) -> Order | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM orders WHERE invoice_id = $1;", invoice_id)
        return Order.model_validate(_decode(row)) if row else None

    async def assign_delegate(self, order_id: str, delegate_id: str, assigned_at: datetime) -> bool:
        async with self._pool.acquire() as conn:
            status = await conn.execute(
                """
                UPDATE orders
                SET delegate_id = $1, status = 'assigned', assigned_at = $2
                WHERE id = $3 AND delegate_id IS NULL AND status = 'new';
                """,
                delegate_id,
                assigned_at,
                order_id,
            )
        return _rows_affected(status) == 1

    async def update_order(self, order_id: str, expected_status: OrderStatus, changes: dict[str, Any]) -> bool:
        async with self._pool.acquire() as conn:
            return await _guarded_update(conn, order_id, expected_status, changes)

    async def complete_order(
        self, order_id: str, expected_status: OrderStatus, changes: dict[str, Any], delegate_id: str, earnings: int
    ) -> bool:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                if not await _guarded_update(conn, order_id, expected_status, changes):
                    return False
                await conn.execute(
                    """
                    UPDATE delegates
                    SET total_completed = total_completed + 1, total_earnings = total_earnings + $1
                    WHERE id = $2;
                    """,
                    earnings,
                    delegate_id,
                )
        return True

    async def append_event(self, event: OrderEvent) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO order_events (id, order_id, from_status, to_status, actor_role, actor_id, override, detail, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9);
                """,
                uuid.uuid4(),
                event.order_id,
                _encode("from_status", event.from_status),
                event.to_status.value,
                event.actor_role.value,
                event.actor_id,
                event.override,
                json.dumps(event.detail),
                event.created_at,
            )

    async def list_events(self, order_id: str) -> list[OrderEvent]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT order_id, from_status, to_status, actor_role, actor_id, override, detail, created_at
                FROM order_events
                WHERE order_id = $1
                ORDER BY created_at ASC;
                """,
                order_id,
            )
        return [OrderEvent.model_validate(_decode(r)) for r in rows]
