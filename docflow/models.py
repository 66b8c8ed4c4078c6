"""
Domain records: orders, invoices, delegates and the transition log.
"""
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class ServiceCategory(str, Enum):
    MUNICIPAL_OFFICE = "municipal_office"
    SUB_PREFECTURE = "sub_prefecture"
    JUDICIAL = "judicial"


class OrderStatus(str, Enum):
    NEW = "new"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    READY = "ready"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class ActorRole(str, Enum):
    OWNER = "owner"
    DELEGATE = "delegate"
    COURIER = "courier"
    ADMIN = "admin"
    SYSTEM = "system"


class Actor(BaseModel):
    role: ActorRole
    id: str


SYSTEM_ACTOR = Actor(role=ActorRole.SYSTEM, id="dispatch")


class DocumentLine(BaseModel):
    document_type: str
    unit_price: int = Field(..., ge=0)
    copies: int = Field(..., ge=1)


class BillingDetails(BaseModel):
    """Prices frozen at invoice time so the order never re-derives them."""
    documents: list[DocumentLine]
    service_fee: int = Field(..., ge=0)
    shipping_fee: int | None = Field(default=None, ge=0)
    express_fee: int | None = Field(default=None, ge=0)

    @property
    def total(self) -> int:
        documents = sum(line.unit_price * line.copies for line in self.documents)
        return documents + self.service_fee + (self.shipping_fee or 0) + (self.express_fee or 0)


class DeliveryInfo(BaseModel):
    recipient_name: str | None = None
    recipient_phone: str | None = None
    destination_city: str | None = None
    pickup_method: str | None = None

    def is_complete(self) -> bool:
        return bool(self.recipient_name and self.recipient_phone and self.destination_city)


class OrderPayload(BaseModel):
    """Everything needed to build the order once the invoice is paid."""
    document_type: str
    service: ServiceCategory
    city: str
    copies: int = Field(..., ge=1)
    billing: BillingDetails | None = None
    delivery: DeliveryInfo | None = None
    form_data: dict = Field(default_factory=dict)
    delegate_earnings: int | None = Field(default=None, ge=0, description="Legacy flat payout")


class Invoice(BaseModel):
    id: str
    reference: str
    owner_id: str
    amount: int
    status: InvoiceStatus = InvoiceStatus.PENDING
    payload: OrderPayload
    order_id: str | None = None
    transaction_ref: str | None = None
    created_at: datetime
    expires_at: datetime
    paid_at: datetime | None = None


class Order(BaseModel):
    id: str
    invoice_id: str
    owner_id: str
    document_type: str
    service: ServiceCategory
    city: str
    copies: int
    total_amount: int
    delegate_earnings: int = 0
    delegate_id: str | None = None
    courier_id: str | None = None
    status: OrderStatus = OrderStatus.NEW
    billing: BillingDetails | None = None
    delivery: DeliveryInfo | None = None
    form_data: dict = Field(default_factory=dict)
    delivery_code: str

    shipping_company: str | None = None
    shipping_code: str | None = None
    shipping_receipt: str | None = None

    created_at: datetime
    assigned_at: datetime | None = None
    started_at: datetime | None = None
    ready_at: datetime | None = None
    shipped_at: datetime | None = None
    in_transit_at: datetime | None = None
    delivered_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None


class Delegate(BaseModel):
    id: str
    user_id: str
    name: str = ""
    city: str
    service: ServiceCategory
    is_available: bool = True
    total_completed: int = 0
    total_earnings: int = 0


class OrderEvent(BaseModel):
    order_id: str
    from_status: OrderStatus | None
    to_status: OrderStatus
    actor_role: ActorRole
    actor_id: str
    override: bool = False
    detail: dict = Field(default_factory=dict)
    created_at: datetime


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
