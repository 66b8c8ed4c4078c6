"""
Delegate payout from an order's billing breakdown.
Delegate keeps the document prices, half the service fee and the shipping fee.
The express-delivery fee belongs to the courier and is not counted.
"""
from decimal import ROUND_HALF_UP, Decimal

from docflow.models import BillingDetails


def half_service_fee(service_fee: int) -> int:
    """Half the service fee, rounded half-up (1001 -> 501)."""
    return int((Decimal(service_fee) / 2).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def delegate_payout(billing: BillingDetails | None, fallback: int = 0) -> int:
    """Itemized payout; orders without a breakdown keep their stored flat amount."""
    if billing is None:
        return fallback
    documents = sum(line.unit_price * line.copies for line in billing.documents)
    return documents + half_service_fee(billing.service_fee) + (billing.shipping_fee or 0)
