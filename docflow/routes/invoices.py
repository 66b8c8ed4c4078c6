from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from docflow.errors import AlreadyProcessed
from docflow.models import OrderPayload
from docflow.services import Services, get_services

router = APIRouter(prefix="/invoices", tags=["invoices"])


class CreateInvoiceBody(BaseModel):
    owner_id: str = Field(..., description="Account placing the order")
    payload: OrderPayload = Field(..., description="Order to create once the invoice is paid")
    amount: int | None = Field(default=None, ge=0, description="Defaults to the billing total")


class ConfirmPaymentBody(BaseModel):
    transaction_ref: str | None = Field(default=None, description="Payment provider transaction id")


@router.post("")
async def create_invoice(body: CreateInvoiceBody, services: Services = Depends(get_services)) -> JSONResponse:
    if body.amount is None and body.payload.billing is None:
        raise HTTPException(status_code=422, detail="amount is required when the payload has no billing breakdown")
    invoice = await services.payments.create_invoice(body.owner_id, body.payload, body.amount)
    return JSONResponse(status_code=201, content=invoice.model_dump(mode="json"))


@router.get("/by-reference/{reference}")
async def get_invoice_by_reference(reference: str, services: Services = Depends(get_services)) -> JSONResponse:
    invoice = await services.payments.get_invoice_by_reference(reference)
    return JSONResponse(status_code=200, content=invoice.model_dump(mode="json"))


@router.get("/{invoice_id}")
async def get_invoice(invoice_id: str, services: Services = Depends(get_services)) -> JSONResponse:
    invoice = await services.payments.get_invoice(invoice_id)
    return JSONResponse(status_code=200, content=invoice.model_dump(mode="json"))


@router.post("/{invoice_id}/confirm")
async def confirm_payment(
    invoice_id: str,
    body: ConfirmPaymentBody | None = None,
    services: Services = Depends(get_services),
) -> JSONResponse:
    """
    Confirm payment: creates the order and dispatches it. Idempotent: confirming
    a paid invoice again -> 200 already_processed with the same order id.
    """
    transaction_ref = body.transaction_ref if body else None
    try:
        result = await services.payments.confirm_payment(invoice_id, transaction_ref)
    except AlreadyProcessed as e:
        return JSONResponse(
            status_code=200,
            content={"status": "already_processed", "invoice_id": invoice_id, "order_id": e.order_id},
        )
    return JSONResponse(
        status_code=201,
        content={"status": "confirmed", **result.model_dump(mode="json")},
    )


@router.post("/{invoice_id}/cancel")
async def cancel_invoice(invoice_id: str, services: Services = Depends(get_services)) -> JSONResponse:
    invoice = await services.payments.cancel_invoice(invoice_id)
    return JSONResponse(status_code=200, content=invoice.model_dump(mode="json"))
