from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from docflow.models import Actor, DeliveryInfo, Order
from docflow.services import Services, get_services

router = APIRouter(prefix="/orders", tags=["orders"])


class ActorBody(BaseModel):
    actor: Actor = Field(..., description="Who is acting: role and account id")


class DeliveryInfoBody(ActorBody):
    delivery: DeliveryInfo


class ShipBody(ActorBody):
    shipping_company: str | None = Field(default=None, description="Transport company, always required")
    tracking_code: str | None = None
    receipt_ref: str | None = Field(default=None, description="Stored photo reference of the shipping receipt")


class DeliverBody(ActorBody):
    code: str = Field(..., description="4-digit code given by the recipient")


class BatchDispatchBody(BaseModel):
    order_ids: list[str] = Field(..., min_length=1)


def _order_content(order: Order) -> dict:
    # the delivery code is only revealed to the owner
    return order.model_dump(mode="json", exclude={"delivery_code"})


@router.post("/dispatch")
async def dispatch_batch(body: BatchDispatchBody, services: Services = Depends(get_services)) -> JSONResponse:
    results = await services.dispatcher.assign_batch(body.order_ids)
    return JSONResponse(
        status_code=200,
        content={order_id: r.model_dump(mode="json") for order_id, r in results.items()},
    )


@router.get("/{order_id}")
async def get_order(order_id: str, services: Services = Depends(get_services)) -> JSONResponse:
    order = await services.lifecycle.get(order_id)
    return JSONResponse(status_code=200, content=_order_content(order))


@router.get("/{order_id}/delivery-code")
async def get_delivery_code(
    order_id: str,
    owner_id: str = Query(...),
    services: Services = Depends(get_services),
) -> JSONResponse:
    order = await services.lifecycle.get(order_id)
    if owner_id != order.owner_id:
        raise HTTPException(status_code=403, detail="only the order owner can see the delivery code")
    return JSONResponse(status_code=200, content={"order_id": order_id, "delivery_code": order.delivery_code})


@router.post("/{order_id}/dispatch")
async def dispatch(order_id: str, services: Services = Depends(get_services)) -> JSONResponse:
    result = await services.dispatcher.assign(order_id)
    return JSONResponse(status_code=200, content=result.model_dump(mode="json"))


@router.put("/{order_id}/delivery")
async def update_delivery(order_id: str, body: DeliveryInfoBody, services: Services = Depends(get_services)) -> JSONResponse:
    order = await services.lifecycle.update_delivery_info(order_id, body.actor, body.delivery)
    return JSONResponse(status_code=200, content=_order_content(order))


@router.post("/{order_id}/start")
async def start(order_id: str, body: ActorBody, services: Services = Depends(get_services)) -> JSONResponse:
    order = await services.lifecycle.start(order_id, body.actor)
    return JSONResponse(status_code=200, content=_order_content(order))


@router.post("/{order_id}/ready")
async def mark_ready(order_id: str, body: ActorBody, services: Services = Depends(get_services)) -> JSONResponse:
    order = await services.lifecycle.mark_ready(order_id, body.actor)
    return JSONResponse(status_code=200, content=_order_content(order))


@router.post("/{order_id}/ship")
async def ship(order_id: str, body: ShipBody, services: Services = Depends(get_services)) -> JSONResponse:
    order = await services.lifecycle.ship(
        order_id,
        body.actor,
        shipping_company=body.shipping_company,
        tracking_code=body.tracking_code,
        receipt_ref=body.receipt_ref,
    )
    return JSONResponse(status_code=200, content=_order_content(order))


@router.post("/{order_id}/pickup")
async def pick_up(order_id: str, body: ActorBody, services: Services = Depends(get_services)) -> JSONResponse:
    order = await services.lifecycle.pick_up(order_id, body.actor)
    return JSONResponse(status_code=200, content=_order_content(order))


@router.post("/{order_id}/deliver")
async def deliver(order_id: str, body: DeliverBody, services: Services = Depends(get_services)) -> JSONResponse:
    order = await services.lifecycle.confirm_delivery(order_id, body.actor, body.code)
    return JSONResponse(status_code=200, content=_order_content(order))


@router.post("/{order_id}/complete")
async def complete(order_id: str, body: ActorBody, services: Services = Depends(get_services)) -> JSONResponse:
    order = await services.lifecycle.complete(order_id, body.actor)
    return JSONResponse(status_code=200, content=_order_content(order))


@router.post("/{order_id}/cancel")
async def cancel(order_id: str, body: ActorBody, services: Services = Depends(get_services)) -> JSONResponse:
    order = await services.lifecycle.cancel(order_id, body.actor)
    return JSONResponse(status_code=200, content=_order_content(order))


@router.get("/{order_id}/timeline")
async def timeline(order_id: str, services: Services = Depends(get_services)) -> JSONResponse:
    events = await services.lifecycle.timeline(order_id)
    return JSONResponse(status_code=200, content=[e.model_dump(mode="json") for e in events])


@router.get("/{order_id}/earnings")
async def earnings(order_id: str, services: Services = Depends(get_services)) -> JSONResponse:
    payout = await services.lifecycle.earnings(order_id)
    return JSONResponse(status_code=200, content={"order_id": order_id, "delegate_payout": payout})
