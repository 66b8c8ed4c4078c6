import uuid

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from docflow.models import Actor, ActorRole, Delegate, OrderStatus, ServiceCategory
from docflow.services import Services, get_services

router = APIRouter(prefix="/admin", tags=["admin"])


class OperatorBody(BaseModel):
    operator_id: str = Field(..., description="Admin account performing the override")

    @property
    def operator(self) -> Actor:
        return Actor(role=ActorRole.ADMIN, id=self.operator_id)


class CreateDelegateBody(BaseModel):
    user_id: str
    name: str = ""
    city: str
    service: ServiceCategory
    is_available: bool = True


class ForceAssignBody(OperatorBody):
    delegate_id: str


class ForceStatusBody(OperatorBody):
    status: OrderStatus


class AssignCourierBody(OperatorBody):
    courier_id: str


@router.post("/delegates")
async def create_delegate(body: CreateDelegateBody, services: Services = Depends(get_services)) -> JSONResponse:
    """Provision a delegate. 409 if an available delegate already covers the city and service."""
    delegate = Delegate(id=str(uuid.uuid4()), **body.model_dump())
    await services.store.insert_delegate(delegate)
    return JSONResponse(status_code=201, content=delegate.model_dump(mode="json"))


@router.post("/orders/{order_id}/force-assign")
async def force_assign(order_id: str, body: ForceAssignBody, services: Services = Depends(get_services)) -> JSONResponse:
    order = await services.dispatcher.force_assign(order_id, body.delegate_id, body.operator)
    return JSONResponse(status_code=200, content=order.model_dump(mode="json", exclude={"delivery_code"}))


@router.post("/orders/{order_id}/force-status")
async def force_status(order_id: str, body: ForceStatusBody, services: Services = Depends(get_services)) -> JSONResponse:
    order = await services.lifecycle.force_status(order_id, body.status, body.operator)
    return JSONResponse(status_code=200, content=order.model_dump(mode="json", exclude={"delivery_code"}))


@router.post("/orders/{order_id}/courier")
async def assign_courier(order_id: str, body: AssignCourierBody, services: Services = Depends(get_services)) -> JSONResponse:
    order = await services.lifecycle.assign_courier(order_id, body.courier_id, body.operator)
    return JSONResponse(status_code=200, content=order.model_dump(mode="json", exclude={"delivery_code"}))


@router.post("/invoices/expire")
async def expire_invoices(services: Services = Depends(get_services)) -> JSONResponse:
    """Sweep pending invoices past their expiry to expired. Returns how many moved."""
    expired = await services.payments.expire_invoices()
    return JSONResponse(status_code=200, content={"status": "ok", "expired": expired})
