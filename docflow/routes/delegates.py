from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from docflow.models import ServiceCategory
from docflow.services import Services, get_services

router = APIRouter(prefix="/delegates", tags=["delegates"])


@router.get("/cities")
async def available_cities(services: Services = Depends(get_services)) -> JSONResponse:
    """Cities where at least one delegate is available, with the services covered."""
    cities = await services.directory.available_cities()
    return JSONResponse(status_code=200, content={"cities": cities})


@router.get("/availability")
async def availability(
    city: str = Query(...),
    service: ServiceCategory = Query(...),
    services: Services = Depends(get_services),
) -> JSONResponse:
    available = await services.directory.is_service_available(city, service)
    return JSONResponse(status_code=200, content={"city": city, "service": service.value, "available": available})
