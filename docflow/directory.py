"""
Delegate directory: which delegate serves a (city, service). Reads the store on every call.
"""
import logging
import warnings

from docflow.errors import DataIntegrityWarning
from docflow.metrics import directory_integrity_warnings_total
from docflow.models import Delegate, ServiceCategory
from docflow.store import OrderStore

logger = logging.getLogger(__name__)


class DelegateDirectory:
    def __init__(self, store: OrderStore):
        self._store = store

    async def find_delegate(self, city: str, service: ServiceCategory) -> Delegate | None:
        """
        The one available delegate for (city, service), or None.
        More than one match is a data-integrity violation: the lowest id wins and the duplicate is reported.
        """
        matches = await self._store.find_delegates(city, service)
        if not matches:
            return None
        if len(matches) > 1:
            directory_integrity_warnings_total.inc()
            message = (
                f"{len(matches)} available delegates for city={city!r} service={service.value}: "
                f"{[d.id for d in matches]}; using {matches[0].id}"
            )
            logger.warning("Directory consistency: %s", message)
            warnings.warn(message, DataIntegrityWarning, stacklevel=2)
        return matches[0]

    async def is_service_available(self, city: str, service: ServiceCategory) -> bool:
        return bool(await self._store.find_delegates(city, service))

    async def available_cities(self) -> list[dict]:
        """Cities with at least one available delegate, and the services covered there."""
        cities: dict[str, dict] = {}
        for d in await self._store.list_available_delegates():
            entry = cities.setdefault(d.city, {"city": d.city, "services": [], "total_delegates": 0})
            if d.service.value not in entry["services"]:
                entry["services"].append(d.service.value)
            entry["total_delegates"] += 1
        return sorted(cities.values(), key=lambda c: c["city"])
