from dataclasses import dataclass
from datetime import timedelta

from fastapi import Request

from docflow.directory import DelegateDirectory
from docflow.dispatch import Dispatcher
from docflow.lifecycle import OrderLifecycle
from docflow.notifications import Notifier
from docflow.payments import PaymentService
from docflow.store import OrderStore


@dataclass
class Services:
    store: OrderStore
    notifier: Notifier
    directory: DelegateDirectory
    dispatcher: Dispatcher
    lifecycle: OrderLifecycle
    payments: PaymentService


def build_services(
    store: OrderStore,
    notifier: Notifier,
    require_delivery_info: bool | None = None,
    invoice_ttl: timedelta | None = None,
) -> Services:
    directory = DelegateDirectory(store)
    dispatcher = Dispatcher(store, directory, notifier)
    return Services(
        store=store,
        notifier=notifier,
        directory=directory,
        dispatcher=dispatcher,
        lifecycle=OrderLifecycle(store, notifier, require_delivery_info=require_delivery_info),
        payments=PaymentService(store, dispatcher, notifier, invoice_ttl=invoice_ttl),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
