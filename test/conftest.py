import pytest

from docflow.memory_store import MemoryStore
from docflow.services import build_services

from _helper import RecordingNotifier


@pytest.fixture()
def store():
    return MemoryStore()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def services(store, notifier):
    return build_services(store, notifier, require_delivery_info=True)
