import pytest

from orderboard.context import AppContext
from orderboard.identity import MemoryIdentity
from orderboard.settings import Settings
from orderboard.store import MemoryCollection


def order_record(**overrides):
    record = {
        "orderNumber": "2024/100",
        "clientName": "Klient",
        "currentStage": "studio",
        "isCompleted": False,
        "isUrgent": False,
        "deliveryDate": "2024-05-10",
        "printType": ["digital"],
        "notes": "",
    }
    record.update(overrides)
    return record


@pytest.fixture
def settings() -> Settings:
    return Settings(sandbox_mode=True, sandbox_invite_code="")


@pytest.fixture
def orders() -> MemoryCollection:
    return MemoryCollection("orders", {
        "o1": order_record(orderNumber="2024/001", clientName="Beta s.r.o.", deliveryDate="2024-05-10"),
        "o2": order_record(orderNumber="2024/002", clientName="Alfa", deliveryDate="2024-05-09", isUrgent=True),
    })


@pytest.fixture
def invites() -> MemoryCollection:
    return MemoryCollection("invites", {"ABCD1234": {"code": "ABCD1234"}})


@pytest.fixture
def context(settings, orders, invites) -> AppContext:
    return AppContext(settings=settings, orders=orders, invites=invites, identity=MemoryIdentity())
