from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from spintech.services.device_client import DeviceClient
from spintech.services.valve_controller import ValveController
from spintech.services.view_model import TurbineViewModel
from spintech.state import TurbineState
from tests.utils.fake_http import FakeResponse, FakeSession

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


@pytest.fixture
def session() -> FakeSession:
    """Fake HTTP session answering /ping, /valve and /system with 200 by default."""
    s = FakeSession()
    s.route("GET", "/ping", FakeResponse(200, "pong"))
    s.route("POST", "/valve", FakeResponse(200, "OK"))
    s.route("POST", "/system", FakeResponse(200, "OK"))
    return s


@pytest.fixture
async def client(session: FakeSession) -> AsyncIterator[DeviceClient]:
    c = DeviceClient(device_ip="10.0.0.7", session=session)
    try:
        yield c
    finally:
        await c.close()


@pytest.fixture
async def valve(client: DeviceClient) -> AsyncIterator[ValveController]:
    v = ValveController(client, step_delay=0.0)
    try:
        yield v
    finally:
        await v.close()


@pytest.fixture
async def view_model(
    client: DeviceClient, valve: ValveController
) -> AsyncIterator[TurbineViewModel]:
    vm = TurbineViewModel(
        device=client,
        valve=valve,
        state=TurbineState(),
        poll_interval=0.01,
        demo_interval=0.01,
    )
    try:
        yield vm
    finally:
        await vm.close()
