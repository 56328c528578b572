from __future__ import annotations

import asyncio

import pytest

from spintech.services.device_client import DeviceClient
from spintech.services.valve_controller import ValveController
from tests.utils.fake_http import FakeResponse, FakeSession, connection_refused


class ValveEvents:
    def __init__(self, valve: ValveController) -> None:
        self.positions: list[int] = []
        self.completed: list[int] = []
        self.errors: list[str] = []
        valve.on_position_changed = self.positions.append
        valve.on_adjustment_complete = self.completed.append
        valve.on_error = self.errors.append


def sent_positions(session: FakeSession) -> list[int]:
    return [c.json()["position"] for c in session.calls_to("POST", "/valve")]


def applied_positions(session: FakeSession) -> list[int]:
    return [c.json()["position"] for c in session.applied_to("POST", "/valve")]


async def _wait_for_first_write(session: FakeSession) -> None:
    for _ in range(200):
        if sent_positions(session):
            return
        await asyncio.sleep(0.005)
    raise AssertionError("no valve write was issued")


@pytest.mark.unit
async def test_small_move_is_direct(valve: ValveController, session: FakeSession):
    ev = ValveEvents(valve)
    await valve.set_position(5)
    assert valve.adjustment_task is None
    assert sent_positions(session) == [5]
    assert valve.current_position == 5
    assert ev.positions == [5]
    assert ev.completed == [5]
    assert not valve.is_adjusting


@pytest.mark.unit
async def test_large_move_ramps_in_steps(valve: ValveController, session: FakeSession):
    ev = ValveEvents(valve)
    await valve.set_position(17)
    assert valve.is_adjusting
    assert valve.target_position == 17
    await valve.wait_adjustment()
    assert sent_positions(session) == [5, 10, 15, 17]
    assert ev.positions == [5, 10, 15, 17]
    assert ev.completed == [17]
    assert valve.current_position == 17
    assert not valve.is_adjusting


@pytest.mark.unit
async def test_ramp_down(valve: ValveController, session: FakeSession):
    valve.update_current_position(50)
    await valve.set_position(38)
    await valve.wait_adjustment()
    assert sent_positions(session) == [45, 40, 38]


@pytest.mark.unit
async def test_non_smooth_large_move_is_single_command(valve: ValveController, session: FakeSession):
    await valve.set_position(80, smooth=False)
    assert sent_positions(session) == [80]


@pytest.mark.unit
async def test_target_is_clamped(valve: ValveController, session: FakeSession):
    valve.update_current_position(98)
    await valve.set_position(250)
    assert valve.target_position == 100
    assert sent_positions(session) == [100]


@pytest.mark.unit
async def test_ramp_stops_on_device_failure(valve: ValveController, session: FakeSession):
    session.route("POST", "/valve", [FakeResponse(200, "OK"), FakeResponse(500, "jammed")])
    ev = ValveEvents(valve)
    await valve.set_position(30)
    await valve.wait_adjustment()
    assert ev.positions == [5]
    assert len(ev.errors) == 1 and ev.errors[0].startswith("Smooth adjustment error")
    assert ev.completed == [5]
    assert valve.current_position == 5
    assert not valve.is_adjusting


@pytest.mark.unit
async def test_direct_failure_keeps_position(valve: ValveController, session: FakeSession):
    session.route("POST", "/valve", connection_refused())
    ev = ValveEvents(valve)
    await valve.set_position(3)
    assert valve.current_position == 0
    assert ev.completed == []
    assert ev.errors and ev.errors[0].startswith("Valve positioning error")
    assert not valve.is_adjusting


@pytest.mark.unit
async def test_new_command_cancels_running_ramp(client: DeviceClient, session: FakeSession):
    slow = ValveController(client, step_delay=10.0)
    ev = ValveEvents(slow)
    await slow.set_position(50)
    ramp = slow.adjustment_task
    for _ in range(100):
        if sent_positions(session):
            break
        await asyncio.sleep(0.01)
    await slow.set_position(3)
    await asyncio.sleep(0.01)
    assert ramp is not None and ramp.cancelled()
    assert sent_positions(session) == [5, 3]
    assert slow.current_position == 3
    assert ev.completed == [3]
    assert not slow.is_adjusting
    await slow.close()


@pytest.mark.unit
async def test_emergency_close_lands_after_slow_ramp_step(
    valve: ValveController, session: FakeSession
):
    session.route("POST", "/valve", [FakeResponse(200, "OK", delay=0.2), FakeResponse(200, "OK")])
    ev = ValveEvents(valve)
    await valve.set_position(60)
    await _wait_for_first_write(session)
    await valve.emergency_close()
    assert applied_positions(session) == [5, 0]
    assert applied_positions(session)[-1] == 0
    assert valve.current_position == 0
    assert ev.completed == [0]
    assert not valve.is_adjusting


@pytest.mark.unit
async def test_emergency_open_waits_for_ramp_step_in_flight(
    valve: ValveController, session: FakeSession
):
    valve.update_current_position(80)
    session.route("POST", "/valve", [FakeResponse(200, "OK", delay=0.2), FakeResponse(200, "OK")])
    await valve.set_position(20)
    await _wait_for_first_write(session)
    await valve.emergency_open()
    assert applied_positions(session) == [75, 100]
    assert valve.current_position == 100


@pytest.mark.unit
async def test_still_adjusting_while_replacement_command_is_pending(
    valve: ValveController, session: FakeSession
):
    session.route(
        "POST", "/valve", [FakeResponse(200, "OK", delay=0.2), FakeResponse(200, "OK", delay=0.05)]
    )
    await valve.set_position(50)
    await _wait_for_first_write(session)
    direct = asyncio.create_task(valve.set_position(3))
    await asyncio.sleep(0.01)
    assert valve.adjustment_task is None
    assert valve.is_adjusting
    await direct
    assert not valve.is_adjusting
    assert applied_positions(session) == [5, 3]
    assert valve.current_position == 3


@pytest.mark.unit
async def test_emergency_close_and_open(valve: ValveController, session: FakeSession):
    valve.update_current_position(60)
    await valve.emergency_close()
    assert valve.current_position == 0
    assert valve.target_position == 0
    await valve.emergency_open()
    assert valve.current_position == 100
    assert sent_positions(session) == [0, 100]


@pytest.mark.unit
async def test_increase_and_decrease_are_clamped(valve: ValveController, session: FakeSession):
    valve.update_current_position(98)
    await valve.increase_position()
    assert valve.current_position == 100
    valve.update_current_position(2)
    await valve.decrease_position()
    assert valve.current_position == 0
    await valve.increase_position(step=10)
    assert sent_positions(session) == [100, 0, 10]


@pytest.mark.unit
def test_update_current_position_clamps(session: FakeSession):
    v = ValveController(DeviceClient(session=session))
    v.update_current_position(-20)
    assert v.current_position == 0
    v.update_current_position(130)
    assert v.current_position == 100


@pytest.mark.unit
@pytest.mark.parametrize(
    ("position", "rpm", "temp", "expected"),
    [
        (95, 12000, 100.0, "Danger: high shaft speed"),
        (85, 3000, 300.0, "Danger: high temperature"),
        (5, 300, 100.0, "Warning: opening this small"),
        (90, 12000, 100.0, None),
        (80, 3000, 300.0, None),
        (10, 300, 100.0, None),
        (50, 3000, 200.0, None),
    ],
)
def test_validate_position(session: FakeSession, position, rpm, temp, expected):
    warning = ValveController(DeviceClient(session=session)).validate_position(position, rpm, temp)
    if expected is None:
        assert warning is None
    else:
        assert warning is not None and warning.startswith(expected)


@pytest.mark.unit
async def test_safety_check_blocks_unsafe_command(valve: ValveController, session: FakeSession):
    ev = ValveEvents(valve)
    sent = await valve.set_position_with_safety_check(95, current_rpm=12000, current_temp=150.0)
    assert sent is False
    assert sent_positions(session) == []
    assert ev.errors[0].startswith("Safety warning: Danger")


@pytest.mark.unit
async def test_safety_check_can_be_forced(valve: ValveController, session: FakeSession):
    valve.update_current_position(92)
    sent = await valve.set_position_with_safety_check(
        95, current_rpm=12000, current_temp=150.0, force_unsafe=True
    )
    assert sent is True
    assert sent_positions(session) == [95]


@pytest.mark.unit
async def test_safe_command_passes_through(valve: ValveController, session: FakeSession):
    sent = await valve.set_position_with_safety_check(40, current_rpm=3000, current_temp=200.0)
    assert sent is True
    await valve.wait_adjustment()
    assert sent_positions(session)[-1] == 40
