from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Callable, Optional

from spintech.constants import (
    SAFETY_RPM_HIGH,
    SAFETY_RPM_LOW,
    SAFETY_TEMP_HIGH_C,
    VALVE_MAX,
    VALVE_MIN,
    VALVE_STEP,
    VALVE_STEP_DELAY_S,
)
from spintech.errors import DeviceError
from spintech.services.data_parser import clamp_position
from spintech.services.device_client import DeviceClient

logger = logging.getLogger(__name__)


class ValveController:
    """
    Drives the steam valve through a DeviceClient.

    Large moves are ramped in VALVE_STEP increments with a pause between steps;
    small moves and emergency actions are commanded directly. Only one ramp runs
    at a time: any new command cancels it, and valve writes never overlap.
    """

    def __init__(
        self,
        device: DeviceClient,
        step: int = VALVE_STEP,
        step_delay: float = VALVE_STEP_DELAY_S,
    ) -> None:
        self.device = device
        self.step = step
        self.step_delay = step_delay
        self._current = 0
        self._target = 0
        self._direct_pending = 0
        self._task: asyncio.Task | None = None
        # Valve writes go out one at a time, in call order
        self._send_lock = asyncio.Lock()
        self._inflight: asyncio.Task | None = None

        self.on_position_changed: Optional[Callable[[int], None]] = None
        self.on_adjustment_complete: Optional[Callable[[int], None]] = None
        self.on_error: Optional[Callable[[str], None]] = None

    @property
    def current_position(self) -> int:
        return self._current

    @property
    def target_position(self) -> int:
        return self._target

    @property
    def is_adjusting(self) -> bool:
        ramping = self._task is not None and not self._task.done()
        return ramping or self._direct_pending > 0

    @property
    def adjustment_task(self) -> asyncio.Task | None:
        return self._task

    def _emit_error(self, message: str) -> None:
        logger.warning(message)
        if self.on_error:
            self.on_error(message)

    # ---- Transport ----

    async def _settle_inflight(self) -> None:
        """Wait until the previous valve write has left the worker thread."""
        prev = self._inflight
        if prev is not None and not prev.done():
            await asyncio.wait({prev})

    async def _send_position(self, position: int) -> None:
        """
        Write one position to the device.

        The request runs in its own task shielded from the caller, so cancelling
        a ramp cannot leave a stale write racing the next command: the next
        caller waits for it under the lock before sending.
        """
        async with self._send_lock:
            await self._settle_inflight()
            send = asyncio.create_task(self.device.set_valve_position(position))
            send.add_done_callback(_consume_result)
            self._inflight = send
            await asyncio.shield(send)

    # ---- Commands ----

    async def set_position(self, position: int, smooth: bool = True) -> None:
        """Move towards position; ramps when smooth and the move exceeds one step."""
        target = clamp_position(position)
        self.stop_adjustment()
        self._target = target

        if smooth and abs(target - self._current) > self.step:
            self._start_smooth_adjustment()
        else:
            await self._set_position_direct(target)

    async def _set_position_direct(self, position: int) -> None:
        self._direct_pending += 1
        try:
            await self._send_position(position)
        except DeviceError as e:
            self._emit_error(f"Valve positioning error: {e}")
            return
        finally:
            self._direct_pending -= 1

        self._current = position
        if self.on_position_changed:
            self.on_position_changed(position)
        if self.on_adjustment_complete:
            self.on_adjustment_complete(position)

    def _start_smooth_adjustment(self) -> None:
        self._task = asyncio.create_task(self._smooth_adjustment())

    async def _smooth_adjustment(self) -> None:
        logger.debug("Ramping valve %s%% -> %s%%", self._current, self._target)
        while self._current != self._target:
            delta = self._target - self._current
            step = min(self.step, delta) if delta > 0 else max(-self.step, delta)
            new_position = self._current + step
            try:
                await self._send_position(new_position)
            except DeviceError as e:
                self._emit_error(f"Smooth adjustment error: {e}")
                break

            self._current = new_position
            if self.on_position_changed:
                self.on_position_changed(new_position)
            await asyncio.sleep(self.step_delay)

        if self.on_adjustment_complete:
            self.on_adjustment_complete(self._current)

    async def emergency_close(self) -> None:
        """Cancel any ramp and shut the valve immediately."""
        self.stop_adjustment()
        self._target = VALVE_MIN
        await self._set_position_direct(VALVE_MIN)

    async def emergency_open(self) -> None:
        """Cancel any ramp and open the valve fully."""
        self.stop_adjustment()
        self._target = VALVE_MAX
        await self._set_position_direct(VALVE_MAX)

    async def increase_position(self, step: int = VALVE_STEP) -> None:
        await self.set_position(clamp_position(self._current + step), smooth=False)

    async def decrease_position(self, step: int = VALVE_STEP) -> None:
        await self.set_position(clamp_position(self._current - step), smooth=False)

    def update_current_position(self, position: int) -> None:
        """Sync with the position reported by the device without commanding it."""
        self._current = clamp_position(position)

    def stop_adjustment(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def wait_adjustment(self) -> None:
        """Wait for the running ramp, if any, to finish."""
        task = self._task
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # ---- Safety ----

    def validate_position(
        self, position: int, current_rpm: int, current_temp: float
    ) -> str | None:
        """Return a warning when position is unsafe for the current operating point."""
        if position > 90 and current_rpm > SAFETY_RPM_HIGH:
            return "Danger: high shaft speed with a wide-open valve"
        if position > 80 and current_temp > SAFETY_TEMP_HIGH_C:
            return "Danger: high temperature with a wide-open valve"
        if position < 10 and current_rpm < SAFETY_RPM_LOW:
            return "Warning: opening this small may stall the turbine"
        return None

    async def set_position_with_safety_check(
        self,
        position: int,
        current_rpm: int,
        current_temp: float,
        force_unsafe: bool = False,
    ) -> bool:
        """Command position unless it trips a safety gate; returns whether it was sent."""
        warning = self.validate_position(position, current_rpm, current_temp)
        if warning is not None and not force_unsafe:
            self._emit_error(f"Safety warning: {warning}")
            return False
        if warning is not None:
            logger.warning("Overriding safety gate: %s", warning)
        await self.set_position(position)
        return True

    async def close(self) -> None:
        task = self._task
        self.stop_adjustment()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._settle_inflight()


def _consume_result(task: asyncio.Task) -> None:
    # the awaiting caller reports failures; this only marks them retrieved
    if not task.cancelled():
        task.exception()
