from __future__ import annotations

import asyncio
import contextlib
import logging

from spintech.constants import DEFAULT_POLL_INTERVAL_S, HISTORY_LIMIT
from spintech.errors import DeviceError
from spintech.services.device_client import DeviceClient
from spintech.services.valve_controller import ValveController
from spintech.state import (
    TurbineData,
    TurbineHistoryPoint,
    TurbineState,
    TurbineStatus,
    turbine_state,
)

logger = logging.getLogger(__name__)


class TurbineViewModel:
    """
    Glue between the device services and the bindable TurbineState.

    Client and valve callbacks are mirrored into state fields; user actions are
    routed either to the device or, in demo mode, applied to local data only.
    """

    def __init__(
        self,
        device: DeviceClient | None = None,
        valve: ValveController | None = None,
        state: TurbineState | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_S,
        demo_interval: float = 1.0,
    ) -> None:
        self.device = device or DeviceClient()
        self.valve = valve or ValveController(self.device)
        self.state = state if state is not None else turbine_state
        self.poll_interval = poll_interval
        self.demo_interval = demo_interval
        self._demo_task: asyncio.Task | None = None

        self._setup_device_callbacks()
        self._setup_valve_callbacks()

    # ---- Callback wiring ----

    def _setup_device_callbacks(self) -> None:
        self.device.on_data_received = self._on_data_received
        self.device.on_status_changed = self._on_status_changed
        self.device.on_error = self._on_device_error

    def _setup_valve_callbacks(self) -> None:
        self.valve.on_position_changed = self._on_valve_position
        self.valve.on_adjustment_complete = self._on_valve_complete
        self.valve.on_error = self._on_valve_error

    def _on_data_received(self, data: TurbineData) -> None:
        self._set_data(data)
        self.state.is_connected = True
        self.state.error_message = None
        self._add_history_point(data)
        self.valve.update_current_position(data.valve_position)
        self.state.valve_position = data.valve_position

    def _on_status_changed(self, status: TurbineStatus) -> None:
        self.state.turbine_status = status
        self.state.is_connected = status.is_online

    def _on_device_error(self, message: str) -> None:
        self.state.error_message = message
        self.state.is_connected = False

    def _on_valve_position(self, position: int) -> None:
        self.state.valve_position = position

    def _on_valve_complete(self, position: int) -> None:
        self.state.is_valve_adjusting = False

    def _on_valve_error(self, message: str) -> None:
        self.state.error_message = message
        self.state.is_valve_adjusting = False

    # ---- State helpers ----

    def _set_data(self, data: TurbineData) -> None:
        s = self.state
        s.turbine_data = data
        s.rpm = data.rpm
        s.temp_in = data.temp_in
        s.temp_out = data.temp_out
        s.power = data.power
        s.efficiency = data.efficiency
        s.is_running = data.is_running

    def _add_history_point(self, data: TurbineData) -> None:
        history = list(self.state.history)
        history.append(TurbineHistoryPoint.from_data(data))
        # keep the newest HISTORY_LIMIT points
        self.state.history = history[-HISTORY_LIMIT:]

    def _report(self, action: str, e: DeviceError) -> None:
        logger.error("%s failed: %s", action, e)
        self.state.error_message = str(e)

    # ---- Connection ----

    async def connect_to_device(self, ip: str | None = None) -> bool:
        """Check the device and start polling it when reachable."""
        self.state.is_loading = True
        self.state.error_message = None
        try:
            if ip is not None:
                self.device.set_device_ip(ip)
            connected = await self.device.check_connection()
            if connected:
                self.device.start_polling(self.poll_interval)
            return connected
        finally:
            self.state.is_loading = False

    def disconnect_from_device(self) -> None:
        self.device.stop_polling()
        self.state.is_connected = False
        self.state.turbine_status = TurbineStatus("offline")

    # ---- Actions ----

    async def set_valve_position(self, position: int) -> None:
        self.state.is_valve_adjusting = True
        self.state.error_message = None

        if self.state.is_demo_mode:
            self.state.valve_position = position
            self.state.is_valve_adjusting = False
        else:
            await self.valve.set_position(position, smooth=True)

    async def emergency_stop(self) -> None:
        """Close the valve and issue emergency_stop (demo: stop locally)."""
        self.state.error_message = None

        if self.state.is_demo_mode:
            self._set_data(self.state.turbine_data.replace(is_running=False, rpm=0))
            self.state.valve_position = 0
            return

        await self.valve.emergency_close()
        try:
            await self.device.send_system_command("emergency_stop")
        except DeviceError as e:
            self._report("Emergency stop", e)

    async def start_turbine(self) -> None:
        await self._system_action("start", is_running=True)

    async def stop_turbine(self) -> None:
        await self._system_action("stop", is_running=False, rpm=0)

    async def restart_turbine(self) -> None:
        await self._system_action("restart", is_running=True)

    async def _system_action(self, action: str, **demo_changes) -> None:
        self.state.error_message = None

        if self.state.is_demo_mode:
            self._set_data(self.state.turbine_data.replace(**demo_changes))
            return

        try:
            await self.device.send_system_command(action)
        except DeviceError as e:
            self._report(f"System command {action}", e)

    async def refresh_data(self) -> None:
        """Fetch one reading now (demo: generate one)."""
        self.state.is_loading = True
        try:
            if self.state.is_demo_mode:
                data = self.device.get_test_data()
                self._set_data(data)
                self._add_history_point(data)
            else:
                try:
                    await self.device.get_turbine_data()
                except DeviceError as e:
                    self._report("Refresh", e)
        finally:
            self.state.is_loading = False

    def clear_error(self) -> None:
        self.state.error_message = None

    # ---- Demo mode ----

    async def toggle_demo_mode(self) -> None:
        self.state.is_demo_mode = not self.state.is_demo_mode

        if self.state.is_demo_mode:
            self.disconnect_from_device()
            self._start_demo_data_generation()
        else:
            await self._stop_demo_data_generation()

    def _start_demo_data_generation(self) -> None:
        self.state.is_connected = True
        self.state.turbine_status = TurbineStatus("online")
        self._demo_task = asyncio.create_task(self._demo_loop())
        logger.info("Demo mode enabled")

    async def _demo_loop(self) -> None:
        while self.state.is_demo_mode:
            data = self.device.get_test_data().replace(
                valve_position=self.state.valve_position,
                is_running=self.state.turbine_data.is_running,
            )
            self._set_data(data)
            self._add_history_point(data)
            await asyncio.sleep(self.demo_interval)

    async def _stop_demo_data_generation(self) -> None:
        task, self._demo_task = self._demo_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.state.is_connected = False
        self.state.turbine_status = TurbineStatus("offline")
        logger.info("Demo mode disabled")

    async def close(self) -> None:
        """Release polling, demo and valve tasks plus the HTTP session."""
        if self._demo_task is not None:
            self.state.is_demo_mode = False
            await self._stop_demo_data_generation()
        await self.valve.close()
        await self.device.close()
