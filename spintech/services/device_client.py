from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Callable, Optional

import requests

from spintech.common.logging_config import TRACE
from spintech.constants import (
    DEFAULT_CONNECT_TIMEOUT_S,
    DEFAULT_DEVICE_IP,
    DEFAULT_POLL_INTERVAL_S,
    DEFAULT_READ_TIMEOUT_S,
    PING_PATH,
    STATUS_PATH,
    SYSTEM_PATH,
    VALVE_PATH,
)
from spintech.errors import DeviceConnectionError, DeviceError, DeviceHTTPError
from spintech.services.data_parser import DataParser, clamp_position
from spintech.state import TurbineData, TurbineStatus

logger = logging.getLogger(__name__)

_JSON_HEADERS = {"Content-Type": "application/json"}


class DeviceClient:
    """
    HTTP client for the turbine's ESP32 controller.

    - Tracks connection state from /ping results.
    - Fetches telemetry from /status and pushes it to on_data_received.
    - Sends valve and system commands.
    - Runs at most one periodic poll task at a time.

    Blocking requests calls run in a worker thread; callbacks always fire on the
    event loop that awaited the call.
    """

    def __init__(
        self,
        device_ip: str = DEFAULT_DEVICE_IP,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_S,
        read_timeout: float = DEFAULT_READ_TIMEOUT_S,
        session: requests.Session | None = None,
        parser: DataParser | None = None,
    ) -> None:
        self.device_ip = device_ip
        self.timeout = (connect_timeout, read_timeout)
        self._session = session or requests.Session()
        self._parser = parser or DataParser()
        self._connected = False
        self._poll_task: asyncio.Task | None = None

        self.on_data_received: Optional[Callable[[TurbineData], None]] = None
        self.on_status_changed: Optional[Callable[[TurbineStatus], None]] = None
        self.on_error: Optional[Callable[[str], None]] = None

    # ---- Properties ----

    @property
    def base_url(self) -> str:
        return f"http://{self.device_ip}"

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def set_device_ip(self, ip: str) -> None:
        """Point the client at another device (host or host:port)."""
        ip = (ip or "").strip()
        if not ip:
            raise ValueError("Device IP must not be empty")
        if ip.startswith("http://"):
            ip = ip[len("http://"):]
        self.device_ip = ip.rstrip("/")
        logger.info("Device target set to %s", self.device_ip)

    # ---- Callback helpers ----

    def _emit_status(self, status: TurbineStatus) -> None:
        if self.on_status_changed:
            self.on_status_changed(status)

    def _emit_error(self, message: str) -> None:
        logger.warning(message)
        if self.on_error:
            self.on_error(message)

    # ---- Transport ----

    def _send_blocking(
        self, method: str, path: str, body: str | None = None
    ) -> tuple[int, str]:
        url = f"{self.base_url}{path}"
        logger.debug("--> %s %s", method, url)
        if body is not None and logger.isEnabledFor(TRACE):
            logger.trace("--> body %s", body)  # type: ignore[attr-defined]
        t0 = time.monotonic()
        resp = self._session.request(
            method,
            url,
            data=body.encode("utf-8") if body is not None else None,
            headers=_JSON_HEADERS if body is not None else None,
            timeout=self.timeout,
        )
        try:
            text = resp.text or ""
            code = resp.status_code
        finally:
            resp.close()
        logger.debug("<-- %s %s (%dms)", code, url, (time.monotonic() - t0) * 1000)
        if logger.isEnabledFor(TRACE):
            logger.trace("<-- body %s", text)  # type: ignore[attr-defined]
        return code, text

    async def _send(self, method: str, path: str, body: str | None = None) -> tuple[int, str]:
        """Run one request off the event loop. Raises requests exceptions unchanged."""
        return await asyncio.to_thread(self._send_blocking, method, path, body)

    # ---- API ----

    async def check_connection(self) -> bool:
        """Ping the device and publish the resulting online/offline status."""
        try:
            code, _ = await self._send("GET", PING_PATH)
        except requests.RequestException as e:
            self._connected = False
            self._emit_status(TurbineStatus("offline", f"Connection error: {e}"))
            self._emit_error(f"Connection error: {e}")
            return False

        self._connected = 200 <= code < 300
        if self._connected:
            self._emit_status(TurbineStatus("online"))
        else:
            self._emit_status(TurbineStatus("offline", "No response from device"))
        return self._connected

    async def get_turbine_data(self) -> TurbineData:
        """
        Fetch and decode the current telemetry.

        Raises:
            DeviceConnectionError: transport failure (also reported via on_error)
            DeviceHTTPError: non-success status code
            ParseError: malformed telemetry document
        """
        try:
            code, text = await self._send("GET", STATUS_PATH)
        except requests.RequestException as e:
            self._emit_error(f"Failed to fetch data: {e}")
            raise DeviceConnectionError(f"Failed to fetch data: {e}") from e

        if not 200 <= code < 300:
            raise DeviceHTTPError(f"HTTP error: {code}", code)

        data = self._parser.parse_turbine_data(text)
        if self.on_data_received:
            self.on_data_received(data)
        return data

    async def get_system_status(self) -> TurbineStatus:
        """Fetch /status and decode it as a system status document."""
        try:
            code, text = await self._send("GET", STATUS_PATH)
        except requests.RequestException as e:
            self._emit_error(f"Failed to fetch status: {e}")
            raise DeviceConnectionError(f"Failed to fetch status: {e}") from e

        if not 200 <= code < 300:
            raise DeviceHTTPError(f"HTTP error: {code}", code)
        return self._parser.parse_system_status(text)

    async def set_valve_position(self, position: int) -> str:
        """Command the valve to position (clamped to 0..100) and return a confirmation."""
        position = clamp_position(position)
        body = self._parser.create_valve_command(position)
        try:
            code, _ = await self._send("POST", VALVE_PATH, body)
        except requests.RequestException as e:
            self._emit_error(f"Valve control error: {e}")
            raise DeviceConnectionError(f"Valve control error: {e}") from e

        if not 200 <= code < 300:
            raise DeviceHTTPError(f"Valve control error: {code}", code)
        logger.info("Valve set to %s%%", position)
        return f"Valve set to {position}%"

    async def send_system_command(
        self, action: str, parameters: dict[str, str] | None = None
    ) -> str:
        """Send start/stop/restart/emergency_stop to the device."""
        body = self._parser.create_system_command(action, parameters)
        try:
            code, _ = await self._send("POST", SYSTEM_PATH, body)
        except requests.RequestException as e:
            self._emit_error(f"System command error: {e}")
            raise DeviceConnectionError(f"System command error: {e}") from e

        if not 200 <= code < 300:
            raise DeviceHTTPError(f"Command execution error: {code}", code)
        logger.info("System command %s sent", action)
        return f"Command '{action}' executed"

    # ---- Polling ----

    async def _poll_loop(self, interval: float) -> None:
        while True:
            if await self.check_connection():
                try:
                    await self.get_turbine_data()
                except DeviceError as e:
                    logger.debug("Poll fetch failed: %s", e)
            await asyncio.sleep(interval)

    def start_polling(self, interval: float = DEFAULT_POLL_INTERVAL_S) -> None:
        """Start (or restart) periodic ping+fetch. Must be called from a running loop."""
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.stop_polling()
        self._poll_task = asyncio.create_task(self._poll_loop(interval))
        logger.info("Polling %s every %.2fs", self.base_url, interval)

    def stop_polling(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None

    def get_test_data(self) -> TurbineData:
        return self._parser.create_test_data()

    async def close(self) -> None:
        """Stop polling and release the HTTP session."""
        task = self._poll_task
        self.stop_polling()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._session.close()
