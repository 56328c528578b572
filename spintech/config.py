from __future__ import annotations

import os
from dataclasses import dataclass

from spintech.constants import (
    DEFAULT_CONNECT_TIMEOUT_S,
    DEFAULT_DEVICE_IP,
    DEFAULT_POLL_INTERVAL_S,
    DEFAULT_READ_TIMEOUT_S,
)


@dataclass
class Config:
    """Runtime configuration for the device connection."""
    DEVICE_IP: str = DEFAULT_DEVICE_IP
    POLL_INTERVAL: float = DEFAULT_POLL_INTERVAL_S  # seconds between telemetry polls
    CONNECT_TIMEOUT: float = DEFAULT_CONNECT_TIMEOUT_S
    READ_TIMEOUT: float = DEFAULT_READ_TIMEOUT_S
    DEMO_MODE: bool = False

    @classmethod
    def from_env(cls) -> "Config":
        device_ip = os.getenv("SPINTECH_DEVICE_IP", DEFAULT_DEVICE_IP)
        poll_interval = float(
            os.getenv("SPINTECH_POLL_INTERVAL", str(DEFAULT_POLL_INTERVAL_S))
        )
        connect_timeout = float(
            os.getenv("SPINTECH_CONNECT_TIMEOUT", str(DEFAULT_CONNECT_TIMEOUT_S))
        )
        read_timeout = float(
            os.getenv("SPINTECH_READ_TIMEOUT", str(DEFAULT_READ_TIMEOUT_S))
        )
        demo = os.getenv("SPINTECH_DEMO", "0") in ("1", "true", "True", "yes", "YES")
        return cls(
            DEVICE_IP=device_ip,
            POLL_INTERVAL=poll_interval,
            CONNECT_TIMEOUT=connect_timeout,
            READ_TIMEOUT=read_timeout,
            DEMO_MODE=demo,
        )


# Default instance resolved at import time
config = Config.from_env()
