from __future__ import annotations

import logging
import os

# The ESP32 runs as a Wi-Fi access point at this address by default
DEFAULT_DEVICE_IP = "192.168.4.1"

# HTTP timeouts in seconds
DEFAULT_CONNECT_TIMEOUT_S = 5.0
DEFAULT_READ_TIMEOUT_S = 10.0

DEFAULT_POLL_INTERVAL_S = 1.0

# Device API endpoints
PING_PATH = "/ping"
STATUS_PATH = "/status"
VALVE_PATH = "/valve"
SYSTEM_PATH = "/system"

SYSTEM_ACTIONS = ("start", "stop", "restart", "emergency_stop")

# Valve actuation
VALVE_MIN = 0
VALVE_MAX = 100
VALVE_STEP = 5  # % per smooth step, also the smooth threshold
VALVE_STEP_DELAY_S = 0.2

# Plausible telemetry ranges
RPM_MAX = 20000
TEMP_MIN_C = -50.0
TEMP_MAX_C = 500.0

# Safety gates for valve commands
SAFETY_RPM_HIGH = 10000
SAFETY_RPM_LOW = 500
SAFETY_TEMP_HIGH_C = 280.0

HISTORY_LIMIT = 100


def _resolve_log_level() -> int:
    s = os.getenv("SPINTECH_LOG_LEVEL")
    if s:
        name = s.strip().upper()
        mapping = {
            "DEBUG": logging.DEBUG,
            "INFO": logging.INFO,
            "WARNING": logging.WARNING,
            "ERROR": logging.ERROR,
            "CRITICAL": logging.CRITICAL,
        }
        return mapping.get(name, logging.WARNING)
    else:
        return logging.WARNING


LOG_LEVEL: int = _resolve_log_level()
