from __future__ import annotations

import json
import random
from typing import Any, Callable

from spintech.constants import (
    RPM_MAX,
    SYSTEM_ACTIONS,
    TEMP_MAX_C,
    TEMP_MIN_C,
    VALVE_MAX,
    VALVE_MIN,
)
from spintech.errors import ParseError
from spintech.state import SystemCommand, TurbineData, TurbineStatus, ValveCommand

_TRUE_STRINGS = ("true", "1", "yes", "on")
_FALSE_STRINGS = ("false", "0", "no", "off")


def clamp_position(position: int) -> int:
    return max(VALVE_MIN, min(VALVE_MAX, int(position)))


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"expected integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValueError(f"expected integer, got {value!r}")
    if isinstance(value, str):
        return _to_int(json.loads(value.strip()))
    raise ValueError(f"expected integer, got {value!r}")


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"expected number, got {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        return float(value.strip())
    raise ValueError(f"expected number, got {value!r}")


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        s = value.strip().lower()
        if s in _TRUE_STRINGS:
            return True
        if s in _FALSE_STRINGS:
            return False
    raise ValueError(f"expected boolean, got {value!r}")


def _to_opt_str(value: Any) -> str:
    if isinstance(value, (dict, list)):
        raise ValueError(f"expected string, got {value!r}")
    return str(value)


# wire key -> (attribute name, coercion)
_TURBINE_FIELDS: dict[str, tuple[str, Callable[[Any], Any]]] = {
    "rpm": ("rpm", _to_int),
    "tempIn": ("temp_in", _to_float),
    "tempOut": ("temp_out", _to_float),
    "steamFlow": ("steam_flow", _to_float),
    "power": ("power", _to_float),
    "voltage": ("voltage", _to_float),
    "valvePosition": ("valve_position", _to_int),
    "isRunning": ("is_running", _to_bool),
    "efficiency": ("efficiency", _to_float),
    "timestamp": ("timestamp", _to_int),
}

_STATUS_FIELDS: dict[str, tuple[str, Callable[[Any], Any]]] = {
    "status": ("status", _to_opt_str),
    "errorMessage": ("error_message", _to_opt_str),
    "lastUpdate": ("last_update", _to_int),
}


def _decode_fields(
    text: str, fields: dict[str, tuple[str, Callable[[Any], Any]]], what: str
) -> dict[str, Any]:
    """
    Decode a JSON object leniently: unknown keys are ignored, missing keys and
    nulls fall back to the record default, numeric strings are coerced.
    """
    try:
        doc = json.loads(text)
    except (TypeError, ValueError, RecursionError) as e:
        raise ParseError(f"Failed to parse {what}: {e}") from e
    if not isinstance(doc, dict):
        raise ParseError(f"Failed to parse {what}: expected a JSON object")

    kwargs: dict[str, Any] = {}
    for key, (attr, coerce) in fields.items():
        value = doc.get(key)
        if value is None:
            continue
        try:
            kwargs[attr] = coerce(value)
        except (TypeError, ValueError, RecursionError) as e:
            raise ParseError(f"Failed to parse {what}: field '{key}': {e}") from e
    return kwargs


class DataParser:
    """Decodes device telemetry and encodes control commands."""

    def parse_turbine_data(self, text: str) -> TurbineData:
        """Parse a /status telemetry document into TurbineData."""
        return TurbineData(**_decode_fields(text, _TURBINE_FIELDS, "turbine data"))

    def parse_system_status(self, text: str) -> TurbineStatus:
        """Parse a system status document."""
        return TurbineStatus(**_decode_fields(text, _STATUS_FIELDS, "system status"))

    def create_valve_command(self, position: int) -> str:
        """Build the valve command body; the position is clamped to 0..100."""
        cmd = ValveCommand(position=clamp_position(position))
        return json.dumps(cmd.to_dict(), separators=(",", ":"))

    def create_system_command(
        self, action: str, parameters: dict[str, str] | None = None
    ) -> str:
        """Build a system command body. Raises ValueError for unknown actions."""
        if action not in SYSTEM_ACTIONS:
            raise ValueError(
                f"Unknown system action: {action!r} (expected one of {', '.join(SYSTEM_ACTIONS)})"
            )
        cmd = SystemCommand(action=action, parameters=dict(parameters or {}))
        return json.dumps(cmd.to_dict(), separators=(",", ":"), ensure_ascii=False)

    def validate_turbine_data(self, data: TurbineData) -> list[str]:
        """Return one message per out-of-range reading; empty when plausible."""
        errors: list[str] = []

        if data.rpm < 0 or data.rpm > RPM_MAX:
            errors.append(f"Invalid shaft speed: {data.rpm}")

        if data.temp_in < TEMP_MIN_C or data.temp_in > TEMP_MAX_C:
            errors.append(f"Invalid inlet temperature: {data.temp_in}°C")

        if data.temp_out < TEMP_MIN_C or data.temp_out > TEMP_MAX_C:
            errors.append(f"Invalid outlet temperature: {data.temp_out}°C")

        if data.valve_position < VALVE_MIN or data.valve_position > VALVE_MAX:
            errors.append(f"Invalid valve position: {data.valve_position}%")

        if data.power < 0:
            errors.append(f"Invalid power: {data.power}W")

        return errors

    def create_test_data(self, rng: random.Random | None = None) -> TurbineData:
        """Random but plausible reading for demo mode."""
        r = rng or random
        return TurbineData(
            rpm=r.randint(1000, 4999),
            temp_in=r.uniform(180.0, 250.0),
            temp_out=r.uniform(120.0, 180.0),
            steam_flow=r.uniform(10.0, 50.0),
            power=r.uniform(200.0, 800.0),
            voltage=r.uniform(220.0, 240.0),
            valve_position=r.randint(30, 79),
            is_running=True,
            efficiency=r.uniform(60.0, 85.0),
        )
