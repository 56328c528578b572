from __future__ import annotations

import dataclasses
import time
from dataclasses import dataclass, field

from nicegui import binding


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class TurbineData:
    rpm: int = 0
    temp_in: float = 0.0  # steam inlet, degC
    temp_out: float = 0.0  # steam outlet, degC
    steam_flow: float = 0.0  # kg/h
    power: float = 0.0  # W
    voltage: float = 0.0  # V
    valve_position: int = 0  # 0..100 %
    is_running: bool = False
    efficiency: float = 0.0  # %
    timestamp: int = field(default_factory=now_ms)  # epoch ms

    def replace(self, **changes) -> TurbineData:
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "rpm": self.rpm,
            "tempIn": self.temp_in,
            "tempOut": self.temp_out,
            "steamFlow": self.steam_flow,
            "power": self.power,
            "voltage": self.voltage,
            "valvePosition": self.valve_position,
            "isRunning": self.is_running,
            "efficiency": self.efficiency,
            "timestamp": self.timestamp,
        }


@dataclass
class TurbineStatus:
    status: str = "offline"  # "online" | "offline" | "error"
    error_message: str | None = None
    last_update: int = field(default_factory=now_ms)

    @property
    def is_online(self) -> bool:
        return self.status == "online"


@dataclass(frozen=True)
class ValveCommand:
    position: int  # 0..100 %

    def to_dict(self) -> dict:
        return {"position": self.position}


@dataclass(frozen=True)
class SystemCommand:
    action: str  # "start" | "stop" | "restart" | "emergency_stop"
    parameters: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        out: dict = {"action": self.action}
        if self.parameters:
            out["parameters"] = dict(self.parameters)
        return out


@dataclass(frozen=True)
class TurbineHistoryPoint:
    timestamp: int
    rpm: int
    temperature: float
    power: float

    @classmethod
    def from_data(cls, data: TurbineData) -> TurbineHistoryPoint:
        return cls(
            timestamp=data.timestamp,
            rpm=data.rpm,
            temperature=data.temp_in,
            power=data.power,
        )


@dataclass(frozen=True)
class ProjectInfo:
    title: str = "SpinTech Control"
    description: str = (
        "Monitoring and remote control for a compact steam turbine"
    )
    authors: tuple[str, ...] = ("SpinTech team",)
    goals: tuple[str, ...] = (
        "Demonstrate a high-tech power module",
        "Smart control of the turbine installation",
        "Use in education and small-scale power supply",
    )
    specifications: dict[str, str] = field(
        default_factory=lambda: {
            "Max shaft speed": "7 000 rpm",
            "Power": "up to 2000 W",
            "Steam working temperature": "150-200 degC",
            "Control": "Wi-Fi remote",
        }
    )


# Observable view state consumed by UI bindings
@binding.bindable_dataclass
class TurbineState:
    turbine_data: TurbineData = field(default_factory=TurbineData)
    turbine_status: TurbineStatus = field(default_factory=TurbineStatus)
    is_connected: bool = False
    error_message: str | None = None
    is_loading: bool = False
    valve_position: int = 0
    is_valve_adjusting: bool = False
    history: list[TurbineHistoryPoint] = field(default_factory=list)
    is_demo_mode: bool = False
    # Derived scalars for convenient UI bindings
    rpm: int = 0
    temp_in: float = 0.0
    temp_out: float = 0.0
    power: float = 0.0
    efficiency: float = 0.0
    is_running: bool = False


# Module-level singleton
turbine_state = TurbineState()
