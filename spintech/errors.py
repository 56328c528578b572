from __future__ import annotations


class DeviceError(Exception):
    """Base class for failures talking to the turbine controller."""


class DeviceConnectionError(DeviceError):
    """The device could not be reached (timeout, refused, DNS, ...)."""


class DeviceHTTPError(DeviceError):
    """The device answered with a non-success HTTP status."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class ParseError(DeviceError):
    """A device response could not be decoded."""
