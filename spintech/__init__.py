"""Monitoring and remote control client for the SpinTech steam-turbine rig."""

__version__ = "1.0.0"
