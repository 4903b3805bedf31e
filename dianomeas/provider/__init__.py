"""
Provider layer for dianomeas.

Provides programmatic access to the Equinix Metal API.
"""

from .client import MetalClient
from .models import Device, DeviceState, Event, EventType, Host

__all__ = ["MetalClient", "Device", "DeviceState", "Event", "EventType", "Host"]
