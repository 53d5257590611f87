"""
Bus integration

HTTP client for the bus sidecar of each server in the network, plus the
small parser for its JSON-shaped command results.
"""

from .bus_client import BusClient
from .responses import BusRosterInfo, parse_command_result, escape_bus_text

__all__ = [
    'BusClient',
    'BusRosterInfo',
    'parse_command_result',
    'escape_bus_text'
]
