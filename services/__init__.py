"""
Vellum Bridge Services Package

Services built on the core and the integrations: event relay, scoreboard
mirroring, periodic roster reconciliation and the application that wires
them together.
"""

from .bridge_application import BridgeApplication, create_application
from .relay_service import RelayRouter
from .scoreboard_service import ScoreboardService
from .reconciliation_service import ReconciliationScheduler, ReconciliationReport

__all__ = [
    'BridgeApplication',
    'create_application',
    'RelayRouter',
    'ScoreboardService',
    'ReconciliationScheduler',
    'ReconciliationReport'
]
