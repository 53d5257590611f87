"""
Shared fixtures for the bridge test suite
"""

import pytest
from typing import List

from core import (
    ServiceRegistry, ServiceLifetime, ConfigurationManager, BridgeConfiguration,
    EventBus, RosterManager, Event
)


@pytest.fixture
def make_registry(tmp_path):
    """Build a registry holding core services and a configuration from keyword overrides"""
    def _make(**overrides) -> ServiceRegistry:
        registry = ServiceRegistry()
        registry.register_instance(ServiceRegistry, registry)

        config_manager = ConfigurationManager(base_path=tmp_path)
        config_manager._configuration = BridgeConfiguration(**overrides)
        registry.register_instance(ConfigurationManager, config_manager)

        registry.register(EventBus, lifetime=ServiceLifetime.SINGLETON)
        registry.register(RosterManager, lifetime=ServiceLifetime.SINGLETON)
        return registry

    return _make


class EventRecorder:
    """Collects every event published on a bus"""

    def __init__(self, event_bus: EventBus):
        self.events: List[Event] = []
        event_bus.subscribe('*', self.events.append, handler_id='test_recorder')

    def of_type(self, event_type: str) -> List[Event]:
        return [e for e in self.events if e.event_type == event_type]


@pytest.fixture
def recorder_for():
    return EventRecorder
