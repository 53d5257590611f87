"""
Event bus and service registry tests
"""

import pytest
from unittest.mock import Mock, AsyncMock

from core import (
    ServiceRegistry, ServiceLifetime, ServiceNotFound, CircularDependencyError,
    ServiceConfigurationError, EventBus, EventPriority, Event, Channel, ChatEvent,
    PresenceEvent, ServerStatusEvent, RosterDelta, DeltaKind, NamedPlayer,
    CHAT_MESSAGE, PLAYER_LEFT, SERVER_OFFLINE
)


class TestEventBus:

    @pytest.fixture
    def event_bus(self):
        return EventBus()

    @pytest.mark.asyncio
    async def test_async_and_sync_handlers(self, event_bus):
        sync_handler = Mock()
        async_handler = AsyncMock()
        event_bus.subscribe(CHAT_MESSAGE, sync_handler, handler_id='sync')
        event_bus.subscribe(CHAT_MESSAGE, async_handler, handler_id='async')

        event = ChatEvent(Channel.CONSOLE, "Hub", "Steve", "hi")
        handled = await event_bus.publish_async(event)

        assert handled == 2
        sync_handler.assert_called_once_with(event)
        async_handler.assert_awaited_once_with(event)

    @pytest.mark.asyncio
    async def test_failing_handler_is_isolated(self, event_bus):
        healthy = AsyncMock()
        event_bus.subscribe(CHAT_MESSAGE, AsyncMock(side_effect=RuntimeError("boom")), handler_id='bad')
        event_bus.subscribe(CHAT_MESSAGE, healthy, handler_id='good')

        await event_bus.publish_async(ChatEvent(Channel.DISCORD, "Discord", "alice", "hi"))

        healthy.assert_awaited_once()
        assert event_bus.get_stats()['handler_errors'] == 1

    @pytest.mark.asyncio
    async def test_priority_and_propagation(self, event_bus):
        calls = []

        def first(event):
            calls.append('first')
            event.stop_propagation()

        event_bus.subscribe('*', lambda e: calls.append('late'), handler_id='late', priority=EventPriority.LOW)
        event_bus.subscribe('*', first, handler_id='first', priority=EventPriority.HIGH)

        await event_bus.publish_async(Event(event_type='anything'))

        assert calls == ['first']

    @pytest.mark.asyncio
    async def test_filter_and_unsubscribe(self, event_bus):
        handler = Mock()
        event_bus.subscribe(
            SERVER_OFFLINE, handler, handler_id='local_only',
            filter_func=lambda e: e.local
        )

        await event_bus.publish_async(ServerStatusEvent(False, Channel.BUS, "Survival", local=False))
        handler.assert_not_called()

        await event_bus.publish_async(ServerStatusEvent(False, Channel.CONSOLE, "Hub", local=True))
        handler.assert_called_once()

        assert event_bus.unsubscribe('local_only')
        assert not event_bus.unsubscribe('local_only')

    def test_presence_event_from_delta(self):
        delta = RosterDelta("Survival", NamedPlayer("Alex"), DeltaKind.LEAVE)

        event = PresenceEvent.from_delta(delta, Channel.BUS, local=False)

        assert event.event_type == PLAYER_LEFT
        assert event.origin is Channel.BUS
        assert event.server_name == "Survival"
        assert event.player.name == "Alex"
        assert not event.joined
        assert event.to_dict()['source'] == "bus"


class Leaf:
    def __init__(self):
        self.value = 1


class NeedsLeaf:
    def __init__(self, leaf: Leaf):
        self.leaf = leaf


class MaybeLeaf:
    def __init__(self, leaf: Leaf = None):
        self.leaf = leaf


class LoopA:
    pass


class LoopB:
    def __init__(self, other: LoopA):
        self.other = other


def build_loop_a(other: LoopB) -> LoopA:
    return LoopA()


def build_needs_leaf(leaf: Leaf) -> NeedsLeaf:
    return NeedsLeaf(leaf)


class TestServiceRegistry:

    def test_singleton_and_transient(self):
        registry = ServiceRegistry()
        registry.register(Leaf)
        registry.register(NeedsLeaf, lifetime=ServiceLifetime.TRANSIENT)

        first = registry.get(NeedsLeaf)
        second = registry.get(NeedsLeaf)

        assert first is not second
        assert first.leaf is second.leaf

    def test_optional_dependencies(self):
        registry = ServiceRegistry()
        registry.register(MaybeLeaf, lifetime=ServiceLifetime.TRANSIENT)
        assert registry.get(MaybeLeaf).leaf is None

        registry.register(Leaf)
        assert registry.get(MaybeLeaf).leaf is registry.get(Leaf)

    def test_missing_service(self):
        registry = ServiceRegistry()
        assert registry.get_optional(Leaf) is None
        with pytest.raises(ServiceNotFound):
            registry.get(Leaf)

    def test_circular_dependency(self):
        registry = ServiceRegistry()
        registry.register(LoopA, factory=build_loop_a)
        registry.register(LoopB)

        with pytest.raises(CircularDependencyError):
            registry.get(LoopA)

    def test_factory_and_instance(self):
        registry = ServiceRegistry()
        leaf = Leaf()
        registry.register_instance(Leaf, leaf)
        registry.register(NeedsLeaf, factory=build_needs_leaf)

        assert registry.get(NeedsLeaf).leaf is leaf

    def test_bad_registration(self):
        registry = ServiceRegistry()
        with pytest.raises(ServiceConfigurationError):
            registry.register(Leaf, implementation=NeedsLeaf)

    def test_unregister(self):
        registry = ServiceRegistry()
        registry.register(Leaf)

        assert registry.unregister(Leaf)
        assert not registry.is_registered(Leaf)
        assert not registry.unregister(Leaf)
