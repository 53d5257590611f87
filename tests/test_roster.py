"""
Roster reconciliation tests
"""

import asyncio
import pytest

from core import (
    EventBus, RosterManager, ServerRoster, IdentifiedPlayer, NamedPlayer, Affixes,
    PLAYER_JOINED, PLAYER_LEFT, SERVER_ONLINE, SERVER_OFFLINE, parse_name_list
)


def names_of(events):
    return [e.player.name for e in events]


def transitions(recorder):
    return [(e.event_type, e.player.name) for e in recorder.events if hasattr(e, 'player')]


class TestParseNameList:

    def test_blank_means_empty(self):
        assert parse_name_list("") == []
        assert parse_name_list(None) == []
        assert parse_name_list("  ") == []

    def test_trims_and_dedupes(self):
        assert parse_name_list(" Alex , Steve,,Alex ") == ["Alex", "Steve"]

    def test_names_with_spaces_survive(self):
        assert parse_name_list("Some Player, Other") == ["Some Player", "Other"]


class TestServerRoster:

    @pytest.fixture
    def event_bus(self):
        return EventBus()

    @pytest.fixture
    def offline_roster(self, event_bus):
        return ServerRoster("Lobby", event_bus)

    @pytest.fixture
    async def roster(self, offline_roster):
        await offline_roster.mark_online()
        return offline_roster

    @pytest.mark.asyncio
    async def test_replace_semantics(self, roster, event_bus, recorder_for):
        await roster.reconcile("A,B,C")
        recorder = recorder_for(event_bus)

        changed = await roster.reconcile("A,C,D")

        assert changed is True
        assert names_of(recorder.of_type(PLAYER_LEFT)) == ["B"]
        assert names_of(recorder.of_type(PLAYER_JOINED)) == ["D"]
        assert sorted(roster.player_names) == ["A", "C", "D"]

    @pytest.mark.asyncio
    async def test_reconcile_is_idempotent(self, roster, event_bus, recorder_for):
        await roster.reconcile("A,B")
        recorder = recorder_for(event_bus)

        assert await roster.reconcile("A,B") is False
        assert await roster.reconcile("B, A") is False
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_empty_list_removes_everyone(self, roster, event_bus, recorder_for):
        await roster.reconcile("A,B")
        recorder = recorder_for(event_bus)

        assert await roster.reconcile("") is True
        assert sorted(names_of(recorder.of_type(PLAYER_LEFT))) == ["A", "B"]
        assert roster.player_count == 0

    @pytest.mark.asyncio
    async def test_already_updated_is_carried(self, roster):
        await roster.reconcile("A")
        assert await roster.reconcile("A", already_updated=True) is True

    @pytest.mark.asyncio
    async def test_offline_forces_leaves(self, roster, event_bus, recorder_for):
        await roster.reconcile("A,B")
        recorder = recorder_for(event_bus)

        assert await roster.mark_offline() is True

        assert sorted(names_of(recorder.of_type(PLAYER_LEFT))) == ["A", "B"]
        assert len(recorder.of_type(SERVER_OFFLINE)) == 1
        # Status comes after the forced leaves
        assert recorder.events[-1].event_type == SERVER_OFFLINE
        assert roster.players == []

    @pytest.mark.asyncio
    async def test_status_transitions_happen_once(self, offline_roster, event_bus, recorder_for):
        recorder = recorder_for(event_bus)

        assert await offline_roster.mark_online() is True
        assert await offline_roster.mark_online() is False
        assert await offline_roster.mark_offline() is True
        assert await offline_roster.mark_offline() is False

        assert len(recorder.of_type(SERVER_ONLINE)) == 1
        assert len(recorder.of_type(SERVER_OFFLINE)) == 1

    @pytest.mark.asyncio
    async def test_connect_upgrades_named_player(self, roster, event_bus, recorder_for):
        await roster.reconcile("Alex")
        recorder = recorder_for(event_bus)

        assert await roster.add_player(IdentifiedPlayer("Alex", 2535400000000001)) is False

        assert recorder.events == []
        player = roster.find("Alex")
        assert isinstance(player, IdentifiedPlayer)
        assert player.xuid == 2535400000000001

    @pytest.mark.asyncio
    async def test_connect_then_disconnect(self, roster, event_bus, recorder_for):
        recorder = recorder_for(event_bus)

        assert await roster.add_player(IdentifiedPlayer("Steve", 42)) is True
        assert await roster.remove_player(xuid=42, name="Steve") is True

        assert [e.event_type for e in recorder.events] == [PLAYER_JOINED, PLAYER_LEFT]
        assert recorder.events[0].player.xuid == 42

    @pytest.mark.asyncio
    async def test_remove_unknown_player_is_noop(self, roster, event_bus, recorder_for, caplog):
        recorder = recorder_for(event_bus)

        assert await roster.remove_player(xuid=7, name="Ghost") is False
        assert recorder.events == []
        assert "Ghost" in caplog.text

    @pytest.mark.asyncio
    async def test_set_affixes_keeps_player(self, roster):
        await roster.add_player(IdentifiedPlayer("Steve", 42))
        updated = await roster.set_affixes("Steve", Affixes("[VIP] ", ""))

        assert updated.affixes.prefix == "[VIP] "
        assert roster.find("Steve").xuid == 42

    @pytest.mark.asyncio
    async def test_apply_bus_info_marks_online(self, offline_roster, event_bus, recorder_for):
        recorder = recorder_for(event_bus)

        assert await offline_roster.apply_bus_info("A", max_players=20) is True

        assert offline_roster.online is True
        assert offline_roster.player_slots == 20
        assert [e.event_type for e in recorder.events] == [SERVER_ONLINE, PLAYER_JOINED]

    @pytest.mark.asyncio
    async def test_console_roster_with_zero_players(self, roster):
        await roster.reconcile("A")
        assert await roster.apply_console_roster(0, 10, "stale line") is True
        assert roster.player_count == 0
        assert roster.player_slots == 10

    @pytest.mark.asyncio
    async def test_handlers_may_read_roster_during_emit(self, roster, event_bus):
        seen = []

        async def reader(event):
            # Would deadlock if events were published under the roster lock
            await asyncio.wait_for(roster.set_affixes(event.player.name, Affixes()), timeout=1)
            seen.append(roster.player_names)

        event_bus.subscribe(PLAYER_JOINED, reader, handler_id='reader')
        await roster.reconcile("A,B")

        assert seen[-1] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_snapshots_are_independent(self, roster):
        await roster.reconcile("A")
        snapshot = roster.players
        await roster.reconcile("A,B")

        assert snapshot == [NamedPlayer("A")]

    @pytest.mark.asyncio
    async def test_offline_roster_ignores_updates(self, offline_roster, event_bus, recorder_for):
        recorder = recorder_for(event_bus)

        assert await offline_roster.reconcile("A,B") is False
        assert await offline_roster.add_player(IdentifiedPlayer("C", 1)) is False

        assert offline_roster.players == []
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_concurrent_reconciles_publish_in_commit_order(self, roster, event_bus, recorder_for):
        await roster.reconcile("A,X")
        recorder = recorder_for(event_bus)

        async def slow(event):
            await asyncio.sleep(0.05)

        event_bus.subscribe(PLAYER_LEFT, slow, handler_id='slow')

        await asyncio.gather(roster.reconcile(""), roster.reconcile("X"))

        assert transitions(recorder) == [(PLAYER_LEFT, "A"), (PLAYER_LEFT, "X"), (PLAYER_JOINED, "X")]
        assert roster.player_names == ["X"]

    @pytest.mark.asyncio
    async def test_offline_during_listing_leaves_roster_empty(self, offline_roster, event_bus, recorder_for):
        recorder = recorder_for(event_bus)

        async def slow(event):
            await asyncio.sleep(0.05)

        event_bus.subscribe(SERVER_ONLINE, slow, handler_id='slow')

        await asyncio.gather(offline_roster.apply_bus_info("A,B"), offline_roster.mark_offline())

        assert not offline_roster.online
        assert offline_roster.players == []
        assert [e.event_type for e in recorder.events] == [
            SERVER_ONLINE, PLAYER_JOINED, PLAYER_JOINED, PLAYER_LEFT, PLAYER_LEFT, SERVER_OFFLINE
        ]

    @pytest.mark.asyncio
    async def test_mixed_callers_keep_per_player_order(self, roster, event_bus, recorder_for):
        recorder = recorder_for(event_bus)

        async def slow(event):
            await asyncio.sleep(0.02)

        event_bus.subscribe(PLAYER_JOINED, slow, handler_id='slow')

        await asyncio.gather(
            roster.reconcile("A,B"),
            roster.add_player(IdentifiedPlayer("C", 3)),
            roster.mark_offline()
        )

        for name in ("A", "B", "C"):
            assert [t for t, n in transitions(recorder) if n == name] == [PLAYER_JOINED, PLAYER_LEFT]
        assert recorder.events[-1].event_type == SERVER_OFFLINE
        assert roster.players == []

    @pytest.mark.asyncio
    async def test_handler_may_mutate_same_roster(self, roster, event_bus, recorder_for):
        recorder = recorder_for(event_bus)

        async def kick(event):
            await asyncio.wait_for(roster.remove_player(name=event.player.name), timeout=1)

        event_bus.subscribe(PLAYER_JOINED, kick, handler_id='kick')

        await roster.add_player(IdentifiedPlayer("Steve", 42))

        assert transitions(recorder) == [(PLAYER_JOINED, "Steve"), (PLAYER_LEFT, "Steve")]
        assert roster.players == []


class TestRosterManager:

    @pytest.fixture
    def manager(self, make_registry):
        registry = make_registry(
            world_name="Hub",
            server_sync={'enabled': True, 'other_servers': ["Survival", "Creative"]}
        )
        return registry.get(RosterManager)

    def test_configured_peers_exist(self, manager):
        assert manager.local.name == "Hub"
        assert manager.local.is_local
        assert [p.name for p in manager.peers()] == ["Survival", "Creative"]

    def test_get_or_create_adds_peer(self, manager):
        peer = manager.get_or_create("Skyblock")
        assert manager.get("Skyblock") is peer
        assert not peer.is_local

    @pytest.mark.asyncio
    async def test_network_count_includes_local(self, manager):
        await manager.local.apply_bus_info("A,B")
        await manager.get("Survival").apply_bus_info("C")
        await manager.get("Creative").reconcile("D")  # ignored while offline

        assert manager.player_count == 3
        assert manager.online_server_count == 2
        assert sorted(manager.all_player_names()) == ["A", "B", "C"]
        assert manager.get("Creative").player_count == 0
