"""
Profile affix lookup tests against throwaway SQLite files
"""

import sqlite3
import pytest

from integrations.essentials import ProfileService
from core import Affixes

UUID_HEX = "0123456789ABCDEF0123456789ABCDEF"


def create_databases(tmp_path, prefix="[VIP] ", postfix=" *"):
    user_db = tmp_path / "user.db"
    essentials_db = tmp_path / "essentials.db"

    with sqlite3.connect(user_db) as conn:
        conn.execute("CREATE TABLE user (uuid BLOB, xuid INTEGER)")
        conn.execute("INSERT INTO user VALUES (?, ?)", (bytes.fromhex(UUID_HEX), 2535400000000001))

    with sqlite3.connect(essentials_db) as conn:
        conn.execute("CREATE TABLE custom_name (uuid BLOB, prefix TEXT, postfix TEXT)")
        conn.execute(
            "INSERT INTO custom_name VALUES (?, ?, ?)",
            (bytes.fromhex(UUID_HEX), prefix, postfix)
        )

    return user_db, essentials_db


class TestProfileService:

    @pytest.fixture
    def build(self, make_registry):
        def _build(user_db, essentials_db):
            registry = make_registry(user_db=str(user_db), essentials_db=str(essentials_db))
            registry.register(ProfileService)
            return registry.get(ProfileService)
        return _build

    def test_known_player(self, tmp_path, build):
        service = build(*create_databases(tmp_path))

        assert service.get_affixes(2535400000000001) == Affixes("[VIP] ", " *")

    def test_unknown_player(self, tmp_path, build):
        service = build(*create_databases(tmp_path))

        assert service.get_affixes(99) == Affixes()

    def test_missing_files(self, tmp_path, build):
        service = build(tmp_path / "nope.db", tmp_path / "nope2.db")

        assert service.get_affixes(2535400000000001) == Affixes()

    def test_null_columns(self, tmp_path, build):
        service = build(*create_databases(tmp_path, prefix=None, postfix=None))

        assert service.get_affixes(2535400000000001) == Affixes()

    def test_broken_database(self, tmp_path, build):
        user_db = tmp_path / "user.db"
        user_db.write_bytes(b"this is not sqlite")

        service = build(user_db, tmp_path / "essentials.db")

        assert service.get_affixes(1) == Affixes()

    @pytest.mark.asyncio
    async def test_async_lookup(self, tmp_path, build):
        service = build(*create_databases(tmp_path))

        assert (await service.lookup_affixes(2535400000000001)).prefix == "[VIP] "
