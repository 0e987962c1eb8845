"""Tests for the aiosqlite device-token store."""

from dataclasses import replace
from datetime import datetime, timezone

from conftest import TOKEN_A, TOKEN_B, TOKEN_C
from spend_notifier.devices.store import DeviceStore
from spend_notifier.models import DeviceRegistration

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def _registration(token=TOKEN_A, arn="arn:endpoint/1", user="user-1", **kw) -> DeviceRegistration:
    return DeviceRegistration(token, arn, user, T0, T0, **kw)


class TestDeviceStore:

    async def test_upsert_and_get(self, store):
        await store.upsert(_registration())
        found = await store.get(TOKEN_A)
        assert found == _registration()
        assert await store.get(TOKEN_B) is None

    async def test_upsert_overwrites_same_token(self, store):
        await store.upsert(_registration())
        await store.upsert(_registration(user="user-2"))
        assert (await store.get(TOKEN_A)).user_id == "user-2"
        assert await store.count_by_status() == (1, 0)

    async def test_get_by_endpoint(self, store):
        await store.upsert(_registration(arn="arn:endpoint/9"))
        assert (await store.get_by_endpoint("arn:endpoint/9")).device_token == TOKEN_A
        assert await store.get_by_endpoint("arn:endpoint/missing") is None

    async def test_replace_token_moves_record(self, store):
        original = _registration()
        await store.upsert(original)
        await store.replace_token(TOKEN_A, replace(original, device_token=TOKEN_B))
        assert await store.get(TOKEN_A) is None
        moved = await store.get(TOKEN_B)
        assert moved.platform_endpoint_arn == original.platform_endpoint_arn
        assert moved.registration_date == T0

    async def test_mark_disabled_and_counts(self, store):
        await store.upsert(_registration(TOKEN_A, "arn:1"))
        await store.upsert(_registration(TOKEN_B, "arn:2"))
        await store.upsert(_registration(TOKEN_C, "arn:3"))
        assert await store.mark_disabled("arn:2", T0.isoformat()) == 1
        assert await store.mark_disabled("arn:404", T0.isoformat()) == 0
        assert await store.count_by_status() == (2, 1)
        assert not (await store.get(TOKEN_B)).active

    async def test_list_by_user_only_active(self, store):
        await store.upsert(_registration(TOKEN_A, "arn:1", "alice"))
        await store.upsert(_registration(TOKEN_B, "arn:2", "alice", active=False))
        await store.upsert(_registration(TOKEN_C, "arn:3", "bob"))
        devices = await store.list_by_user("alice")
        assert [d.device_token for d in devices] == [TOKEN_A]

    async def test_delete(self, store):
        await store.upsert(_registration())
        assert await store.delete(TOKEN_A)
        assert not await store.delete(TOKEN_A)

    async def test_empty_counts(self, store):
        assert await store.count_by_status() == (0, 0)

    async def test_persists_across_connections(self, tmp_path):
        path = str(tmp_path / "nested" / "devices.db")
        async with DeviceStore(path) as first:
            await first.upsert(_registration())
        async with DeviceStore(path) as second:
            assert (await second.get(TOKEN_A)).user_id == "user-1"

    async def test_in_memory(self):
        async with DeviceStore(":memory:") as memory:
            await memory.upsert(_registration())
            assert await memory.count_by_status() == (1, 0)
