"""
tests.test_presence_index
~~~~~~~~~~~~~~~~~~~~~~~~~

PresenceIndex 单元测试：按用户去重、预览上限、先到先得顺序与关闭后的行为。
"""
from __future__ import annotations

import pytest

from roomhub.core.exceptions import PresenceUnavailable
from roomhub.services.connection_registry import Connection, ConnectionRegistry, DisplayMeta
from roomhub.services.presence_index import PresenceIndex, summarize


async def connect(registry: ConnectionRegistry, conn_id: str, user: str, room: str) -> None:
    await registry.register(conn_id, user, DisplayMeta(name=user.title(), avatar=None))
    await registry.bind_to_room(conn_id, room)


class TestSummarize:
    """测试快照折叠纯函数。"""

    def test_empty(self) -> None:
        snap = summarize([], preview_limit=6)

        assert snap.count == 0
        assert snap.is_active is False
        assert snap.preview_users == ()
        assert snap.member_ids == frozenset()

    def test_deduplicates_by_user_first_seen_wins(self) -> None:
        conns = [
            Connection("c1", "bob", DisplayMeta("Bob (phone)"), room_id="alpha"),
            Connection("c2", "alice", DisplayMeta("Alice"), room_id="alpha"),
            Connection("c3", "bob", DisplayMeta("Bob (laptop)"), room_id="alpha"),
        ]

        snap = summarize(conns, preview_limit=6)

        assert snap.count == 2
        assert [u.id for u in snap.preview_users] == ["bob", "alice"]
        assert snap.preview_users[0].name == "Bob (phone)"
        assert all(u.online for u in snap.preview_users)

    def test_count_is_not_capped_by_preview(self) -> None:
        conns = [Connection(f"c{i}", f"u{i}", DisplayMeta(f"U{i}"), room_id="r") for i in range(3)]

        snap = summarize(conns, preview_limit=1)

        assert snap.count == 3
        assert len(snap.preview_users) == 1


class TestPresenceIndex:
    """测试索引与注册表联动后的快照。"""

    @pytest.mark.asyncio
    async def test_one_user_many_connections_counts_once(self, registry: ConnectionRegistry) -> None:
        await connect(registry, "b1", "bob", "alpha")
        await connect(registry, "b2", "bob", "alpha")

        snap = await registry.index.snapshot("alpha")

        assert snap.count == 1
        assert [u.id for u in snap.preview_users] == ["bob"]
        assert await registry.index.is_active("alpha") is True

    @pytest.mark.asyncio
    async def test_preview_bounded_and_deterministic(self, registry: ConnectionRegistry) -> None:
        users = [f"user{i}" for i in range(10)]
        for i, user in enumerate(users):
            await connect(registry, f"c{i}", user, "alpha")

        first = await registry.index.snapshot("alpha")
        second = await registry.index.snapshot("alpha")

        assert first.count == 10
        assert len(first.preview_users) == 6
        assert [u.id for u in first.preview_users] == users[:6]
        assert first == second

    @pytest.mark.asyncio
    async def test_user_position_follows_earliest_live_connection(self, registry: ConnectionRegistry) -> None:
        await connect(registry, "a1", "alice", "alpha")
        await connect(registry, "b1", "bob", "alpha")
        await connect(registry, "a2", "alice", "alpha")

        await registry.deregister("a1")

        snap = await registry.index.snapshot("alpha")
        assert [u.id for u in snap.preview_users] == ["bob", "alice"]

    @pytest.mark.asyncio
    async def test_user_drops_out_when_last_connection_leaves(self, registry: ConnectionRegistry) -> None:
        await connect(registry, "b1", "bob", "alpha")
        await connect(registry, "b2", "bob", "alpha")

        await registry.deregister("b1")
        assert (await registry.index.snapshot("alpha")).count == 1

        await registry.unbind("b2")
        snap = await registry.index.snapshot("alpha")
        assert snap.count == 0
        assert await registry.index.is_active("alpha") is False
        assert "alpha" not in registry.index.active_room_ids()

    @pytest.mark.asyncio
    async def test_unknown_room_is_empty(self, presence_index: PresenceIndex) -> None:
        snap = await presence_index.snapshot("nowhere")

        assert snap.count == 0

    @pytest.mark.asyncio
    async def test_closed_index_is_unavailable(self, registry: ConnectionRegistry) -> None:
        await connect(registry, "c1", "alice", "alpha")

        registry.index.close()

        assert registry.index.closed is True
        with pytest.raises(PresenceUnavailable):
            await registry.index.snapshot("alpha")

    def test_attach_requires_bound_connection(self, presence_index: PresenceIndex) -> None:
        with pytest.raises(ValueError):
            presence_index.attach(Connection("c1", "alice", DisplayMeta("Alice")))

    def test_attach_after_close_is_ignored(self, presence_index: PresenceIndex) -> None:
        presence_index.close()

        presence_index.attach(Connection("c1", "alice", DisplayMeta("Alice"), room_id="alpha"))
        presence_index.rebuild([Connection("c2", "bob", DisplayMeta("Bob"), room_id="beta")])

        assert presence_index.active_room_ids() == []

    @pytest.mark.asyncio
    async def test_bind_during_shutdown_does_not_repopulate(self, registry: ConnectionRegistry) -> None:
        await registry.register("c1", "alice", DisplayMeta(name="Alice"))
        registry.index.close()

        await registry.bind_to_room("c1", "alpha")

        assert registry.index.active_room_ids() == []
        with pytest.raises(PresenceUnavailable):
            await registry.index.snapshot("alpha")
