"""
tests.test_api_rooms
~~~~~~~~~~~~~~~~~~~~

房间 REST 接口测试：使用 TestClient（不触发 lifespan，不连接 MongoDB），
直接在 ``app.state`` 上挂载内存仓库版本的服务。
"""
from __future__ import annotations

import asyncio
from collections.abc import Iterator
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from roomhub.core.exceptions import PersistenceError
from roomhub.core.rate_limit import limiter
from roomhub.main import app
from roomhub.services.connection_registry import ConnectionRegistry, DisplayMeta
from roomhub.services.room_directory import RoomDirectoryService


@pytest.fixture
def client(directory: RoomDirectoryService, registry: ConnectionRegistry) -> Iterator[TestClient]:
    app.state.room_directory = directory
    app.state.connection_registry = registry
    limiter.enabled = False
    try:
        yield TestClient(app)
    finally:
        limiter.enabled = True


def as_user(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


def create_room(client: TestClient, name: str, owner: str = "alice", **fields) -> dict:
    resp = client.post("/api/rooms", json={"name": name, **fields}, headers=as_user(owner))
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


class TestRoomLifecycleApi:
    """测试创建、加入、退出接口。"""

    def test_create_room(self, client: TestClient) -> None:
        resp = client.post(
            "/api/rooms",
            json={"name": "alpha", "description": "pairing", "language": "Python"},
            headers=as_user("alice"),
        )

        assert resp.status_code == 201
        body = resp.json()
        assert body["code"] == 201
        assert body["data"]["created_by"] == "alice"
        assert body["data"]["members"] == ["alice"]
        assert body["data"]["language"] == "Python"
        assert "X-Request-ID" in resp.headers

    def test_create_requires_identity(self, client: TestClient) -> None:
        resp = client.post("/api/rooms", json={"name": "alpha"})

        assert resp.status_code == 401

    def test_blank_name_is_422(self, client: TestClient) -> None:
        resp = client.post("/api/rooms", json={"name": "   "}, headers=as_user("alice"))

        assert resp.status_code == 422
        assert resp.json()["code"] == 422

    def test_join_and_leave(self, client: TestClient) -> None:
        room = create_room(client, "alpha")

        joined = client.post(f"/api/rooms/{room['id']}/join", headers=as_user("bob"))
        assert joined.status_code == 200
        assert joined.json()["data"]["message"] == "Joined room"
        assert joined.json()["data"]["room"]["members"] == ["alice", "bob"]

        left = client.post(f"/api/rooms/{room['id']}/leave", headers=as_user("bob"))
        assert left.status_code == 200
        assert left.json()["data"] == {"message": "Left room"}

        detail = client.get(f"/api/rooms/{room['id']}").json()["data"]
        assert detail["members"] == ["alice"]

    def test_owner_leave_is_422(self, client: TestClient) -> None:
        room = create_room(client, "alpha")

        resp = client.post(f"/api/rooms/{room['id']}/leave", headers=as_user("alice"))

        assert resp.status_code == 422

    def test_unknown_room_is_404(self, client: TestClient) -> None:
        for resp in (
            client.get("/api/rooms/missing"),
            client.post("/api/rooms/missing/join", headers=as_user("bob")),
            client.post("/api/rooms/missing/leave", headers=as_user("bob")),
        ):
            assert resp.status_code == 404
            assert resp.json()["msg"] == "Room not found"

    def test_persistence_failure_is_500(self, client: TestClient, directory: RoomDirectoryService) -> None:
        directory.repo.find = AsyncMock(side_effect=PersistenceError("find failed: timeout"))

        resp = client.get("/api/rooms")

        assert resp.status_code == 500
        assert resp.json()["code"] == 500


class TestRoomDiscoveryApi:
    """测试列表、详情、我的房间与搜索接口。"""

    def test_list_public_rooms_with_presence(self, client: TestClient, registry: ConnectionRegistry) -> None:
        room = create_room(client, "alpha")
        create_room(client, "secret", is_private=True)

        async def connect_bob() -> None:
            await registry.register("c1", "bob", DisplayMeta(name="Bob", avatar="bob.png"))
            await registry.bind_to_room("c1", room["id"])

        asyncio.run(connect_bob())

        rooms = client.get("/api/rooms").json()["data"]

        assert [r["id"] for r in rooms] == [room["id"]]
        assert rooms[0]["active_user_count"] == 1
        assert rooms[0]["is_active"] is True
        assert rooms[0]["connected_users"] == [
            {"id": "bob", "name": "Bob", "avatar": "bob.png", "online": True},
        ]
        assert rooms[0]["last_activity"]

    def test_get_room_detail(self, client: TestClient) -> None:
        room = create_room(client, "alpha")

        detail = client.get(f"/api/rooms/{room['id']}").json()["data"]

        assert detail["id"] == room["id"]
        assert detail["active_user_count"] == 0
        assert detail["connected_users"] == []

    def test_my_rooms(self, client: TestClient) -> None:
        mine = create_room(client, "alpha", owner="alice")
        create_room(client, "beta", owner="bob")

        rooms = client.get("/api/rooms/mine", headers=as_user("alice")).json()["data"]

        assert [r["id"] for r in rooms] == [mine["id"]]
        assert "active_user_count" not in rooms[0]

    def test_search(self, client: TestClient) -> None:
        hit = create_room(client, "Python Dojo")
        create_room(client, "Go Gophers")

        rooms = client.get("/api/rooms/search", params={"query": "python"}).json()["data"]

        assert [r["id"] for r in rooms] == [hit["id"]]

    def test_health(self, client: TestClient, registry: ConnectionRegistry) -> None:
        async def connect() -> None:
            await registry.register("c1", "bob", DisplayMeta(name="Bob"))
            await registry.register("c2", "carol", DisplayMeta(name="Carol"))
            await registry.bind_to_room("c1", "alpha")

        asyncio.run(connect())

        resp = client.get("/health")

        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.json()["presence"] == {"status": "ok", "connections": 2, "active_rooms": 1}

    def test_health_reports_closed_presence(self, client: TestClient, registry: ConnectionRegistry) -> None:
        registry.index.close()

        presence = client.get("/health").json()["presence"]

        assert presence["status"] == "closed"
        assert presence["active_rooms"] == 0
