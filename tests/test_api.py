from __future__ import annotations

import httpx
import pytest
import pytest_asyncio

from apps.jackpot.api import admin as admin_api
from apps.jackpot.api import loyalty as loyalty_api
from apps.jackpot.core.security import ROLE_OPERATOR, create_access_token
from apps.jackpot.main import build_app


def _auth(user_id: int, role: str = "player") -> dict[str, str]:
    token, _ = create_access_token(user_id, role=role)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture()
async def client(settings, database, monkeypatch):
    monkeypatch.setattr(admin_api, "get_settings", lambda: settings)
    monkeypatch.setattr(loyalty_api, "get_settings", lambda: settings)
    app = build_app(settings=settings, database=database, redis=None, with_scheduler=False)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


@pytest_asyncio.fixture()
async def accounts(session, make_user, make_pool):
    pool = await make_pool()
    player = await make_user("player")
    operator = await make_user("operator", is_operator=True)
    ids = {"pool": pool.id, "player": player.id, "operator": operator.id}
    await session.commit()
    return ids


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.text == "ok"


@pytest.mark.asyncio
async def test_public_pool_listing(client, accounts):
    response = await client.get("/api/jackpot/pools")
    assert response.status_code == 200
    pools = response.json()["pools"]
    assert [pool["id"] for pool in pools] == [accounts["pool"]]
    assert pools[0]["amount"] == 1_000_000
    assert pools[0]["drawNumber"] == 1

    detail = await client.get(f"/api/jackpot/pools/{accounts['pool']}")
    assert [tier["name"] for tier in detail.json()["tiers"]] == ["Grand", "Major", "Minor"]

    missing = await client.get("/api/jackpot/pools/9999")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_player_endpoints_need_a_token(client, accounts):
    response = await client.get(f"/api/jackpot/pools/{accounts['pool']}/me")
    assert response.status_code in (401, 403)

    bad = await client.get(f"/api/jackpot/pools/{accounts['pool']}/me", headers={"Authorization": "Bearer nope"})
    assert bad.status_code == 401


@pytest.mark.asyncio
async def test_admin_routes_require_operator(client, accounts):
    response = await client.post(f"/api/admin/pools/{accounts['pool']}/pause", headers=_auth(accounts["player"]))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_wager_draw_and_replay_flow(client, accounts):
    operator = _auth(accounts["operator"], ROLE_OPERATOR)
    pool_id = accounts["pool"]

    wager = await client.post(
        "/api/admin/wagers",
        json={"user_id": accounts["player"], "amount": 100_000, "transaction_id": "api-bet-1", "game": "slots"},
        headers=operator,
    )
    assert wager.status_code == 200
    assert wager.json()["tickets"][str(pool_id)]["tickets"] == [1, 2, 3, 4]

    mine = await client.get(f"/api/jackpot/pools/{pool_id}/me", headers=_auth(accounts["player"]))
    assert mine.json() == {"poolId": pool_id, "tickets": 4, "totalTickets": 4, "odds": "100.0000"}

    draw = await client.post(f"/api/admin/pools/{pool_id}/draw", headers=operator)
    assert draw.status_code == 200
    body = draw.json()
    assert body["drawNumber"] == 1
    assert body["totalPool"] == 1_000_500
    assert len(body["winners"]) == 4
    assert body["crediting"]["failed"] == {}
    assert len(body["crediting"]["credited"]) == 4

    replay = await client.get(f"/api/admin/draws/{body['id']}/replay", headers=operator)
    assert replay.json()["matches"] is True

    history = await client.get(f"/api/jackpot/pools/{pool_id}/draws")
    assert history.json()["total"] == 1

    detail = await client.get(f"/api/jackpot/draws/{body['id']}")
    assert all(winner["credited"] for winner in detail.json()["winners"])

    empty = await client.post(f"/api/admin/pools/{pool_id}/draw", headers=operator)
    assert empty.status_code == 422


@pytest.mark.asyncio
async def test_pause_blocks_draw(client, accounts):
    operator = _auth(accounts["operator"], ROLE_OPERATOR)
    pool_id = accounts["pool"]

    paused = await client.post(f"/api/admin/pools/{pool_id}/pause", headers=operator)
    assert paused.json()["status"] == "paused"

    draw = await client.post(f"/api/admin/pools/{pool_id}/draw", headers=operator)
    assert draw.status_code == 409

    resumed = await client.post(f"/api/admin/pools/{pool_id}/resume", headers=operator)
    assert resumed.json()["status"] == "active"


@pytest.mark.asyncio
async def test_loyalty_redeem_flow(client, accounts):
    operator = _auth(accounts["operator"], ROLE_OPERATOR)
    player = _auth(accounts["player"])

    before = await client.get("/api/loyalty/me", headers=player)
    assert before.json()["tier"] == "Bronze"

    await client.post(
        "/api/admin/wagers",
        json={"user_id": accounts["player"], "amount": 1_000_000, "transaction_id": "api-bet-2"},
        headers=operator,
    )
    after = await client.get("/api/loyalty/me", headers=player)
    assert after.json()["tier"] == "Silver"
    assert after.json()["availablePoints"] == 1_005

    redeemed = await client.post("/api/loyalty/redeem", json={"points": 500}, headers=player)
    assert redeemed.status_code == 200
    assert redeemed.json()["amount"] == 500
    assert redeemed.json()["balance"] == 500

    too_many = await client.post("/api/loyalty/redeem", json={"points": 5_000}, headers=player)
    assert too_many.status_code == 422
