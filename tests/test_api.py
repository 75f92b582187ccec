"""End-to-end tests of the HTTP API."""

import typing as t

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import SETTINGS
from app.core.database import get_db
from app.core.events import EVENT_BUS
from app.main import APPLICATION
from app.services.analytics import register_subscribers
from app.utils.dates import get_clock
from tests.conftest import PASSWORD, FrozenClock

Headers = t.Dict[str, str]


@pytest.fixture
async def client(
    session_maker: async_sessionmaker[AsyncSession], clock: FrozenClock
) -> t.AsyncIterator[AsyncClient]:
    async def override_get_db() -> t.AsyncGenerator[AsyncSession, None]:
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                EVENT_BUS.discard(session)
                raise
        await EVENT_BUS.dispatch(session)

    register_subscribers(EVENT_BUS, session_maker)
    APPLICATION.dependency_overrides[get_db] = override_get_db
    APPLICATION.dependency_overrides[get_clock] = lambda: clock
    async with AsyncClient(
        transport=ASGITransport(app=APPLICATION), base_url="http://test"
    ) as test_client:
        yield test_client
    APPLICATION.dependency_overrides.clear()


async def login(
    client: AsyncClient, email: str, role: str = "receiver"
) -> Headers:
    response = await client.post(
        "/api/auth/register",
        json={
            "name": email.split("@")[0].title(),
            "email": email,
            "password": PASSWORD,
            "role": role,
        },
    )
    assert response.status_code == 201, response.text
    response = await client.post(
        "/api/auth/token", data={"username": email, "password": PASSWORD}
    )
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


async def post_listing(
    client: AsyncClient, headers: Headers, total_quantity: float = 10
) -> t.Dict[str, t.Any]:
    response = await client.post(
        "/api/listings",
        json={
            "title": "Vegetable curry",
            "total_quantity": total_quantity,
            "unit": "kg",
            "freshness": "fresh",
        },
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestAuth:
    async def test_register_login_and_me(self, client: AsyncClient) -> None:
        headers = await login(client, "Baker@Example.org", "provider")
        response = await client.get("/api/auth/me", headers=headers)
        assert response.status_code == 200
        assert response.json()["email"] == "baker@example.org"
        assert response.json()["role"] == "provider"

    async def test_duplicate_email(self, client: AsyncClient) -> None:
        await login(client, "baker@example.org")
        response = await client.post(
            "/api/auth/register",
            json={
                "name": "Other",
                "email": "baker@example.org",
                "password": PASSWORD,
            },
        )
        assert response.status_code == 400

    async def test_admin_cannot_self_register(
        self, client: AsyncClient
    ) -> None:
        response = await client.post(
            "/api/auth/register",
            json={
                "name": "Root",
                "email": "root@example.org",
                "password": PASSWORD,
                "role": "admin",
            },
        )
        assert response.status_code == 422

    async def test_wrong_password(self, client: AsyncClient) -> None:
        await login(client, "baker@example.org")
        response = await client.post(
            "/api/auth/token",
            data={"username": "baker@example.org", "password": "nope-nope"},
        )
        assert response.status_code == 401

    async def test_anonymous_request(self, client: AsyncClient) -> None:
        response = await client.get("/api/listings/available")
        assert response.status_code == 401


class TestClaimFlow:
    async def test_from_listing_to_hand_over(
        self, client: AsyncClient
    ) -> None:
        provider = await login(client, "baker@example.org", "provider")
        receiver = await login(client, "shelter@example.org")
        listing = await post_listing(client, provider)

        available = await client.get(
            "/api/listings/available", headers=receiver
        )
        assert [item["id"] for item in available.json()["listings"]] == [
            listing["id"]
        ]

        response = await client.post(
            "/api/claims",
            json={"listing_id": listing["id"], "requested_quantity": 6},
            headers=receiver,
        )
        assert response.status_code == 201, response.text
        claim = response.json()
        assert claim["status"] == "pending"
        assert claim["pickup_code"] is None

        response = await client.post(
            f"/api/claims/{claim['id']}/approve", headers=provider
        )
        assert response.status_code == 200, response.text
        assert response.json()["pickup_code"] is None

        response = await client.get(
            f"/api/claims/{claim['id']}", headers=receiver
        )
        code = response.json()["pickup_code"]
        assert len(code) == 6

        response = await client.post(
            f"/api/claims/{claim['id']}/verify",
            json={"pickup_code": "000000" if code != "000000" else "111111"},
            headers=provider,
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid pickup code"

        response = await client.post(
            f"/api/claims/{claim['id']}/verify",
            json={"pickup_code": code},
            headers=provider,
        )
        assert response.json()["status"] == "confirmed"

        response = await client.post(
            f"/api/claims/{claim['id']}/verify",
            json={"pickup_code": code},
            headers=provider,
        )
        assert response.status_code == 409
        assert response.json()["detail"]["current_status"] == "confirmed"

        response = await client.post(
            f"/api/claims/{claim['id']}/complete", headers=provider
        )
        assert response.json()["status"] == "completed"

        response = await client.get(
            f"/api/listings/{listing['id']}", headers=provider
        )
        assert response.json()["status"] == "completed"
        assert response.json()["claimed_quantity"] == 6

        response = await client.get("/api/analytics/me", headers=receiver)
        assert response.json()["food_received_kg"] == 6
        assert response.json()["points"] == 60

    async def test_insufficient_quantity(self, client: AsyncClient) -> None:
        provider = await login(client, "baker@example.org", "provider")
        first = await login(client, "shelter@example.org")
        second = await login(client, "pantry@example.org")
        listing = await post_listing(client, provider)

        response = await client.post(
            "/api/claims",
            json={"listing_id": listing["id"], "requested_quantity": 6},
            headers=first,
        )
        await client.post(
            f"/api/claims/{response.json()['id']}/approve", headers=provider
        )

        response = await client.post(
            "/api/claims",
            json={"listing_id": listing["id"], "requested_quantity": 5},
            headers=second,
        )
        assert response.status_code == 409
        assert response.json()["detail"] == {
            "message": "Only 4 kg available",
            "remaining_quantity": 4,
            "unit": "kg",
        }

    async def test_duplicate_claim(self, client: AsyncClient) -> None:
        provider = await login(client, "baker@example.org", "provider")
        receiver = await login(client, "shelter@example.org")
        listing = await post_listing(client, provider)
        payload = {"listing_id": listing["id"], "requested_quantity": 1}

        first = await client.post(
            "/api/claims", json=payload, headers=receiver
        )
        assert first.status_code == 201
        second = await client.post(
            "/api/claims", json=payload, headers=receiver
        )
        assert second.status_code == 409

    async def test_expired_listing(
        self, client: AsyncClient, clock: FrozenClock
    ) -> None:
        provider = await login(client, "baker@example.org", "provider")
        receiver = await login(client, "shelter@example.org")
        listing = await post_listing(client, provider)
        clock.advance(hours=9)

        response = await client.post(
            "/api/claims",
            json={"listing_id": listing["id"], "requested_quantity": 1},
            headers=receiver,
        )
        assert response.status_code == 410

        response = await client.get(
            f"/api/listings/{listing['id']}", headers=provider
        )
        assert response.json()["status"] == "expired"
        assert response.json()["wasted_quantity"] == 10

    async def test_roles_are_enforced(self, client: AsyncClient) -> None:
        receiver = await login(client, "shelter@example.org")
        response = await client.post(
            "/api/listings",
            json={"title": "Bread", "total_quantity": 3},
            headers=receiver,
        )
        assert response.status_code == 403

    async def test_search_by_email(self, client: AsyncClient) -> None:
        provider = await login(client, "baker@example.org", "provider")
        receiver = await login(client, "shelter@example.org")
        listing = await post_listing(client, provider)
        await client.post(
            "/api/claims",
            json={"listing_id": listing["id"], "requested_quantity": 2},
            headers=receiver,
        )

        response = await client.get(
            "/api/claims/search",
            params={"email": "Shelter@example.org"},
            headers=provider,
        )
        assert response.status_code == 200
        assert response.json()["requested_quantity"] == 2

        response = await client.get("/api/claims", headers=provider)
        assert response.json()["total"] == 1


class TestListingEndpoints:
    async def test_cancel_and_delete(self, client: AsyncClient) -> None:
        provider = await login(client, "baker@example.org", "provider")
        first = await post_listing(client, provider)
        second = await post_listing(client, provider)

        response = await client.post(
            f"/api/listings/{first['id']}/cancel",
            json={"reason": "Kitchen closed"},
            headers=provider,
        )
        assert response.json()["status"] == "cancelled"

        response = await client.delete(
            f"/api/listings/{second['id']}", headers=provider
        )
        assert response.status_code == 204
        response = await client.get(
            f"/api/listings/{second['id']}", headers=provider
        )
        assert response.status_code == 404

        response = await client.get("/api/listings/stats", headers=provider)
        assert response.json()["total_listings"] == 1


class TestCron:
    async def test_token_is_required_when_configured(
        self,
        client: AsyncClient,
        clock: FrozenClock,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(SETTINGS, "cron_secret_token", "s3cret")
        provider = await login(client, "baker@example.org", "provider")
        await post_listing(client, provider)
        clock.advance(hours=9)

        response = await client.post("/api/cron/ttl-cleanup")
        assert response.status_code == 401

        response = await client.post(
            "/api/cron/ttl-cleanup",
            headers={"Authorization": "Bearer s3cret"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["processed_count"] == 1
        assert body["results"][0]["wasted_quantity"] == 10

    async def test_health(self, client: AsyncClient) -> None:
        response = await client.get("/api/cron/ttl-cleanup")
        assert response.json()["status"] == "healthy"
        response = await client.get("/health")
        assert response.json()["status"] == "healthy"
