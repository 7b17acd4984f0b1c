import pytest

from audience.client import ContactsApiClient
from audience.core.config import settings
from audience.domain.duplicate_queue import BulkChoice, Choice, ResolutionQueue
from audience.domain.errors import StalePairError

from conftest import bearer

pytestmark = pytest.mark.anyio


def pairs(count: int) -> list[dict]:
    return [
        {
            "old": {"email": f"c{i}@x.io", "name": f"Old {i}"},
            "new": {"email": f"c{i}@x.io", "name": f"New {i}", "phone": f"555-{i:04d}"},
        }
        for i in range(count)
    ]


async def ingest(client, auth, count: int) -> None:
    response = await client.post("/api/duplicates", json={"pairs": pairs(count)}, headers=auth)
    assert response.status_code == 201
    assert response.json() == {"created": count}


def api_client(client, headers) -> ContactsApiClient:
    token = headers["Authorization"].split(" ", 1)[1]
    return ContactsApiClient("http://test/api", token, client=client)


async def test_page_reports_total_remaining(client, auth, monkeypatch):
    monkeypatch.setattr(settings, "DUPLICATE_PAGE_SIZE", 2)
    await ingest(client, auth, 5)

    response = await client.get("/api/duplicates", params={"page": 1}, headers=auth)
    body = response.json()
    assert len(body["pairs"]) == 2
    assert body["total_remaining"] == 5
    assert body["page_size"] == 2
    assert set(body["pairs"][0]) == {"id", "old", "new", "detected_at"}


async def test_resolve_with_overrides(client, auth):
    await ingest(client, auth, 1)
    pair = (await client.get("/api/duplicates", headers=auth)).json()["pairs"][0]

    response = await client.post(
        f"/api/duplicates/{pair['id']}/resolve",
        json={"choice": "OLD", "overrides": {"phone": "555-9999"}},
        headers=auth,
    )
    assert response.status_code == 200
    assert response.json() == {
        "id": pair["id"],
        "choice": "OLD",
        "canonical": {"email": "c0@x.io", "name": "Old 0", "phone": "555-9999"},
    }


async def test_second_resolution_is_stale(client, auth):
    await ingest(client, auth, 1)
    pair_id = (await client.get("/api/duplicates", headers=auth)).json()["pairs"][0]["id"]

    first = await client.post(f"/api/duplicates/{pair_id}/resolve", json={"choice": "NEW"}, headers=auth)
    second = await client.post(
        f"/api/duplicates/{pair_id}/resolve", json={"choice": "OLD"}, headers=bearer(user_code="u-2")
    )

    assert first.status_code == 200
    assert second.status_code == 409
    assert second.json()["code"] == "stale_pair"
    assert second.json()["resync"] is True


async def test_pairs_of_other_companies_are_invisible(client, auth):
    await ingest(client, auth, 1)
    pair_id = (await client.get("/api/duplicates", headers=auth)).json()["pairs"][0]["id"]
    other = bearer(company_id="globex")

    assert (await client.get("/api/duplicates", headers=other)).json()["total_remaining"] == 0
    response = await client.post(f"/api/duplicates/{pair_id}/resolve", json={"choice": "NEW"}, headers=other)
    assert response.status_code == 409


async def test_queue_over_http_shrinks_after_resolution(client, auth, monkeypatch):
    monkeypatch.setattr(settings, "DUPLICATE_PAGE_SIZE", 2)
    await ingest(client, auth, 5)
    store = api_client(client, auth)
    queue = ResolutionQueue(store)

    await queue.load_page(1)
    assert queue.total_remaining == 5
    resolved_id = queue.items[0].id

    await queue.resolve_one(0, Choice.OLD)

    assert queue.total_remaining == 4
    assert queue.cursor == 0
    remaining = []
    for page in (1, 2, 3):
        remaining.extend(p.id for p in (await store.fetch_page(page)).pairs)
    assert resolved_id not in remaining
    assert len(remaining) == 4


async def test_queue_over_http_reloads_on_stale_pair(client, auth):
    await ingest(client, auth, 2)
    queue = ResolutionQueue(api_client(client, auth))
    await queue.load_page(1)

    # Another operator resolves the first pair.
    other = api_client(client, bearer(user_code="u-2"))
    await other.resolve(queue.items[0].id, Choice.NEW)

    with pytest.raises(StalePairError):
        await queue.resolve_one(0, Choice.OLD)
    assert queue.total_remaining == 1
    assert len(queue.items) == 1


async def test_resolve_all_reaches_unloaded_pairs(client, auth, monkeypatch):
    monkeypatch.setattr(settings, "DUPLICATE_PAGE_SIZE", 2)
    await ingest(client, auth, 5)
    queue = ResolutionQueue(api_client(client, auth))
    await queue.load_page(1)

    resolved = await queue.resolve_all(BulkChoice.ALL_NEW)

    assert resolved == 5
    assert queue.total_remaining == 0
    assert queue.items == []
