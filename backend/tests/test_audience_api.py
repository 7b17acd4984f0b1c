import httpx
import pytest

from audience.domain.errors import EvaluatorUnavailableError
from audience.domain.identity_keys import SlotType
from audience.services.evaluator import HttpPredicateEvaluator, get_evaluator

from conftest import create_field

pytestmark = pytest.mark.anyio


async def create_segment(client, auth, name: str, field_key: str, values: list) -> str:
    response = await client.post(
        "/api/segments",
        json={"name": name, "filters": [{"field_key": field_key, "values": values}]},
        headers=auth,
    )
    assert response.status_code == 201, response.text
    return response.json()["id"]


async def test_campaign_audience_counts_overlap_once(client, auth):
    await create_field(client, auth, "country")
    await create_field(client, auth, "plan")
    us = await create_segment(client, auth, "US", "country", ["US"])
    pro = await create_segment(client, auth, "Pro", "plan", ["pro"])

    response = await client.post(
        "/api/audience/count", json={"segment_ids": [us, pro]}, headers=auth
    )

    assert response.status_code == 200
    body = response.json()
    assert [(s["segment_name"], s["contact_count"]) for s in body["per_segment"]] == [
        ("US", 100),
        ("Pro", 40),
    ]
    assert body["total_number_of_contacts"] == 125
    assert body["stale_segment_ids"] == []


async def test_deleted_segment_is_flagged_not_counted(client, auth):
    await create_field(client, auth, "country")
    us = await create_segment(client, auth, "US", "country", ["US"])

    response = await client.post(
        "/api/audience/count", json={"segment_ids": [us, "deleted-segment"]}, headers=auth
    )

    body = response.json()
    assert body["total_number_of_contacts"] == 100
    assert body["stale_segment_ids"] == ["deleted-segment"]


async def test_no_segments_counts_zero(client, auth):
    response = await client.post("/api/audience/count", json={"segment_ids": []}, headers=auth)
    assert response.status_code == 200
    body = response.json()
    assert body["per_segment"] == []
    assert body["total_number_of_contacts"] == 0


async def test_union_deduplicates_by_configured_primary_key(client, auth, evaluator):
    evaluator.contacts = [
        {"_id": 1, "customer_id": "C-1", "country": "US"},
        {"_id": 2, "customer_id": "C-1", "country": "US"},
        {"_id": 3, "customer_id": "C-2", "country": "US"},
    ]
    await create_field(client, auth, "country")
    us = await create_segment(client, auth, "US", "country", ["US"])
    await client.put("/api/identity-keys/PRIMARY_KEY", json={"value": "customer_id"}, headers=auth)

    response = await client.post("/api/audience/count", json={"segment_ids": [us]}, headers=auth)
    assert response.json()["total_number_of_contacts"] == 2


async def test_unavailable_evaluator_means_count_unavailable(app, client, auth):
    await create_field(client, auth, "country")
    us = await create_segment(client, auth, "US", "country", ["US"])
    # No EVALUATOR_BASE_URL configured.
    app.dependency_overrides[get_evaluator] = lambda: HttpPredicateEvaluator(base_url="")

    response = await client.post("/api/audience/count", json={"segment_ids": [us]}, headers=auth)

    assert response.status_code == 503
    assert response.json() == {
        "detail": "count unavailable",
        "code": "aggregation_unavailable",
        "resync": False,
    }

    # Editing keeps working while counts are down.
    edit = await client.put("/api/identity-keys/EMAIL_KEY", json={"value": "email"}, headers=auth)
    assert edit.status_code == 200


async def test_http_evaluator_errors_are_unavailable():
    evaluator = HttpPredicateEvaluator(base_url="")
    with pytest.raises(EvaluatorUnavailableError):
        await evaluator.search_field_values("country", "", 1, 10)


@pytest.mark.parametrize(
    "body",
    [["US"], {"values": "US"}, {"affected_count": "many"}, "not json"],
)
async def test_malformed_evaluator_replies_are_unavailable(body):
    def reply(request: httpx.Request) -> httpx.Response:
        if isinstance(body, str):
            return httpx.Response(200, text=body)
        return httpx.Response(200, json=body)

    async with httpx.AsyncClient(transport=httpx.MockTransport(reply)) as http:
        evaluator = HttpPredicateEvaluator(base_url="http://evaluator", client=http)
        with pytest.raises(EvaluatorUnavailableError):
            await evaluator.search_field_values("country", "", 1, 10)
        with pytest.raises(EvaluatorUnavailableError):
            await evaluator.preview_key_effect(SlotType.PRIMARY_KEY, "email")


async def test_field_value_typeahead(client, auth):
    country = await create_field(client, auth, "country")

    response = await client.get(
        f"/api/fields/{country['id']}/values", params={"search": "u"}, headers=auth
    )
    assert response.status_code == 200
    assert response.json() == {"values": ["US"], "page": 1, "has_more": False}

    missing = await client.get("/api/fields/999/values", headers=auth)
    assert missing.status_code == 404


async def test_duplicate_field_key_conflicts(client, auth):
    await create_field(client, auth, "country")
    response = await client.post(
        "/api/fields", json={"field_key": "country", "name": "Country again"}, headers=auth
    )
    assert response.status_code == 409


async def test_health_probes(client):
    assert (await client.get("/api/healthz")).json() == {"status": "ok"}
    assert (await client.get("/api/readyz")).json() == {"ready": True}
