import httpx
import pytest

from audience.client import ContactsApiClient
from audience.domain.errors import (
    DuplicateRevertRequestError,
    EmptySegmentError,
    KeyLockedError,
    StaleReferenceError,
)
from audience.domain.identity_keys import SlotType
from audience.domain.value_search import LatestValueSearch

from conftest import create_field

pytestmark = pytest.mark.anyio


@pytest.fixture
def api(client, auth) -> ContactsApiClient:
    token = auth["Authorization"].split(" ", 1)[1]
    return ContactsApiClient("http://test/api", token, client=client)


async def test_lifecycle_rejections_come_back_as_domain_errors(api):
    await api.set_identity_key(SlotType.PRIMARY_KEY, "customer_id")
    finalized = await api.finalize()
    assert finalized["config"]["primary_key"]["state"] == "LOCKED"

    with pytest.raises(KeyLockedError):
        await api.set_identity_key(SlotType.PRIMARY_KEY, "email")

    await api.request_revert(SlotType.PRIMARY_KEY)
    with pytest.raises(DuplicateRevertRequestError):
        await api.request_revert(SlotType.PRIMARY_KEY)

    config = await api.cancel_revert(SlotType.PRIMARY_KEY)
    assert config["primary_key"]["state"] == "LOCKED"
    assert (await api.get_identity_keys())["primary_key"]["revert_request"] is None


async def test_filter_slot_rejections(api):
    with pytest.raises(StaleReferenceError) as ctx:
        await api.set_identity_key(SlotType.FILTERS, [{"field_key": "gone", "values": ["x"]}])
    assert ctx.value.references == ["gone"]

    with pytest.raises(EmptySegmentError):
        await api.set_identity_key(SlotType.FILTERS, [{"field_key": "gone", "values": []}])


async def test_audience_count_through_client(api):
    result = await api.compute_audience([])
    assert result["total_number_of_contacts"] == 0


async def test_typeahead_through_client(client, auth, api):
    plan = await create_field(client, auth, "plan")
    search = LatestValueSearch(lambda term, page: api.search_field_values(plan["id"], term, page), debounce=0)

    page = await search.search("r")

    assert page.values == ["free", "pro"]
    assert search.latest is page


async def test_unmapped_errors_raise_http_status_error(api):
    with pytest.raises(httpx.HTTPStatusError) as ctx:
        await api.search_field_values(12345, "")
    assert ctx.value.response.status_code == 404
