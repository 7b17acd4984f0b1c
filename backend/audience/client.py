"""Async HTTP client for the contacts audience API.

Rejections come back as the same domain errors the server raised, so
:class:`audience.domain.duplicate_queue.ResolutionQueue` and
:class:`audience.domain.value_search.LatestValueSearch` can run against a
remote server unchanged.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

import httpx
from loguru import logger

from audience.domain.duplicate_queue import BulkChoice, Choice, DuplicatePage, DuplicatePair
from audience.domain.errors import ERRORS_BY_CODE, StaleReferenceError
from audience.domain.identity_keys import SlotType
from audience.domain.value_search import ValuePage


class ContactsApiClient:
    """Client for the ``/api`` routes of the audience service."""

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._client = client

    @property
    def headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    def _raise_for_error(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            cls = ERRORS_BY_CODE.get(body.get("code"))
            if cls is StaleReferenceError:
                raise StaleReferenceError(body.get("detail"), references=body.get("references"))
            if cls is not None:
                raise cls(body.get("detail"))
        logger.bind(status=response.status_code, url=str(response.request.url)).error(
            "audience_api_http_error"
        )
        response.raise_for_status()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        if self._client is not None:
            response = await self._client.request(
                method, url, json=json, params=params, headers=self.headers, timeout=self.timeout
            )
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method, url, json=json, params=params, headers=self.headers
                )
        self._raise_for_error(response)
        if response.status_code == httpx.codes.NO_CONTENT:
            return None
        return response.json()

    # Audience

    async def compute_audience(self, segment_ids: list[str]) -> dict:
        return await self._request("POST", "/audience/count", json={"segment_ids": segment_ids})

    async def search_field_values(self, field_id: int, search: str, page: int = 1) -> ValuePage:
        data = await self._request(
            "GET", f"/fields/{field_id}/values", params={"search": search, "page": page}
        )
        return ValuePage(
            values=list(data.get("values") or []),
            page=int(data.get("page", page)),
            has_more=bool(data.get("has_more", False)),
        )

    # Identity keys

    async def get_identity_keys(self) -> dict:
        return await self._request("GET", "/identity-keys")

    async def set_identity_key(self, slot_type: SlotType, value: Any) -> dict:
        slot_type = SlotType(slot_type)
        body = {"filters": value} if slot_type == SlotType.FILTERS else {"value": value}
        return await self._request("PUT", f"/identity-keys/{slot_type.value}", json=body)

    async def finalize(self) -> dict:
        return await self._request("POST", "/identity-keys/finalize")

    async def request_revert(self, slot_type: SlotType) -> dict:
        return await self._request(
            "POST", "/identity-keys/revert-requests", json={"type": SlotType(slot_type).value}
        )

    async def cancel_revert(self, slot_type: SlotType) -> dict:
        return await self._request(
            "POST",
            "/identity-keys/revert-requests/cancel",
            json={"type": SlotType(slot_type).value},
        )

    # Duplicates

    async def fetch_page(self, page: int) -> DuplicatePage:
        data = await self._request("GET", "/duplicates", params={"page": page})
        return DuplicatePage(
            pairs=[
                DuplicatePair(id=item["id"], old=item["old"], new=item["new"])
                for item in data.get("pairs", [])
            ],
            total_remaining=int(data.get("total_remaining", 0)),
        )

    async def resolve(
        self, pair_id: str, choice: Choice, overrides: Optional[Mapping[str, Any]] = None
    ) -> None:
        body: dict[str, Any] = {"choice": Choice(choice).value}
        if overrides:
            body["overrides"] = dict(overrides)
        await self._request("POST", f"/duplicates/{pair_id}/resolve", json=body)

    async def resolve_all(self, choice: BulkChoice) -> int:
        data = await self._request(
            "POST", "/duplicates/resolve-all", json={"choice": BulkChoice(choice).value}
        )
        return int(data["resolved"])
