"""Adapters for the external predicate evaluator.

The contact store owns the query engine that runs a predicate against the
contact table. :class:`HttpPredicateEvaluator` talks to it over HTTP;
:class:`InMemoryPredicateEvaluator` evaluates predicates over a list of
contact dicts for local development and tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

import httpx
from loguru import logger

from audience.core.config import settings
from audience.domain.audience import CountSnapshot
from audience.domain.conditions import same_value
from audience.domain.errors import EvaluatorUnavailableError
from audience.domain.filter_tree import Node, evaluate, segment_predicate, to_wire
from audience.domain.identity_keys import SlotType
from audience.domain.value_search import ValuePage
from audience.schemas.filters import FilterGroup

# System flags the contact store keeps on every contact.
INVALID_EMAIL_FLAG = "is_invalid_email"
UNSUBSCRIBED_FLAG = "is_unsubscribed"
CONTACT_ID_KEY = "_id"


@dataclass(frozen=True)
class KeyEffect:
    affected_count: int
    message: str


class HttpPredicateEvaluator:
    """Client for the evaluator API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        base_url = base_url if base_url is not None else settings.EVALUATOR_BASE_URL
        self.base_url = base_url.rstrip("/") if base_url else ""
        self.api_key = api_key if api_key is not None else settings.EVALUATOR_API_KEY
        self.timeout = timeout or settings.EVALUATOR_TIMEOUT_SEC
        self._client = client

    @property
    def headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    async def _post(self, path: str, payload: dict) -> dict:
        if not self.is_configured:
            raise EvaluatorUnavailableError("EVALUATOR_BASE_URL is not configured")
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                response = await self._client.post(
                    url, json=payload, headers=self.headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload, headers=self.headers)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            logger.bind(path=path, status=exc.response.status_code).error("evaluator_http_error")
            raise EvaluatorUnavailableError(
                f"Evaluator returned HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.bind(path=path, error=str(exc)).error("evaluator_unreachable")
            raise EvaluatorUnavailableError(f"Evaluator request failed: {exc}") from exc

    async def evaluate(self, predicate: Node, *, identity_key: Optional[str] = None) -> CountSnapshot:
        data = await self._post(
            "/evaluate", {"predicate": to_wire(predicate), "identity_key": identity_key}
        )
        try:
            return CountSnapshot(
                count=int(data["count"]),
                invalid_email_count=int(data.get("invalid_email_count", 0)),
                unsubscribed_count=int(data.get("unsubscribed_count", 0)),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise EvaluatorUnavailableError("Evaluator returned a malformed count") from exc

    async def search_field_values(
        self, field_key: str, search: str, page: int, page_size: int
    ) -> ValuePage:
        data = await self._post(
            "/field-values",
            {"field_key": field_key, "search": search, "page": page, "page_size": page_size},
        )
        values = data.get("values") if isinstance(data, dict) else None
        if not isinstance(values, list):
            raise EvaluatorUnavailableError("Evaluator returned malformed field values")
        return ValuePage(values=values, page=page, has_more=bool(data.get("has_more", False)))

    async def preview_key_effect(self, slot_type: SlotType, value: Any) -> KeyEffect:
        payload_value = (
            [g.model_dump(mode="json") for g in value] if slot_type == SlotType.FILTERS else value
        )
        data = await self._post(
            "/key-effect", {"slot_type": slot_type.value, "value": payload_value}
        )
        try:
            return KeyEffect(
                affected_count=int(data["affected_count"]),
                message=str(data.get("message") or ""),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise EvaluatorUnavailableError("Evaluator returned a malformed key effect") from exc


class InMemoryPredicateEvaluator:
    """Evaluates predicates over contact dicts.

    Contacts are deduplicated by ``identity_key`` when given, falling back to
    ``_id`` for contacts that have no value for it.
    """

    def __init__(
        self, contacts: Iterable[Mapping[str, Any]], *, now: Optional[datetime] = None
    ) -> None:
        self.contacts = list(contacts)
        self.now = now
        self.calls: list[Node] = []

    def _identity(self, index: int, contact: Mapping[str, Any], identity_key: Optional[str]) -> Any:
        if identity_key and contact.get(identity_key) not in (None, ""):
            return ("key", contact[identity_key])
        return ("id", contact.get(CONTACT_ID_KEY, index))

    async def evaluate(self, predicate: Node, *, identity_key: Optional[str] = None) -> CountSnapshot:
        self.calls.append(predicate)
        matched: dict[Any, Mapping[str, Any]] = {}
        for index, contact in enumerate(self.contacts):
            if evaluate(predicate, contact, now=self.now):
                matched.setdefault(self._identity(index, contact, identity_key), contact)
        return CountSnapshot(
            count=len(matched),
            invalid_email_count=sum(1 for c in matched.values() if c.get(INVALID_EMAIL_FLAG)),
            unsubscribed_count=sum(1 for c in matched.values() if c.get(UNSUBSCRIBED_FLAG)),
        )

    async def search_field_values(
        self, field_key: str, search: str, page: int, page_size: int
    ) -> ValuePage:
        term = search.lower()
        distinct: list[Any] = []
        for contact in self.contacts:
            value = contact.get(field_key)
            if value is None or any(same_value(value, seen) for seen in distinct):
                continue
            if term and term not in str(value).lower():
                continue
            distinct.append(value)
        distinct.sort(key=str)
        start = (page - 1) * page_size
        return ValuePage(
            values=distinct[start:start + page_size],
            page=page,
            has_more=len(distinct) > start + page_size,
        )

    async def preview_key_effect(self, slot_type: SlotType, value: Any) -> KeyEffect:
        if slot_type == SlotType.FILTERS:
            groups: list[FilterGroup] = list(value)
            snapshot = await self.evaluate(segment_predicate(groups))
            return KeyEffect(
                snapshot.count,
                f"{snapshot.count} contacts match the selection criteria",
            )
        seen: dict[Any, int] = {}
        for contact in self.contacts:
            key_value = contact.get(value)
            if key_value not in (None, ""):
                seen[key_value] = seen.get(key_value, 0) + 1
        with_value = sum(seen.values())
        merged = with_value - len(seen)
        return KeyEffect(
            with_value,
            f"{with_value} contacts have a value for {value}; {merged} would be merged as duplicates",
        )


def get_evaluator() -> HttpPredicateEvaluator:
    """FastAPI dependency returning the configured evaluator."""

    return HttpPredicateEvaluator()
