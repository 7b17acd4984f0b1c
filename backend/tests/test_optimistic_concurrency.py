from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from audience.core.optimistic_lock import ensure_expected_timestamp
from audience.schemas.segment import SegmentUpdate


@pytest.mark.anyio
async def test_segment_stale_timestamp_raises_conflict():
    current = datetime.utcnow().replace(microsecond=0)
    payload = SegmentUpdate(expected_updated_at=current, name="Renamed")

    ensure_expected_timestamp(current, payload.expected_updated_at)

    with pytest.raises(HTTPException) as excinfo:
        ensure_expected_timestamp(
            current + timedelta(seconds=5), payload.expected_updated_at
        )

    assert excinfo.value.status_code == 409
    assert "updated" in excinfo.value.detail.lower()


@pytest.mark.anyio
async def test_timezone_of_expected_timestamp_is_ignored():
    current = datetime(2026, 3, 1, 9, 30)
    ensure_expected_timestamp(current, current.replace(tzinfo=timezone.utc))


@pytest.mark.anyio
async def test_missing_expected_timestamp_conflicts_with_stored_one():
    with pytest.raises(HTTPException) as excinfo:
        ensure_expected_timestamp(datetime(2026, 3, 1, 9, 30), None)
    assert excinfo.value.status_code == 409
