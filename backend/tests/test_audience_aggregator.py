import anyio
import pytest

from audience.domain.audience import AudienceAggregator, SegmentDefinition
from audience.domain.errors import AggregationUnavailableError, EvaluatorUnavailableError
from audience.schemas.filters import FilterGroup
from audience.services.evaluator import InMemoryPredicateEvaluator

from conftest import make_contacts

pytestmark = pytest.mark.anyio


class DictSegmentSource:
    def __init__(self, *segments: SegmentDefinition):
        self.segments = {s.id: s for s in segments}

    async def load_segments(self, segment_ids):
        return {i: self.segments[i] for i in segment_ids if i in self.segments}


class FailingEvaluator:
    """The first call hangs until cancelled; every later call fails."""

    def __init__(self):
        self.calls = 0
        self.cancelled = 0

    async def evaluate(self, predicate, *, identity_key=None):
        self.calls += 1
        if self.calls > 1:
            raise EvaluatorUnavailableError("boom")
        try:
            await anyio.sleep_forever()
        except anyio.get_cancelled_exc_class():
            self.cancelled += 1
            raise


COUNTRY_US = SegmentDefinition("seg-a", "US", [FilterGroup(field_key="country", values=["US"])])
PLAN_PRO = SegmentDefinition("seg-b", "Pro", [FilterGroup(field_key="plan", values=["pro"])])


async def test_union_count_is_not_the_sum_of_segments():
    aggregator = AudienceAggregator(
        InMemoryPredicateEvaluator(make_contacts(us=100, pro=40, both=15)),
        DictSegmentSource(COUNTRY_US, PLAN_PRO),
    )
    result = await aggregator.compute_audience(["seg-a", "seg-b"])

    assert [(s.segment_id, s.contact_count) for s in result.per_segment] == [
        ("seg-a", 100),
        ("seg-b", 40),
    ]
    assert result.total_number_of_contacts == 125
    assert result.stale_segment_ids == []


@pytest.mark.parametrize("overlap", [0, 1, 20, 40])
async def test_total_subtracts_the_overlap(overlap):
    aggregator = AudienceAggregator(
        InMemoryPredicateEvaluator(make_contacts(us=60, pro=40, both=overlap)),
        DictSegmentSource(COUNTRY_US, PLAN_PRO),
    )
    result = await aggregator.compute_audience(["seg-a", "seg-b"])
    assert result.total_number_of_contacts == 60 + 40 - overlap


async def test_flag_counts_come_from_the_deduplicated_set():
    contacts = [
        {"_id": 1, "country": "US", "plan": "pro", "is_unsubscribed": True},
        {"_id": 2, "country": "US", "plan": "free", "is_invalid_email": True},
        {"_id": 3, "country": "DE", "plan": "pro"},
    ]
    aggregator = AudienceAggregator(
        InMemoryPredicateEvaluator(contacts), DictSegmentSource(COUNTRY_US, PLAN_PRO)
    )
    result = await aggregator.compute_audience(["seg-a", "seg-b"])
    assert result.total_number_of_contacts == 3
    assert result.total_unsubscribed_count == 1
    assert result.total_invalid_email_count == 1


async def test_identity_key_merges_contacts_sharing_a_value():
    contacts = [
        {"_id": 1, "email": "a@example.com", "country": "US"},
        {"_id": 2, "email": "a@example.com", "country": "US"},
        {"_id": 3, "email": "b@example.com", "country": "US"},
    ]
    aggregator = AudienceAggregator(
        InMemoryPredicateEvaluator(contacts), DictSegmentSource(COUNTRY_US)
    )
    result = await aggregator.compute_audience(["seg-a"], identity_key="email")
    assert result.total_number_of_contacts == 2


async def test_no_segments_is_all_zeros():
    evaluator = InMemoryPredicateEvaluator(make_contacts())
    result = await AudienceAggregator(evaluator, DictSegmentSource()).compute_audience([])
    assert result.per_segment == []
    assert result.total_number_of_contacts == 0
    assert result.total_invalid_email_count == 0
    assert result.total_unsubscribed_count == 0
    assert evaluator.calls == []


async def test_missing_segment_is_excluded_and_flagged():
    aggregator = AudienceAggregator(
        InMemoryPredicateEvaluator(make_contacts()), DictSegmentSource(COUNTRY_US)
    )
    result = await aggregator.compute_audience(["seg-a", "gone", "seg-a"])
    assert [s.segment_id for s in result.per_segment] == ["seg-a"]
    assert result.total_number_of_contacts == 100
    assert result.stale_segment_ids == ["gone"]


async def test_only_missing_segments_evaluates_nothing():
    evaluator = InMemoryPredicateEvaluator(make_contacts())
    result = await AudienceAggregator(evaluator, DictSegmentSource()).compute_audience(["gone"])
    assert result.total_number_of_contacts == 0
    assert result.stale_segment_ids == ["gone"]
    assert evaluator.calls == []


async def test_evaluator_failure_fails_the_whole_count():
    evaluator = FailingEvaluator()
    aggregator = AudienceAggregator(evaluator, DictSegmentSource(COUNTRY_US, PLAN_PRO))
    with pytest.raises(AggregationUnavailableError) as ctx:
        await aggregator.compute_audience(["seg-a", "seg-b"])
    assert ctx.value.detail == "count unavailable"
    # The hanging evaluation was cancelled rather than left running.
    assert evaluator.cancelled == 1


class SilentEvaluator:
    """Completes without producing a count."""

    async def evaluate(self, predicate, *, identity_key=None):
        return None


async def test_missing_snapshot_fails_instead_of_reporting_a_partial_total():
    aggregator = AudienceAggregator(
        SilentEvaluator(), DictSegmentSource(COUNTRY_US, PLAN_PRO)
    )
    with pytest.raises(AggregationUnavailableError):
        await aggregator.compute_audience(["seg-a", "seg-b"])
