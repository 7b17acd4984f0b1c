"""Error taxonomy for audience definitions and contact identity.

These exceptions carry no transport knowledge. ``audience.core.errors`` maps
them to HTTP responses and ``audience.client`` maps those responses back.
"""

from __future__ import annotations


class AudienceError(Exception):
    """Base class for every rejected operation in this package."""

    code = "audience_error"
    # Concurrency conflicts ask the caller to reload state instead of retrying.
    resync = False
    default_message = "Operation rejected"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def detail(self) -> str:
        return str(self)


class EmptySegmentError(AudienceError):
    code = "empty_segment"
    default_message = "A segment needs at least one filter with values or conditions."


class StaleReferenceError(AudienceError):
    code = "stale_reference"
    default_message = "A referenced field or segment no longer exists."

    def __init__(self, message: str | None = None, *, references: list | None = None) -> None:
        super().__init__(message)
        self.references = list(references or [])


class KeyLockedError(AudienceError):
    code = "key_locked"
    resync = True
    default_message = "This identity key is locked. Request a revert before editing it."


class DuplicateRevertRequestError(AudienceError):
    code = "duplicate_revert_request"
    resync = True
    default_message = "A revert request of this type is already pending."


class InvalidTransitionError(AudienceError):
    code = "invalid_transition"
    resync = True
    default_message = "This change is not allowed in the current key state."


class StalePairError(AudienceError):
    code = "stale_pair"
    resync = True
    default_message = "This duplicate pair was already resolved. Reload the queue."


class AggregationUnavailableError(AudienceError):
    code = "aggregation_unavailable"
    default_message = "count unavailable"


class EvaluatorUnavailableError(AudienceError):
    """The external predicate evaluator could not answer."""

    code = "evaluator_unavailable"
    default_message = "Contact evaluator is unavailable"


ERRORS_BY_CODE: dict[str, type[AudienceError]] = {
    cls.code: cls
    for cls in (
        EmptySegmentError,
        StaleReferenceError,
        KeyLockedError,
        DuplicateRevertRequestError,
        InvalidTransitionError,
        StalePairError,
        AggregationUnavailableError,
        EvaluatorUnavailableError,
    )
}
