"""ORM model exports for convenient imports elsewhere in the app."""

from audience.models.base import Base
from audience.models.audit_log import AuditLog
from audience.models.contact_field import ContactField
from audience.models.duplicate_pair import ContactDuplicatePair
from audience.models.idempotency_key import IdempotencyKey
from audience.models.identity_key import CompanyIdentityKey, IdentityKeyRevertRequest
from audience.models.segment import Segment

__all__ = [
    "Base",
    "AuditLog",
    "ContactField",
    "ContactDuplicatePair",
    "IdempotencyKey",
    "CompanyIdentityKey",
    "IdentityKeyRevertRequest",
    "Segment",
]
