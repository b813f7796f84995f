"""LTIPAPI MODELS MODULE"""

import datetime
from operator import attrgetter
import uuid

from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.types import CHAR, TypeDecorator


# Below is from https://docs.sqlalchemy.org/en/20/core/custom_types.html
# #backend-agnostic-guid-type
class GUID(TypeDecorator):
    """Platform-independent GUID type.

    Uses PostgreSQL's UUID type, otherwise uses CHAR(32), storing as
    stringified hex values.

    """

    impl = CHAR
    cache_ok = True

    _default_type = CHAR(32)
    _uuid_as_str = attrgetter("hex")

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(UUID())
        return dialect.type_descriptor(self._default_type)

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if not isinstance(value, uuid.UUID):
            value = uuid.UUID(str(value))
        if dialect.name == "postgresql":
            return value
        return self._uuid_as_str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if not isinstance(value, uuid.UUID):
            value = uuid.UUID(value)
        return value


def utcnow():
    """Naive UTC timestamp, matching the timezone-less DateTime columns."""
    return datetime.datetime.now(datetime.UTC).replace(tzinfo=None)


from ltipapi.models.account import Account  # noqa: E402
from ltipapi.models.audit_log import AuditLog  # noqa: E402
from ltipapi.models.refresh_token import RefreshToken  # noqa: E402

__all__ = [
    "Account",
    "AuditLog",
    "RefreshToken",
]
