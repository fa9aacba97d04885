"""Service layer for the POS core.

Services own transaction boundaries. Each mutating method commits first, then
publishes domain events and records an audit entry, so subscribers and the
audit trail only ever see committed state.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Actor:
    """Who triggered an operation, for audit records and ledger rows."""

    user_id: Optional[str] = None
    ip_address: Optional[str] = None


SYSTEM = Actor(user_id="system")

__all__ = ["Actor", "SYSTEM"]
