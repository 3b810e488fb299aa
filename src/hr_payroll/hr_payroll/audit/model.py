from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from ..core.enums import AuditAction


@dataclass(frozen=True)
class AuditChange:
    field_name: str
    old_value: Any = None
    new_value: Any = None


@dataclass(frozen=True)
class AuditRow:
    """One persisted audit line (one per changed field)."""

    company_id: Optional[int]
    table_name: str
    record_id: str
    action: AuditAction
    user_id: Optional[int]
    reason: Optional[str]
    field_name: Optional[str]
    old_value: Optional[str]
    new_value: Optional[str]
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None
