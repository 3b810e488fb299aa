from __future__ import annotations

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional

from ..core.context import Actor
from ..core.enums import AuditAction, CompanyRole
from ..core.exceptions import AuthorizationError
from .model import AuditChange, AuditRow
from .repository import AuditRepository

logger = logging.getLogger(__name__)


def stringify_audit_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (str, int, float, Decimal)):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return json.dumps(value, default=str, sort_keys=True)


class AuditService:
    """Writes field-level audit rows inside the caller's transaction."""

    def __init__(self, audit: AuditRepository):
        self._audit = audit

    def record(
        self,
        *,
        actor: Actor,
        table_name: str,
        record_id: Any,
        action: AuditAction,
        reason: Optional[str] = None,
        changes: Iterable[AuditChange] = (),
    ) -> int:
        base = dict(
            company_id=actor.company_id,
            table_name=table_name,
            record_id=str(record_id),
            action=action,
            user_id=actor.user_id,
            reason=reason,
            ip_address=actor.ip_address,
            user_agent=actor.user_agent,
        )

        rows = [
            AuditRow(
                field_name=c.field_name,
                old_value=stringify_audit_value(c.old_value),
                new_value=stringify_audit_value(c.new_value),
                **base,
            )
            for c in changes
        ]
        if not rows:
            rows = [AuditRow(field_name=None, old_value=None, new_value=None, **base)]

        self._audit.insert_rows(rows)
        logger.debug("audit %s %s/%s rows=%d", action.value, table_name, record_id, len(rows))
        return len(rows)

    def list_logs(self, *, actor: Actor, table_name: Optional[str] = None, record_id: Optional[str] = None, limit: int = 200):
        if actor.company_role != CompanyRole.COMPANY_ADMIN:
            raise AuthorizationError("Only Company Admin can view audit logs.")
        return self._audit.list_logs(company_id=actor.company_id, table_name=table_name, record_id=record_id, limit=limit)
