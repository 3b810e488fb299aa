from __future__ import annotations

from typing import Optional, Protocol, Sequence

from .model import AuditRow


class AuditRepository(Protocol):
    def insert_rows(self, rows: Sequence[AuditRow]) -> None:
        raise NotImplementedError

    def list_logs(
        self,
        *,
        company_id: int,
        table_name: Optional[str] = None,
        record_id: Optional[str] = None,
        limit: int = 200,
    ) -> Sequence[dict]:
        raise NotImplementedError
