from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from .enums import CompanyRole
from .exceptions import AuthorizationError


@dataclass(frozen=True)
class Actor:
    """Who is performing an action, resolved from the Flask session."""

    user_id: int
    company_id: int
    company_role: CompanyRole
    employee_id: Optional[int] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    def require_role(self, roles: Iterable[CompanyRole], message: str) -> None:
        if self.company_role not in set(roles):
            raise AuthorizationError(message)

    def require_employee(self, message: str = "Your account is not linked to an employee record.") -> int:
        if self.employee_id is None:
            raise AuthorizationError(message)
        return int(self.employee_id)
