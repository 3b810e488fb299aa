from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..core.enums import CompanyRole


@dataclass(frozen=True)
class User:
    """Login account scoped to one company.

    Note: Plain data object (no DB access code here).
    """

    user_id: int
    company_id: int
    username: str
    full_name: str
    password_hash: str
    company_role: CompanyRole
    employee_id: Optional[int] = None
    is_active: bool = True
