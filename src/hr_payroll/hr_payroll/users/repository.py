from __future__ import annotations

from typing import Optional, Protocol, Sequence

from ..core.enums import CompanyRole
from .model import User


class UserRepository(Protocol):
    """Repository interface for User.

    Note (DIP): services depend on this interface, not on a concrete database.
    """

    def get_by_id(self, user_id: int) -> Optional[User]:
        raise NotImplementedError

    def get_by_username(self, username: str) -> Optional[User]:
        raise NotImplementedError

    def get_by_employee_id(self, employee_id: int) -> Optional[User]:
        raise NotImplementedError

    def create_user(
        self,
        *,
        company_id: int,
        username: str,
        full_name: str,
        password_hash: str,
        company_role: CompanyRole,
        employee_id: Optional[int],
    ) -> int:
        raise NotImplementedError

    def set_active(self, user_id: int, *, is_active: bool) -> bool:
        raise NotImplementedError

    def list_admin_view(self, company_id: int) -> Sequence[dict]:
        raise NotImplementedError
