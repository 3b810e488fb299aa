from __future__ import annotations

import random
from datetime import date
from typing import Callable, Optional

from ..core.constants import REQUEST_NUMBER_ATTEMPTS
from ..core.exceptions import DomainError


def generate_request_number(
    prefix: str,
    *,
    exists: Callable[[str], bool],
    today: date,
    rng: Optional[random.Random] = None,
    attempts: int = REQUEST_NUMBER_ATTEMPTS,
) -> str:
    """``{prefix}-YYYYMMDD-NNNNNN`` with a random suffix, retried on collision."""

    rng = rng or random.Random()
    stamp = today.strftime("%Y%m%d")
    for _ in range(attempts):
        candidate = f"{prefix}-{stamp}-{rng.randrange(1_000_000):06d}"
        if not exists(candidate):
            return candidate
    raise DomainError("Unable to generate a unique request number. Please try again.")
