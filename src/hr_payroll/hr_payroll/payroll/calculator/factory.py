from __future__ import annotations

from dataclasses import dataclass

from ...core.enums import PayrollRunType
from .base import PayrollCalculator
from .regular_calculator import RegularPayrollCalculator
from .thirteenth_month_calculator import ThirteenthMonthCalculator


@dataclass
class PayrollCalculatorFactory:
    """Factory Pattern: pick the calculator for a run type."""

    def for_run_type(self, run_type: PayrollRunType) -> PayrollCalculator:
        if run_type == PayrollRunType.THIRTEENTH_MONTH:
            return ThirteenthMonthCalculator()
        return RegularPayrollCalculator()
