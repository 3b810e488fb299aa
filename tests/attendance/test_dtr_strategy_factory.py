from datetime import datetime
from decimal import Decimal

from src.hr_payroll.hr_payroll.attendance.factory import DtrStrategyFactory
from src.hr_payroll.hr_payroll.attendance.night_diff import calculate_night_diff_hours
from src.hr_payroll.hr_payroll.attendance.strategies.late_strategy import LateStrategy
from src.hr_payroll.hr_payroll.attendance.strategies.normal_strategy import NormalStrategy
from src.hr_payroll.hr_payroll.attendance.strategies.overtime_strategy import OvertimeStrategy
from src.hr_payroll.hr_payroll.attendance.strategies.undertime_strategy import UndertimeStrategy

SCHEDULED_IN = datetime(2026, 10, 5, 8, 0)
SCHEDULED_OUT = datetime(2026, 10, 5, 17, 0)


def test_factory_time_in_within_grace_is_normal():
    factory = DtrStrategyFactory()
    strategy = factory.for_time_in(time_in=datetime(2026, 10, 5, 8, 4, 59), scheduled_in=SCHEDULED_IN, grace_minutes=5)

    assert isinstance(strategy, NormalStrategy)


def test_factory_time_in_after_grace_is_late():
    factory = DtrStrategyFactory()
    time_in = datetime(2026, 10, 5, 8, 20)
    strategy = factory.for_time_in(time_in=time_in, scheduled_in=SCHEDULED_IN, grace_minutes=5)

    assert isinstance(strategy, LateStrategy)
    # only minutes past the grace period count
    assert strategy.decide_time_in(time_in=time_in, scheduled_in=SCHEDULED_IN, grace_minutes=5).tardiness_mins == 15


def test_factory_without_schedule_is_normal():
    factory = DtrStrategyFactory()
    assert isinstance(factory.for_time_in(time_in=SCHEDULED_IN, scheduled_in=None, grace_minutes=0), NormalStrategy)
    assert isinstance(factory.for_time_out(time_out=SCHEDULED_OUT, scheduled_out=None), NormalStrategy)


def test_factory_time_out_early_and_late():
    factory = DtrStrategyFactory()
    early = datetime(2026, 10, 5, 16, 15)
    late = datetime(2026, 10, 5, 18, 30)

    undertime = factory.for_time_out(time_out=early, scheduled_out=SCHEDULED_OUT)
    overtime = factory.for_time_out(time_out=late, scheduled_out=SCHEDULED_OUT)

    assert isinstance(undertime, UndertimeStrategy)
    assert undertime.decide_time_out(time_out=early, scheduled_out=SCHEDULED_OUT).undertime_mins == 45
    assert isinstance(overtime, OvertimeStrategy)
    assert overtime.decide_time_out(time_out=late, scheduled_out=SCHEDULED_OUT).overtime_hours == Decimal("1.5")
    assert isinstance(factory.for_time_out(time_out=SCHEDULED_OUT, scheduled_out=SCHEDULED_OUT), NormalStrategy)


def test_night_diff_counts_hours_between_ten_and_six():
    assert calculate_night_diff_hours(datetime(2026, 10, 5, 8), datetime(2026, 10, 5, 17)) == 0
    assert calculate_night_diff_hours(datetime(2026, 10, 5, 20), datetime(2026, 10, 6, 5)) == 7
    assert calculate_night_diff_hours(datetime(2026, 10, 6, 4), datetime(2026, 10, 6, 8)) == 2
    assert calculate_night_diff_hours(datetime(2026, 10, 6, 8), datetime(2026, 10, 6, 8)) == 0
