from __future__ import annotations

from enum import Enum


class CompanyRole(str, Enum):
    """Company-scoped role used for authorization."""

    COMPANY_ADMIN = "COMPANY_ADMIN"
    HR_ADMIN = "HR_ADMIN"
    PAYROLL_ADMIN = "PAYROLL_ADMIN"
    APPROVER = "APPROVER"
    EMPLOYEE = "EMPLOYEE"


HR_APPROVER_ROLES = frozenset({CompanyRole.COMPANY_ADMIN, CompanyRole.HR_ADMIN, CompanyRole.PAYROLL_ADMIN})
EMPLOYEE_MANAGER_ROLES = frozenset({CompanyRole.COMPANY_ADMIN, CompanyRole.HR_ADMIN})
PAYROLL_ROLES = frozenset({CompanyRole.COMPANY_ADMIN, CompanyRole.PAYROLL_ADMIN})
DTR_EDITOR_ROLES = frozenset({CompanyRole.COMPANY_ADMIN, CompanyRole.HR_ADMIN})
PURCHASER_ROLES = frozenset({CompanyRole.COMPANY_ADMIN, CompanyRole.HR_ADMIN, CompanyRole.APPROVER})


class AttendanceStatus(str, Enum):
    """Daily time record status stored in the database."""

    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    ON_LEAVE = "ON_LEAVE"
    REST_DAY = "REST_DAY"
    HOLIDAY = "HOLIDAY"


class DayFraction(str, Enum):
    """Portion of a day charged when HR marks a DTR row ON_LEAVE."""

    FULL = "FULL"
    HALF = "HALF"


class RequestStatus(str, Enum):
    """Two-step approval lifecycle shared by leave and overtime requests."""

    PENDING = "PENDING"
    SUPERVISOR_APPROVED = "SUPERVISOR_APPROVED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class LeaveTransactionType(str, Enum):
    ACCRUAL = "ACCRUAL"
    USAGE = "USAGE"
    ADJUSTMENT = "ADJUSTMENT"
    CARRY_OVER = "CARRY_OVER"


class ProrationMethod(str, Enum):
    FULL = "FULL"
    PRORATED_MONTH = "PRORATED_MONTH"
    PRORATED_DAY = "PRORATED_DAY"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class MaterialRequestStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class ProcessingStatus(str, Enum):
    PENDING_PURCHASER = "PENDING_PURCHASER"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class PostingStatus(str, Enum):
    PENDING_POSTING = "PENDING_POSTING"
    POSTED = "POSTED"


class StepStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SKIPPED = "SKIPPED"


class PayFrequency(str, Enum):
    SEMI_MONTHLY = "SEMI_MONTHLY"
    MONTHLY = "MONTHLY"


class PayPeriodStatus(str, Enum):
    OPEN = "OPEN"
    LOCKED = "LOCKED"


class PayrollRunType(str, Enum):
    REGULAR = "REGULAR"
    THIRTEENTH_MONTH = "THIRTEENTH_MONTH"
    TRIAL_RUN = "TRIAL_RUN"


class PayrollRunStatus(str, Enum):
    DRAFT = "DRAFT"
    VALIDATING = "VALIDATING"
    PROCESSING = "PROCESSING"
    COMPUTED = "COMPUTED"
    FOR_REVIEW = "FOR_REVIEW"
    APPROVED = "APPROVED"
    FOR_PAYMENT = "FOR_PAYMENT"
    PAID = "PAID"


ACTIVE_RUN_STATUSES = frozenset(
    {
        PayrollRunStatus.DRAFT,
        PayrollRunStatus.VALIDATING,
        PayrollRunStatus.PROCESSING,
        PayrollRunStatus.COMPUTED,
        PayrollRunStatus.FOR_REVIEW,
        PayrollRunStatus.APPROVED,
        PayrollRunStatus.FOR_PAYMENT,
    }
)


class ProcessStepName(str, Enum):
    CREATE_RUN = "CREATE_RUN"
    VALIDATE_DATA = "VALIDATE_DATA"
    CALCULATE_PAYROLL = "CALCULATE_PAYROLL"
    REVIEW_ADJUST = "REVIEW_ADJUST"
    GENERATE_PAYSLIPS = "GENERATE_PAYSLIPS"
    CLOSE_RUN = "CLOSE_RUN"


class ProcessStepStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class DeductionTiming(str, Enum):
    FIRST_HALF = "FIRST_HALF"
    SECOND_HALF = "SECOND_HALF"
    EVERY_PERIOD = "EVERY_PERIOD"
    DISABLED = "DISABLED"


class DeductionBasis(str, Enum):
    PER_MINUTE = "PER_MINUTE"
    PER_15_MINS = "PER_15_MINS"
    PER_30_MINS = "PER_30_MINS"
    PER_HOUR = "PER_HOUR"
    DAILY_RATE = "DAILY_RATE"


class HolidayType(str, Enum):
    REGULAR = "REGULAR"
    SPECIAL_NON_WORKING = "SPECIAL_NON_WORKING"
    SPECIAL_WORKING = "SPECIAL_WORKING"


class LineCategory(str, Enum):
    EARNING = "EARNING"
    DEDUCTION = "DEDUCTION"
