from __future__ import annotations

from dataclasses import dataclass

from .attendance.factory import DtrStrategyFactory
from .attendance.mysql_attendance_repository import MySQLDtrRepository, MySQLWorkScheduleRepository
from .attendance.service import AttendanceService
from .audit.mysql_audit_repository import MySQLAuditRepository
from .audit.service import AuditService
from .database.connection import DBConfig, DatabaseConnection
from .employees.bulk_csv import EmployeeBulkUpdateService
from .employees.mysql_employee_repository import MySQLDepartmentRepository, MySQLEmployeeRepository
from .employees.service import EmployeeService
from .leave.balances import LeaveBalanceService
from .leave.ledger import LeaveLedger
from .leave.mysql_leave_repository import (
    MySQLLeaveBalanceRepository,
    MySQLLeaveRequestRepository,
    MySQLLeaveTypeRepository,
)
from .leave.service import LeaveRequestService
from .material_requests.flow import ApprovalFlowService
from .material_requests.mysql_material_request_repository import (
    MySQLApprovalFlowRepository,
    MySQLMaterialRequestRepository,
)
from .material_requests.processing import MaterialRequestProcessingService
from .material_requests.service import MaterialRequestService
from .overtime.cto import CtoConverter
from .overtime.mysql_overtime_repository import MySQLOvertimeRequestRepository
from .overtime.service import OvertimeService
from .payroll.calculator.factory import PayrollCalculatorFactory
from .payroll.mysql_payroll_repository import (
    MySQLPayPeriodRepository,
    MySQLPayrollRunRepository,
    MySQLPayrollSettingsRepository,
    MySQLPayslipRepository,
)
from .payroll.service import PayrollService
from .reports.service import ReportService
from .users.mysql_user_repository import MySQLUserRepository
from .users.service import AuthService, UserService


@dataclass(frozen=True)
class Container:
    conn: DatabaseConnection

    audit_service: AuditService
    auth_service: AuthService
    user_service: UserService
    employee_service: EmployeeService
    employee_bulk_service: EmployeeBulkUpdateService
    attendance_service: AttendanceService
    leave_request_service: LeaveRequestService
    leave_balance_service: LeaveBalanceService
    overtime_service: OvertimeService
    approval_flow_service: ApprovalFlowService
    material_request_service: MaterialRequestService
    material_request_processing_service: MaterialRequestProcessingService
    payroll_service: PayrollService
    report_service: ReportService


def build_container(*, db_config: dict) -> Container:
    config = DBConfig(
        host=str(db_config["host"]),
        port=int(db_config.get("port", 3306)),
        user=str(db_config["user"]),
        password=str(db_config["password"]),
        database=str(db_config["database"]),
    )
    conn = DatabaseConnection.get_instance(config)
    tx = conn.transaction

    users_repo = MySQLUserRepository(conn)
    employees_repo = MySQLEmployeeRepository(conn)
    departments_repo = MySQLDepartmentRepository(conn)
    dtr_repo = MySQLDtrRepository(conn)
    schedules_repo = MySQLWorkScheduleRepository(conn)
    leave_types_repo = MySQLLeaveTypeRepository(conn)
    leave_balances_repo = MySQLLeaveBalanceRepository(conn)
    leave_requests_repo = MySQLLeaveRequestRepository(conn)
    overtime_repo = MySQLOvertimeRequestRepository(conn)
    flows_repo = MySQLApprovalFlowRepository(conn)
    material_requests_repo = MySQLMaterialRequestRepository(conn)
    payslips_repo = MySQLPayslipRepository(conn)

    audit_service = AuditService(MySQLAuditRepository(conn))
    ledger = LeaveLedger(leave_balances_repo)
    employee_service = EmployeeService(employees_repo, departments_repo, audit_service, transaction=tx)

    return Container(
        conn=conn,
        audit_service=audit_service,
        auth_service=AuthService(users_repo),
        user_service=UserService(users_repo),
        employee_service=employee_service,
        employee_bulk_service=EmployeeBulkUpdateService(employees_repo, departments_repo, employee_service),
        attendance_service=AttendanceService(
            dtr_repo,
            employees_repo,
            schedules_repo,
            leave_types_repo,
            ledger,
            audit_service,
            strategy_factory=DtrStrategyFactory(),
            transaction=tx,
        ),
        leave_request_service=LeaveRequestService(
            leave_requests_repo, leave_types_repo, employees_repo, ledger, audit_service, transaction=tx
        ),
        leave_balance_service=LeaveBalanceService(
            leave_balances_repo, leave_types_repo, employees_repo, departments_repo, audit_service, transaction=tx
        ),
        overtime_service=OvertimeService(
            overtime_repo,
            employees_repo,
            CtoConverter(employees_repo, leave_types_repo, leave_balances_repo, ledger),
            audit_service,
            transaction=tx,
        ),
        approval_flow_service=ApprovalFlowService(flows_repo, departments_repo, users_repo, audit_service, transaction=tx),
        material_request_service=MaterialRequestService(
            material_requests_repo, flows_repo, employees_repo, departments_repo, users_repo, audit_service, transaction=tx
        ),
        material_request_processing_service=MaterialRequestProcessingService(
            material_requests_repo, audit_service, transaction=tx
        ),
        payroll_service=PayrollService(
            periods=MySQLPayPeriodRepository(conn),
            runs=MySQLPayrollRunRepository(conn),
            payslips=payslips_repo,
            settings=MySQLPayrollSettingsRepository(conn),
            employees=employees_repo,
            schedules=schedules_repo,
            dtrs=dtr_repo,
            leave_types=leave_types_repo,
            leave_requests=leave_requests_repo,
            overtime_requests=overtime_repo,
            audit=audit_service,
            transaction=tx,
            calculators=PayrollCalculatorFactory(),
        ),
        report_service=ReportService(payslips_repo),
    )
