from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from ..core.constants import MATERIAL_REQUEST_MAX_STEPS
from ..core.enums import MaterialRequestStatus, PostingStatus, ProcessingStatus, StepStatus
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone, in_clause
from .calculations import NormalizedItem
from .model import ApprovalFlow, ApprovalStep, FlowApprover, MaterialRequest, MaterialRequestItem
from .repository import ApprovalFlowRepository, MaterialRequestRepository

_SELECTED_COLUMNS = tuple(f"selected_step{n}_approver_id" for n in range(1, MATERIAL_REQUEST_MAX_STEPS + 1))

_WRITABLE = (
    "series",
    "request_type",
    "department_id",
    "date_prepared",
    "date_required",
    "purpose",
    "remarks",
    "freight",
    "discount",
    "subtotal",
    "grand_total",
    "status",
    "current_step",
    "required_steps",
    "submitted_at",
    "approved_at",
    "rejected_at",
    "rejection_reason",
    "cancelled_at",
    "cancellation_reason",
    "processing_status",
    "processing_started_at",
    "processing_completed_at",
    "processing_remarks",
    "purchase_order_number",
    "supplier_name",
    "processed_by",
    "posting_status",
    "posting_reference",
    "posting_remarks",
    "posted_at",
    "posted_by",
)


def _dec(value: Any) -> Decimal:
    return Decimal(str(value if value is not None else 0))


def _column_values(fields: Mapping[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key in _WRITABLE:
        if key in fields:
            value = fields[key]
            out[key] = value.value if isinstance(value, Enum) else value
    if "selected_approvers" in fields:
        for column, value in zip(_SELECTED_COLUMNS, fields["selected_approvers"]):
            out[column] = value
    return out


def _to_item(r: dict) -> MaterialRequestItem:
    return MaterialRequestItem(
        item_id=int(r["item_id"]),
        request_id=int(r["request_id"]),
        line_number=int(r["line_number"]),
        description=r["description"],
        uom=r["uom"],
        quantity=_dec(r["quantity"]),
        unit_price=_dec(r["unit_price"]),
        line_total=_dec(r["line_total"]),
        served_quantity=_dec(r["served_quantity"]),
        item_code=r.get("item_code"),
        remarks=r.get("remarks"),
    )


def _to_step(r: dict) -> ApprovalStep:
    return ApprovalStep(
        step_id=int(r["step_id"]),
        request_id=int(r["request_id"]),
        step_number=int(r["step_number"]),
        step_name=r["step_name"],
        approver_user_id=int(r["approver_user_id"]),
        status=StepStatus(r["status"]),
        acted_at=r.get("acted_at"),
        remarks=r.get("remarks"),
    )


def _to_request(r: dict, items: Sequence[MaterialRequestItem], steps: Sequence[ApprovalStep]) -> MaterialRequest:
    return MaterialRequest(
        request_id=int(r["request_id"]),
        company_id=int(r["company_id"]),
        request_number=r["request_number"],
        series=r["series"],
        request_type=r["request_type"],
        requester_employee_id=int(r["requester_employee_id"]),
        requester_user_id=int(r["requester_user_id"]),
        department_id=int(r["department_id"]),
        date_prepared=r["date_prepared"],
        date_required=r["date_required"],
        status=MaterialRequestStatus(r["status"]),
        freight=_dec(r["freight"]),
        discount=_dec(r["discount"]),
        subtotal=_dec(r["subtotal"]),
        grand_total=_dec(r["grand_total"]),
        purpose=r.get("purpose"),
        remarks=r.get("remarks"),
        selected_approvers=tuple(r.get(c) for c in _SELECTED_COLUMNS),
        current_step=r.get("current_step"),
        required_steps=r.get("required_steps"),
        submitted_at=r.get("submitted_at"),
        approved_at=r.get("approved_at"),
        rejected_at=r.get("rejected_at"),
        rejection_reason=r.get("rejection_reason"),
        cancelled_at=r.get("cancelled_at"),
        cancellation_reason=r.get("cancellation_reason"),
        processing_status=ProcessingStatus(r["processing_status"]) if r.get("processing_status") else None,
        processing_started_at=r.get("processing_started_at"),
        processing_completed_at=r.get("processing_completed_at"),
        processing_remarks=r.get("processing_remarks"),
        purchase_order_number=r.get("purchase_order_number"),
        supplier_name=r.get("supplier_name"),
        processed_by=r.get("processed_by"),
        posting_status=PostingStatus(r["posting_status"]) if r.get("posting_status") else None,
        posting_reference=r.get("posting_reference"),
        posting_remarks=r.get("posting_remarks"),
        posted_at=r.get("posted_at"),
        posted_by=r.get("posted_by"),
        items=tuple(items),
        steps=tuple(steps),
    )


def _list_row(r: dict) -> dict:
    return {
        "request_id": int(r["request_id"]),
        "request_number": r["request_number"],
        "requester_name": f"{r['last_name']}, {r['first_name']}",
        "department_name": r.get("department_name") or "-",
        "date_prepared": r["date_prepared"].strftime("%Y-%m-%d"),
        "date_required": r["date_required"].strftime("%Y-%m-%d"),
        "grand_total": _dec(r["grand_total"]),
        "status": r["status"],
        "current_step": r.get("current_step"),
        "required_steps": r.get("required_steps"),
        "processing_status": r.get("processing_status"),
        "posting_status": r.get("posting_status"),
        "created_at": r["created_at"].strftime("%Y-%m-%d %H:%M") if r.get("created_at") else "-",
    }


_LIST_SELECT = """
    SELECT m.request_id, m.request_number, m.date_prepared, m.date_required, m.grand_total, m.status,
           m.current_step, m.required_steps, m.processing_status, m.posting_status, m.created_at,
           e.first_name, e.last_name, d.name AS department_name
    FROM material_requests m
    JOIN employees e ON e.employee_id = m.requester_employee_id
    LEFT JOIN departments d ON d.department_id = m.department_id
"""


class MySQLApprovalFlowRepository(ApprovalFlowRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def _load(self, cur, rows: List[dict]) -> List[ApprovalFlow]:
        if not rows:
            return []
        ids = [int(r["flow_id"]) for r in rows]
        cur.execute(
            f"""
            SELECT flow_id, step_number, step_name, approver_user_id
            FROM department_flow_approvers
            WHERE flow_id IN ({in_clause(ids)})
            ORDER BY step_number, approver_user_id
            """,
            tuple(ids),
        )
        by_flow: Dict[int, List[FlowApprover]] = {}
        for a in fetchall(cur):
            by_flow.setdefault(int(a["flow_id"]), []).append(
                FlowApprover(int(a["step_number"]), a["step_name"], int(a["approver_user_id"]))
            )
        return [
            ApprovalFlow(
                flow_id=int(r["flow_id"]),
                company_id=int(r["company_id"]),
                department_id=int(r["department_id"]),
                required_steps=int(r["required_steps"]),
                is_active=bool(r["is_active"]),
                approvers=tuple(by_flow.get(int(r["flow_id"]), [])),
            )
            for r in rows
        ]

    def get_for_department(self, *, company_id: int, department_id: int) -> Optional[ApprovalFlow]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT flow_id, company_id, department_id, required_steps, is_active
                FROM department_approval_flows WHERE company_id=%s AND department_id=%s
                """,
                (int(company_id), int(department_id)),
            )
            flows = self._load(cur, fetchall(cur))
            return flows[0] if flows else None

    def list_for_company(self, company_id: int) -> Sequence[ApprovalFlow]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT flow_id, company_id, department_id, required_steps, is_active
                FROM department_approval_flows WHERE company_id=%s ORDER BY department_id
                """,
                (int(company_id),),
            )
            return self._load(cur, fetchall(cur))

    def upsert(
        self,
        *,
        company_id: int,
        department_id: int,
        required_steps: int,
        is_active: bool,
        approvers: Sequence[FlowApprover],
    ) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO department_approval_flows (company_id, department_id, required_steps, is_active)
                VALUES (%s, %s, %s, %s)
                ON DUPLICATE KEY UPDATE
                    flow_id = LAST_INSERT_ID(flow_id),
                    required_steps = VALUES(required_steps),
                    is_active = VALUES(is_active)
                """,
                (int(company_id), int(department_id), int(required_steps), 1 if is_active else 0),
            )
            flow_id = int(cur.lastrowid)
            cur.execute("DELETE FROM department_flow_approvers WHERE flow_id=%s", (flow_id,))
            cur.executemany(
                """
                INSERT INTO department_flow_approvers (flow_id, step_number, step_name, approver_user_id)
                VALUES (%s, %s, %s, %s)
                """,
                [(flow_id, a.step_number, a.step_name, a.approver_user_id) for a in approvers],
            )
            return flow_id

    def delete(self, flow_id: int) -> None:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("DELETE FROM department_flow_approvers WHERE flow_id=%s", (int(flow_id),))
            cur.execute("DELETE FROM department_approval_flows WHERE flow_id=%s", (int(flow_id),))


class MySQLMaterialRequestRepository(MaterialRequestRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def latest_number(self, *, company_id: int, prefix: str) -> Optional[str]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT request_number FROM material_requests
                WHERE company_id=%s AND request_number LIKE %s
                ORDER BY request_number DESC LIMIT 1
                """,
                (int(company_id), prefix + "%"),
            )
            r = fetchone(cur)
            return r["request_number"] if r else None

    def number_exists(self, request_number: str) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT 1 AS found FROM material_requests WHERE request_number=%s", (request_number,))
            return fetchone(cur) is not None

    def _insert_items(self, cur, request_id: int, items: Sequence[NormalizedItem]) -> None:
        cur.executemany(
            """
            INSERT INTO material_request_items (
                request_id, line_number, item_code, description, uom, quantity, unit_price, line_total, remarks
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            [
                (
                    request_id,
                    i.line_number,
                    i.item_code,
                    i.description,
                    i.uom,
                    i.quantity,
                    i.unit_price,
                    i.line_total,
                    i.remarks,
                )
                for i in items
            ],
        )

    def create(self, *, request: MaterialRequest, items: Sequence[NormalizedItem]) -> int:
        values = _column_values(
            {
                **{k: getattr(request, k) for k in _WRITABLE},
                "selected_approvers": request.selected_approvers,
            }
        )
        values.update(
            company_id=request.company_id,
            request_number=request.request_number,
            requester_employee_id=request.requester_employee_id,
            requester_user_id=request.requester_user_id,
        )
        cols = list(values)
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"INSERT INTO material_requests ({', '.join(cols)}) VALUES ({in_clause(cols)})",
                tuple(values[c] for c in cols),
            )
            request_id = int(cur.lastrowid)
            self._insert_items(cur, request_id, items)
            return request_id

    def get(self, *, company_id: int, request_id: int, for_update: bool = False) -> Optional[MaterialRequest]:
        lock = " FOR UPDATE" if for_update else ""
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "SELECT * FROM material_requests WHERE company_id=%s AND request_id=%s" + lock,
                (int(company_id), int(request_id)),
            )
            r = fetchone(cur)
            if not r:
                return None
            cur.execute(
                "SELECT * FROM material_request_items WHERE request_id=%s ORDER BY line_number", (int(request_id),)
            )
            items = [_to_item(i) for i in fetchall(cur)]
            cur.execute(
                "SELECT * FROM material_request_approval_steps WHERE request_id=%s ORDER BY step_number, step_id",
                (int(request_id),),
            )
            steps = [_to_step(s) for s in fetchall(cur)]
            return _to_request(r, items, steps)

    def update(self, *, request_id: int, fields: Mapping[str, Any]) -> None:
        values = _column_values(fields)
        if not values:
            return
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"UPDATE material_requests SET {', '.join(f'{c}=%s' for c in values)} WHERE request_id=%s",
                tuple(list(values.values()) + [int(request_id)]),
            )

    def replace_items(self, *, request_id: int, items: Sequence[NormalizedItem]) -> None:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("DELETE FROM material_request_items WHERE request_id=%s", (int(request_id),))
            self._insert_items(cur, int(request_id), items)

    def delete(self, request_id: int) -> None:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("DELETE FROM material_requests WHERE request_id=%s", (int(request_id),))

    def create_steps(self, *, request_id: int, approvers: Iterable[FlowApprover]) -> None:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("DELETE FROM material_request_approval_steps WHERE request_id=%s", (int(request_id),))
            cur.executemany(
                """
                INSERT INTO material_request_approval_steps (request_id, step_number, step_name, approver_user_id, status)
                VALUES (%s, %s, %s, %s, %s)
                """,
                [
                    (int(request_id), a.step_number, a.step_name, a.approver_user_id, StepStatus.PENDING.value)
                    for a in approvers
                ],
            )

    def decide_step(self, *, step_id: int, status: StepStatus, acted_at: datetime, remarks: Optional[str]) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                UPDATE material_request_approval_steps SET status=%s, acted_at=%s, remarks=%s
                WHERE step_id=%s AND status=%s
                """,
                (status.value, acted_at, remarks, int(step_id), StepStatus.PENDING.value),
            )
            return cur.rowcount == 1

    def skip_pending_steps(
        self,
        *,
        request_id: int,
        acted_at: datetime,
        remarks: str,
        step_number: Optional[int] = None,
        from_step: Optional[int] = None,
    ) -> int:
        sql = """
            UPDATE material_request_approval_steps SET status=%s, acted_at=%s, remarks=%s
            WHERE request_id=%s AND status=%s
        """
        params: list[object] = [StepStatus.SKIPPED.value, acted_at, remarks, int(request_id), StepStatus.PENDING.value]
        if step_number is not None:
            sql += " AND step_number=%s"
            params.append(int(step_number))
        if from_step is not None:
            sql += " AND step_number>=%s"
            params.append(int(from_step))
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(sql, tuple(params))
            return int(cur.rowcount or 0)

    def record_serve_batch(
        self,
        *,
        request_id: int,
        purchase_order_number: str,
        supplier_name: str,
        served_by: int,
        served_at: datetime,
        notes: Optional[str],
        quantities: Mapping[int, Decimal],
    ) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO material_request_serve_batches
                    (request_id, purchase_order_number, supplier_name, served_by, served_at, notes)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                (int(request_id), purchase_order_number, supplier_name, int(served_by), served_at, notes),
            )
            batch_id = int(cur.lastrowid)
            cur.executemany(
                "INSERT INTO material_request_serve_batch_items (batch_id, item_id, quantity) VALUES (%s, %s, %s)",
                [(batch_id, int(item_id), qty) for item_id, qty in quantities.items()],
            )
            cur.executemany(
                """
                UPDATE material_request_items SET served_quantity = served_quantity + %s
                WHERE item_id=%s AND request_id=%s
                """,
                [(qty, int(item_id), int(request_id)) for item_id, qty in quantities.items()],
            )
            return batch_id

    def list_for_requester(self, *, company_id: int, user_id: int, limit: int = 200) -> Sequence[dict]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                _LIST_SELECT + " WHERE m.company_id=%s AND m.requester_user_id=%s ORDER BY m.created_at DESC LIMIT %s",
                (int(company_id), int(user_id), int(limit)),
            )
            return [_list_row(r) for r in fetchall(cur)]

    def list_pending_for_approver(self, *, company_id: int, user_id: int, limit: int = 200) -> Sequence[dict]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                _LIST_SELECT
                + """
                JOIN material_request_approval_steps s
                  ON s.request_id = m.request_id AND s.step_number = m.current_step
                WHERE m.company_id=%s AND m.status=%s AND s.approver_user_id=%s AND s.status=%s
                ORDER BY m.submitted_at ASC LIMIT %s
                """,
                (
                    int(company_id),
                    MaterialRequestStatus.PENDING_APPROVAL.value,
                    int(user_id),
                    StepStatus.PENDING.value,
                    int(limit),
                ),
            )
            return [_list_row(r) for r in fetchall(cur)]

    def list_processing(
        self, *, company_id: int, statuses: Sequence[ProcessingStatus], limit: int = 200
    ) -> Sequence[dict]:
        if not statuses:
            return []
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                _LIST_SELECT
                + f"""
                WHERE m.company_id=%s AND m.status=%s AND m.processing_status IN ({in_clause(statuses)})
                ORDER BY m.approved_at ASC LIMIT %s
                """,
                tuple(
                    [int(company_id), MaterialRequestStatus.APPROVED.value]
                    + [s.value for s in statuses]
                    + [int(limit)]
                ),
            )
            return [_list_row(r) for r in fetchall(cur)]

    def list_posting(self, *, company_id: int, status: PostingStatus, limit: int = 200) -> Sequence[dict]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                _LIST_SELECT
                + """
                WHERE m.company_id=%s AND m.processing_status=%s AND m.posting_status=%s
                ORDER BY m.processing_completed_at ASC LIMIT %s
                """,
                (int(company_id), ProcessingStatus.COMPLETED.value, status.value, int(limit)),
            )
            return [_list_row(r) for r in fetchall(cur)]
