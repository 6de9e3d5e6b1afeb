"""
SQLite-based workflow storage for single-instance deployments.

Provides persistent storage of purchase requests and approver records,
with conditional updates expressed as ``UPDATE ... WHERE`` clauses.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Any, Iterator

from loguru import logger

from ...core.errors import ConditionalCheckFailed, NotFound, StorageError
from ...models.purchase_request import ApproverRecord, PurchaseRequest, RequestStatus
from .store_base import WorkflowStoreBase

REQUEST_COLUMNS = (
    "request_id", "title", "description", "amount", "requester_email",
    "approver_emails", "status", "pdf_evidence_key", "version",
    "created_at", "updated_at",
)

APPROVER_COLUMNS = (
    "request_id", "approver_email", "approver_token", "approval_order",
    "approval_status", "otp", "otp_expiration", "otp_attempts",
    "decision_date", "signature_name", "created_at", "updated_at",
)


def _to_db(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat(timespec="microseconds")
    if isinstance(value, list):
        return json.dumps(value)
    return value


class SQLiteWorkflowStore(WorkflowStoreBase):
    """
    SQLite-backed workflow store with persistent storage.

    Features:
    - Request + approvers written in a single transaction
    - Unique index on approver_token
    - Requester/created_at index for the requester listing
    - Conditional updates checked through the affected row count
    """

    def __init__(self, db_path: str = "purchase_approvals.db"):
        """
        Initialize store with database path.

        Args:
            db_path: Path to SQLite database file (default: purchase_approvals.db)
        """
        self.db_path = db_path
        self._init_database()

    def _init_database(self):
        """Create tables and indexes if they don't exist"""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS purchase_requests (
                    request_id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    amount REAL NOT NULL CHECK (amount > 0),
                    requester_email TEXT NOT NULL,
                    approver_emails TEXT NOT NULL,
                    status TEXT NOT NULL,
                    pdf_evidence_key TEXT,
                    version INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    CHECK (status IN ('PendingInitialApproval', 'PartiallyApproved',
                                      'FullyApproved', 'Rejected', 'CompletedPdfGenerated'))
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_requests_requester
                ON purchase_requests(requester_email, created_at)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_requests_status
                ON purchase_requests(status, created_at)
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS approvers (
                    request_id TEXT NOT NULL REFERENCES purchase_requests(request_id),
                    approver_email TEXT NOT NULL,
                    approver_token TEXT NOT NULL,
                    approval_order INTEGER NOT NULL,
                    approval_status TEXT NOT NULL,
                    otp TEXT,
                    otp_expiration TEXT,
                    otp_attempts INTEGER NOT NULL DEFAULT 0,
                    decision_date TEXT,
                    signature_name TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (request_id, approver_email),
                    CHECK (approval_status IN ('PendingOtp', 'PendingDecision', 'Signed', 'Rejected'))
                )
            """)
            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_approvers_token
                ON approvers(approver_token)
            """)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """One connection per unit of work: commit on success, roll back on error"""
        try:
            # Writers take the lock at BEGIN and wait out the busy timeout.
            conn = sqlite3.connect(self.db_path, timeout=30, isolation_level="IMMEDIATE")
        except sqlite3.Error as e:
            raise StorageError(f"Could not open database: {e}") from e
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("SQLite operation failed", db_path=self.db_path, error=str(e))
            raise StorageError(f"Database operation failed: {e}") from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _row_to_request(row: sqlite3.Row) -> PurchaseRequest:
        data = dict(row)
        data["approver_emails"] = json.loads(data["approver_emails"])
        return PurchaseRequest(**data)

    @staticmethod
    def _row_to_approver(row: sqlite3.Row) -> ApproverRecord:
        return ApproverRecord(**dict(row))

    def create_request(self, request: PurchaseRequest, approvers: list[ApproverRecord]) -> None:
        request_data = request.model_dump()
        with self._connect() as conn:
            try:
                conn.execute(
                    f"INSERT INTO purchase_requests ({', '.join(REQUEST_COLUMNS)}) "
                    f"VALUES ({', '.join('?' for _ in REQUEST_COLUMNS)})",
                    tuple(_to_db(request_data[c]) for c in REQUEST_COLUMNS),
                )
                conn.executemany(
                    f"INSERT INTO approvers ({', '.join(APPROVER_COLUMNS)}) "
                    f"VALUES ({', '.join('?' for _ in APPROVER_COLUMNS)})",
                    [
                        tuple(_to_db(data[c]) for c in APPROVER_COLUMNS)
                        for data in (a.model_dump() for a in approvers)
                    ],
                )
            except sqlite3.IntegrityError as e:
                raise StorageError(f"Duplicate purchase request or approver record: {e}") from e

    def get_request(self, request_id: str) -> PurchaseRequest | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {', '.join(REQUEST_COLUMNS)} FROM purchase_requests WHERE request_id = ?",
                (request_id,),
            ).fetchone()
        return self._row_to_request(row) if row else None

    def list_requests_by_requester(self, requester_email: str) -> list[PurchaseRequest]:
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {', '.join(REQUEST_COLUMNS)} FROM purchase_requests
                WHERE requester_email = ?
                ORDER BY created_at ASC, rowid ASC
                """,
                (requester_email,),
            ).fetchall()
        return [self._row_to_request(row) for row in rows]

    def list_requests_by_status(self, status: RequestStatus) -> list[PurchaseRequest]:
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {', '.join(REQUEST_COLUMNS)} FROM purchase_requests
                WHERE status = ?
                ORDER BY created_at ASC, rowid ASC
                """,
                (status.value,),
            ).fetchall()
        return [self._row_to_request(row) for row in rows]

    def update_request(
        self,
        request_id: str,
        changes: dict[str, Any],
        conditions: dict[str, Any],
    ) -> PurchaseRequest:
        self._check_columns(changes, conditions, REQUEST_COLUMNS)
        assignments = [f"{column} = ?" for column in changes] + ["version = version + 1"]
        where = ["request_id = ?"] + [f"{column} IS ?" for column in conditions]
        params = (
            [_to_db(v) for v in changes.values()]
            + [request_id]
            + [_to_db(v) for v in conditions.values()]
        )
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE purchase_requests SET {', '.join(assignments)} WHERE {' AND '.join(where)}",
                params,
            )
            if cursor.rowcount == 0:
                exists = conn.execute(
                    "SELECT 1 FROM purchase_requests WHERE request_id = ?", (request_id,)
                ).fetchone()
                if exists is None:
                    raise NotFound(f"Purchase request {request_id} not found")
                raise ConditionalCheckFailed(f"Conditional update of purchase request {request_id} failed")
            row = conn.execute(
                f"SELECT {', '.join(REQUEST_COLUMNS)} FROM purchase_requests WHERE request_id = ?",
                (request_id,),
            ).fetchone()
        return self._row_to_request(row)

    def get_approver_by_token(self, approver_token: str) -> ApproverRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {', '.join(APPROVER_COLUMNS)} FROM approvers WHERE approver_token = ?",
                (approver_token,),
            ).fetchone()
        return self._row_to_approver(row) if row else None

    def list_approvers(self, request_id: str) -> list[ApproverRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {', '.join(APPROVER_COLUMNS)} FROM approvers
                WHERE request_id = ?
                ORDER BY approval_order ASC
                """,
                (request_id,),
            ).fetchall()
        return [self._row_to_approver(row) for row in rows]

    def list_all_approvers(self) -> list[ApproverRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {', '.join(APPROVER_COLUMNS)} FROM approvers
                ORDER BY created_at ASC, approval_order ASC
                """
            ).fetchall()
        return [self._row_to_approver(row) for row in rows]

    def update_approver(
        self,
        request_id: str,
        approver_email: str,
        changes: dict[str, Any],
        conditions: dict[str, Any],
    ) -> ApproverRecord:
        self._check_columns(changes, conditions, APPROVER_COLUMNS)
        assignments = [f"{column} = ?" for column in changes]
        where = ["request_id = ?", "approver_email = ?"] + [f"{column} IS ?" for column in conditions]
        params = (
            [_to_db(v) for v in changes.values()]
            + [request_id, approver_email]
            + [_to_db(v) for v in conditions.values()]
        )
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE approvers SET {', '.join(assignments)} WHERE {' AND '.join(where)}",
                params,
            )
            if cursor.rowcount == 0:
                exists = conn.execute(
                    "SELECT 1 FROM approvers WHERE request_id = ? AND approver_email = ?",
                    (request_id, approver_email),
                ).fetchone()
                if exists is None:
                    raise NotFound(f"Approver {approver_email} not found on request {request_id}")
                raise ConditionalCheckFailed(
                    f"Conditional update of approver {approver_email} on request {request_id} failed"
                )
            row = conn.execute(
                f"SELECT {', '.join(APPROVER_COLUMNS)} FROM approvers "
                "WHERE request_id = ? AND approver_email = ?",
                (request_id, approver_email),
            ).fetchone()
        return self._row_to_approver(row)

    @staticmethod
    def _check_columns(changes: dict, conditions: dict, allowed: tuple[str, ...]) -> None:
        # Column names are interpolated into SQL, so only known ones pass.
        unknown = (set(changes) | set(conditions)) - set(allowed)
        if unknown:
            raise StorageError(f"Unknown column(s): {', '.join(sorted(unknown))}")
        if not changes:
            raise StorageError("Update without changes")
