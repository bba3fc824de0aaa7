"""
SQLite Storage Implementation

DESIGN DECISION: SQLite is the durable backend because:
1. Real transactions: BEGIN IMMEDIATE takes the write lock before the
   first read, so a balance read-modify-write cannot interleave with
   another writer (other processes included)
2. No server to run for a personal tracker
3. Exact money: amounts are stored as TEXT and read back as Decimal

TRADEOFFS:
- One writer at a time across the whole file (fine for personal use)
- The sqlite3 calls are synchronous; they are short and run on the
  event loop thread, serialized by an asyncio lock

The implementation follows the abstract interface, so the ledger does not
know which backend it is using.
"""

import asyncio
import json
import sqlite3
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import AsyncIterator, Optional, Union
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from balance_keeper.models.audit import AuditEvent, AuditEventType, AuditSeverity
from balance_keeper.models.ledger import (
    Account,
    AccountType,
    Direction,
    Frequency,
    RecordedStatus,
    RecurringTemplate,
    Transaction,
    TransactionFilters,
    TransactionStatus,
    utcnow,
)
from balance_keeper.services.storage.interface import (
    AccountStorageInterface,
    AuditStorageInterface,
    DuplicateError,
    LedgerStorage,
    RecordNotFoundError,
    StorageConnectionError,
    StorageError,
    TemplateStorageInterface,
    TransactionStorageInterface,
)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    name TEXT NOT NULL,
    account_type TEXT NOT NULL,
    opening_balance TEXT NOT NULL,
    current_balance TEXT NOT NULL,
    active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    account_id TEXT NOT NULL REFERENCES accounts(id),
    category_id TEXT,
    title TEXT NOT NULL,
    description TEXT,
    amount TEXT NOT NULL,
    direction TEXT NOT NULL,
    recorded_status TEXT NOT NULL,
    status TEXT NOT NULL,
    occurrence_date TEXT NOT NULL,
    due_date TEXT,
    is_installment INTEGER NOT NULL DEFAULT 0,
    installment_number INTEGER NOT NULL DEFAULT 1,
    total_installments INTEGER NOT NULL DEFAULT 1,
    parent_id TEXT,
    is_recurring INTEGER NOT NULL DEFAULT 0,
    frequency TEXT,
    recurrence_end_date TEXT,
    recurrence_origin_id TEXT,
    source_template_id TEXT,
    tags_json TEXT NOT NULL DEFAULT '[]',
    notes TEXT,
    attachment_url TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_transactions_owner_date
    ON transactions(owner_id, occurrence_date);
CREATE INDEX IF NOT EXISTS idx_transactions_owner_status
    ON transactions(owner_id, status);

CREATE TABLE IF NOT EXISTS recurring_templates (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    name TEXT NOT NULL,
    account_id TEXT NOT NULL REFERENCES accounts(id),
    category_id TEXT,
    title TEXT NOT NULL,
    description TEXT,
    amount TEXT NOT NULL,
    direction TEXT NOT NULL,
    frequency TEXT NOT NULL,
    start_date TEXT NOT NULL,
    end_date TEXT,
    next_occurrence TEXT NOT NULL,
    active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_events (
    event_id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    event_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    owner_id TEXT,
    entity_type TEXT,
    entity_id TEXT,
    description TEXT NOT NULL,
    details_json TEXT NOT NULL DEFAULT '{}',
    error_code TEXT,
    error_message TEXT
);
"""

TRANSACTION_COLUMNS = [
    "id",
    "owner_id",
    "account_id",
    "category_id",
    "title",
    "description",
    "amount",
    "direction",
    "recorded_status",
    "status",
    "occurrence_date",
    "due_date",
    "is_installment",
    "installment_number",
    "total_installments",
    "parent_id",
    "is_recurring",
    "frequency",
    "recurrence_end_date",
    "recurrence_origin_id",
    "source_template_id",
    "tags_json",
    "notes",
    "attachment_url",
    "created_at",
    "updated_at",
]

TEMPLATE_COLUMNS = [
    "id",
    "owner_id",
    "name",
    "account_id",
    "category_id",
    "title",
    "description",
    "amount",
    "direction",
    "frequency",
    "start_date",
    "end_date",
    "next_occurrence",
    "active",
    "created_at",
    "updated_at",
]

logger = structlog.get_logger(__name__)


def _text(value: Union[UUID, date, datetime, Decimal, None]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _uuid(value: Optional[str]) -> Optional[UUID]:
    return UUID(value) if value else None


def _date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _is_locked(error: BaseException) -> bool:
    return isinstance(error, sqlite3.OperationalError) and "locked" in str(error).lower()


class SQLiteConnection:
    """
    Owns the sqlite3 connection, the schema and the unit-of-work state.

    The connection runs in autocommit mode; atomic() issues BEGIN IMMEDIATE,
    COMMIT and ROLLBACK itself.
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        lock_retry_attempts: int = 5,
        busy_timeout_seconds: float = 5.0,
    ):
        self.db_path = str(db_path)
        self._lock_retry_attempts = lock_retry_attempts
        try:
            self.conn = sqlite3.connect(
                self.db_path,
                timeout=busy_timeout_seconds,
                isolation_level=None,
                check_same_thread=False,
            )
        except sqlite3.Error as e:
            raise StorageConnectionError(f"Failed to open SQLite database {self.db_path}: {e}")
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys=ON")
        if self.db_path != ":memory:":
            # WAL lets readers proceed while a writer holds the lock
            self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.executescript(SCHEMA_SQL)

        self._write_lock = asyncio.Lock()
        self._in_scope: ContextVar[Optional[UUID]] = ContextVar(
            f"sqlite_ledger_scope_{id(self)}", default=None
        )

    async def _begin(self) -> None:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._lock_retry_attempts),
            wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
            retry=retry_if_exception(_is_locked),
            reraise=True,
        ):
            with attempt:
                self.conn.execute("BEGIN IMMEDIATE")

    @asynccontextmanager
    async def atomic(self, owner_id: UUID) -> AsyncIterator[None]:
        active_owner = self._in_scope.get()
        if active_owner is not None:
            if active_owner != owner_id:
                raise StorageError(
                    f"Cannot open a unit of work for {owner_id} inside one for {active_owner}"
                )
            yield
            return

        async with self._write_lock:
            try:
                await self._begin()
            except sqlite3.OperationalError as e:
                raise StorageConnectionError(f"Could not lock database {self.db_path}: {e}")

            token = self._in_scope.set(owner_id)
            try:
                yield
            except BaseException:
                self.conn.rollback()
                logger.debug("unit_of_work_rolled_back", owner_id=str(owner_id))
                raise
            else:
                self.conn.commit()
            finally:
                self._in_scope.reset(token)

    @asynccontextmanager
    async def standalone(self) -> AsyncIterator[None]:
        """Keep a single autocommit write out of another task's open unit."""
        if self._in_scope.get() is not None:
            yield
            return
        async with self._write_lock:
            yield

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self.conn.execute(sql, params)
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e) or "PRIMARY KEY" in str(e):
                raise DuplicateError(str(e))
            raise StorageError(f"Integrity error: {e}")
        except sqlite3.Error as e:
            raise StorageError(f"SQLite error: {e}")

    def executemany(self, sql: str, rows: list[tuple]) -> None:
        try:
            self.conn.executemany(sql, rows)
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e) or "PRIMARY KEY" in str(e):
                raise DuplicateError(str(e))
            raise StorageError(f"Integrity error: {e}")
        except sqlite3.Error as e:
            raise StorageError(f"SQLite error: {e}")

    def close(self) -> None:
        self.conn.close()


class SQLiteAccountStorage(AccountStorageInterface):

    def __init__(self, db: SQLiteConnection):
        self._db = db

    def _row_to_account(self, row: sqlite3.Row) -> Account:
        return Account(
            id=UUID(row["id"]),
            owner_id=UUID(row["owner_id"]),
            name=row["name"],
            account_type=AccountType(row["account_type"]),
            opening_balance=Decimal(row["opening_balance"]),
            current_balance=Decimal(row["current_balance"]),
            active=bool(row["active"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    async def get_account(self, owner_id: UUID, account_id: UUID) -> Optional[Account]:
        row = self._db.execute(
            "SELECT * FROM accounts WHERE id = ? AND owner_id = ?",
            (str(account_id), str(owner_id)),
        ).fetchone()
        return self._row_to_account(row) if row else None

    async def save_account(self, account: Account) -> Account:
        self._db.execute(
            """
            INSERT INTO accounts (id, owner_id, name, account_type, opening_balance,
                                  current_balance, active, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(account.id),
                str(account.owner_id),
                account.name,
                account.account_type.value,
                str(account.opening_balance),
                str(account.current_balance),
                int(account.active),
                account.created_at.isoformat(),
                account.updated_at.isoformat(),
            ),
        )
        return account

    async def update_balance(
        self,
        owner_id: UUID,
        account_id: UUID,
        balance: Decimal,
    ) -> None:
        cursor = self._db.execute(
            "UPDATE accounts SET current_balance = ?, updated_at = ? WHERE id = ? AND owner_id = ?",
            (str(balance), utcnow().isoformat(), str(account_id), str(owner_id)),
        )
        if cursor.rowcount == 0:
            raise RecordNotFoundError(f"Account not found: {account_id}")

    async def list_accounts(
        self,
        owner_id: UUID,
        active_only: bool = True,
    ) -> list[Account]:
        sql = "SELECT * FROM accounts WHERE owner_id = ?"
        if active_only:
            sql += " AND active = 1"
        sql += " ORDER BY created_at ASC"
        rows = self._db.execute(sql, (str(owner_id),)).fetchall()
        return [self._row_to_account(row) for row in rows]


class SQLiteTransactionStorage(TransactionStorageInterface):

    def __init__(self, db: SQLiteConnection):
        self._db = db

    def _transaction_to_row(self, t: Transaction) -> tuple:
        return (
            str(t.id),
            str(t.owner_id),
            str(t.account_id),
            _text(t.category_id),
            t.title,
            t.description,
            str(t.amount),
            t.direction.value,
            t.recorded_status.value,
            t.status.value,
            t.occurrence_date.isoformat(),
            _text(t.due_date),
            int(t.is_installment),
            t.installment_number,
            t.total_installments,
            _text(t.parent_id),
            int(t.is_recurring),
            t.frequency.value if t.frequency else None,
            _text(t.recurrence_end_date),
            _text(t.recurrence_origin_id),
            _text(t.source_template_id),
            json.dumps(t.tags),
            t.notes,
            t.attachment_url,
            t.created_at.isoformat(),
            t.updated_at.isoformat(),
        )

    def _row_to_transaction(self, row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=UUID(row["id"]),
            owner_id=UUID(row["owner_id"]),
            account_id=UUID(row["account_id"]),
            category_id=_uuid(row["category_id"]),
            title=row["title"],
            description=row["description"],
            amount=Decimal(row["amount"]),
            direction=Direction(row["direction"]),
            recorded_status=RecordedStatus(row["recorded_status"]),
            status=TransactionStatus(row["status"]),
            occurrence_date=date.fromisoformat(row["occurrence_date"]),
            due_date=_date(row["due_date"]),
            is_installment=bool(row["is_installment"]),
            installment_number=row["installment_number"],
            total_installments=row["total_installments"],
            parent_id=_uuid(row["parent_id"]),
            is_recurring=bool(row["is_recurring"]),
            frequency=Frequency(row["frequency"]) if row["frequency"] else None,
            recurrence_end_date=_date(row["recurrence_end_date"]),
            recurrence_origin_id=_uuid(row["recurrence_origin_id"]),
            source_template_id=_uuid(row["source_template_id"]),
            tags=json.loads(row["tags_json"]),
            notes=row["notes"],
            attachment_url=row["attachment_url"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    async def get_transaction(
        self,
        owner_id: UUID,
        transaction_id: UUID,
    ) -> Optional[Transaction]:
        row = self._db.execute(
            "SELECT * FROM transactions WHERE id = ? AND owner_id = ?",
            (str(transaction_id), str(owner_id)),
        ).fetchone()
        return self._row_to_transaction(row) if row else None

    async def insert_transaction(self, transaction: Transaction) -> None:
        await self.insert_transactions([transaction])

    async def insert_transactions(self, transactions: list[Transaction]) -> None:
        if not transactions:
            return
        placeholders = ", ".join("?" for _ in TRANSACTION_COLUMNS)
        self._db.executemany(
            f"INSERT INTO transactions ({', '.join(TRANSACTION_COLUMNS)}) VALUES ({placeholders})",
            [self._transaction_to_row(t) for t in transactions],
        )

    async def update_transaction(self, transaction: Transaction) -> None:
        assignments = ", ".join(f"{column} = ?" for column in TRANSACTION_COLUMNS[2:])
        row = self._transaction_to_row(transaction)
        cursor = self._db.execute(
            f"UPDATE transactions SET {assignments} WHERE id = ? AND owner_id = ?",
            row[2:] + (row[0], row[1]),
        )
        if cursor.rowcount == 0:
            raise RecordNotFoundError(f"Transaction not found: {transaction.id}")

    async def delete_transaction(self, owner_id: UUID, transaction_id: UUID) -> bool:
        cursor = self._db.execute(
            "DELETE FROM transactions WHERE id = ? AND owner_id = ?",
            (str(transaction_id), str(owner_id)),
        )
        return cursor.rowcount > 0

    async def list_transactions(
        self,
        owner_id: UUID,
        filters: Optional[TransactionFilters] = None,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        clauses = ["owner_id = ?"]
        params: list = [str(owner_id)]

        if filters.date_from:
            clauses.append("occurrence_date >= ?")
            params.append(filters.date_from.isoformat())
        if filters.date_to:
            clauses.append("occurrence_date <= ?")
            params.append(filters.date_to.isoformat())
        if filters.account_id:
            clauses.append("account_id = ?")
            params.append(str(filters.account_id))
        if filters.category_id:
            clauses.append("category_id = ?")
            params.append(str(filters.category_id))
        if filters.direction:
            clauses.append("direction = ?")
            params.append(filters.direction.value)
        if filters.status:
            clauses.append("status = ?")
            params.append(filters.status.value)
        if filters.search:
            clauses.append(
                "(LOWER(title) LIKE ? OR LOWER(COALESCE(description, '')) LIKE ?)"
            )
            needle = f"%{filters.search.lower()}%"
            params.extend([needle, needle])

        sql = (
            f"SELECT * FROM transactions WHERE {' AND '.join(clauses)} "
            "ORDER BY occurrence_date DESC, created_at DESC LIMIT ? OFFSET ?"
        )
        params.extend([filters.limit, filters.offset])
        rows = self._db.execute(sql, tuple(params)).fetchall()
        return [self._row_to_transaction(row) for row in rows]

    async def mark_overdue(self, owner_id: UUID, as_of: date) -> int:
        cursor = self._db.execute(
            """
            UPDATE transactions SET status = ?, updated_at = ?
            WHERE owner_id = ? AND status = ? AND occurrence_date < ?
            """,
            (
                TransactionStatus.OVERDUE.value,
                utcnow().isoformat(),
                str(owner_id),
                TransactionStatus.PENDING.value,
                as_of.isoformat(),
            ),
        )
        return cursor.rowcount


class SQLiteTemplateStorage(TemplateStorageInterface):

    def __init__(self, db: SQLiteConnection):
        self._db = db

    def _template_to_row(self, t: RecurringTemplate) -> tuple:
        return (
            str(t.id),
            str(t.owner_id),
            t.name,
            str(t.account_id),
            _text(t.category_id),
            t.title,
            t.description,
            str(t.amount),
            t.direction.value,
            t.frequency.value,
            t.start_date.isoformat(),
            _text(t.end_date),
            t.next_occurrence.isoformat(),
            int(t.active),
            t.created_at.isoformat(),
            t.updated_at.isoformat(),
        )

    def _row_to_template(self, row: sqlite3.Row) -> RecurringTemplate:
        return RecurringTemplate(
            id=UUID(row["id"]),
            owner_id=UUID(row["owner_id"]),
            name=row["name"],
            account_id=UUID(row["account_id"]),
            category_id=_uuid(row["category_id"]),
            title=row["title"],
            description=row["description"],
            amount=Decimal(row["amount"]),
            direction=Direction(row["direction"]),
            frequency=Frequency(row["frequency"]),
            start_date=date.fromisoformat(row["start_date"]),
            end_date=_date(row["end_date"]),
            next_occurrence=date.fromisoformat(row["next_occurrence"]),
            active=bool(row["active"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    async def get_template(
        self,
        owner_id: UUID,
        template_id: UUID,
    ) -> Optional[RecurringTemplate]:
        row = self._db.execute(
            "SELECT * FROM recurring_templates WHERE id = ? AND owner_id = ?",
            (str(template_id), str(owner_id)),
        ).fetchone()
        return self._row_to_template(row) if row else None

    async def insert_template(self, template: RecurringTemplate) -> None:
        placeholders = ", ".join("?" for _ in TEMPLATE_COLUMNS)
        self._db.execute(
            f"INSERT INTO recurring_templates ({', '.join(TEMPLATE_COLUMNS)}) VALUES ({placeholders})",
            self._template_to_row(template),
        )

    async def update_template(self, template: RecurringTemplate) -> None:
        assignments = ", ".join(f"{column} = ?" for column in TEMPLATE_COLUMNS[2:])
        row = self._template_to_row(template)
        cursor = self._db.execute(
            f"UPDATE recurring_templates SET {assignments} WHERE id = ? AND owner_id = ?",
            row[2:] + (row[0], row[1]),
        )
        if cursor.rowcount == 0:
            raise RecordNotFoundError(f"Template not found: {template.id}")

    async def delete_template(self, owner_id: UUID, template_id: UUID) -> bool:
        cursor = self._db.execute(
            "DELETE FROM recurring_templates WHERE id = ? AND owner_id = ?",
            (str(template_id), str(owner_id)),
        )
        return cursor.rowcount > 0

    async def list_templates(
        self,
        owner_id: UUID,
        active_only: bool = False,
        due_on: Optional[date] = None,
    ) -> list[RecurringTemplate]:
        sql = "SELECT * FROM recurring_templates WHERE owner_id = ?"
        params: list = [str(owner_id)]
        if active_only:
            sql += " AND active = 1"
        if due_on is not None:
            sql += " AND next_occurrence <= ?"
            params.append(due_on.isoformat())
        sql += " ORDER BY name ASC"
        rows = self._db.execute(sql, tuple(params)).fetchall()
        return [self._row_to_template(row) for row in rows]


class SQLiteAuditStorage(AuditStorageInterface):
    """
    Append-only audit table.

    Events are written in autocommit mode, outside any unit of work, so an
    audit row never rides along with (or rolls back with) ledger data.
    """

    def __init__(self, db: SQLiteConnection):
        self._db = db

    def _row_to_event(self, row: sqlite3.Row) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(row["event_id"]),
            timestamp=datetime.fromisoformat(row["timestamp"]),
            event_type=AuditEventType(row["event_type"]),
            severity=AuditSeverity(row["severity"]),
            owner_id=_uuid(row["owner_id"]),
            entity_type=row["entity_type"],
            entity_id=_uuid(row["entity_id"]),
            description=row["description"],
            details=json.loads(row["details_json"]),
            error_code=row["error_code"],
            error_message=row["error_message"],
        )

    async def append_event(self, event: AuditEvent) -> bool:
        async with self._db.standalone():
            self._db.execute(
                """
                INSERT INTO audit_events (event_id, timestamp, event_type, severity, owner_id,
                                          entity_type, entity_id, description, details_json,
                                          error_code, error_message)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(event.event_id),
                    event.timestamp.isoformat(),
                    event.event_type.value,
                    event.severity.value,
                    _text(event.owner_id),
                    event.entity_type,
                    _text(event.entity_id),
                    event.description,
                    json.dumps(event.details),
                    event.error_code,
                    event.error_message,
                ),
            )
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        rows = self._db.execute(
            "SELECT * FROM audit_events WHERE entity_type = ? AND entity_id = ? "
            "ORDER BY timestamp ASC",
            (entity_type, str(entity_id)),
        ).fetchall()
        return [self._row_to_event(row) for row in rows]

    async def get_recent_events(
        self,
        limit: int = 100,
        owner_id: Optional[UUID] = None,
    ) -> list[AuditEvent]:
        sql = "SELECT * FROM audit_events"
        params: list = []
        if owner_id is not None:
            sql += " WHERE owner_id = ?"
            params.append(str(owner_id))
        sql += " ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)
        rows = self._db.execute(sql, tuple(params)).fetchall()
        return [self._row_to_event(row) for row in rows]


class SQLiteLedgerStorage(LedgerStorage):
    """LedgerStorage backed by a single SQLite file."""

    def __init__(
        self,
        db_path: Union[str, Path],
        lock_retry_attempts: int = 5,
        busy_timeout_seconds: float = 5.0,
    ):
        self._db = SQLiteConnection(
            db_path,
            lock_retry_attempts=lock_retry_attempts,
            busy_timeout_seconds=busy_timeout_seconds,
        )
        self._accounts = SQLiteAccountStorage(self._db)
        self._transactions = SQLiteTransactionStorage(self._db)
        self._templates = SQLiteTemplateStorage(self._db)
        self.audit = SQLiteAuditStorage(self._db)

    @property
    def accounts(self) -> SQLiteAccountStorage:
        return self._accounts

    @property
    def transactions(self) -> SQLiteTransactionStorage:
        return self._transactions

    @property
    def templates(self) -> SQLiteTemplateStorage:
        return self._templates

    def atomic(self, owner_id: UUID):
        return self._db.atomic(owner_id)

    async def close(self) -> None:
        self._db.close()
