import json
import re
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ...domain.errors import NotFound
from ...domain.models import Account, ResetToken, User
from ...domain.models.subscription import to_timestamp
from ...domain.ports.persistence import PersistenceGateway

_JSON_COLUMNS = ("subscription", "payment_method", "company")
_SCALAR_COLUMNS = ("email", "billing_customer_ref")
_PATH_SEGMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SQLitePersistence(PersistenceGateway):
    """SQLite-backed implementation of the persistence gateway."""

    def __init__(self, path: Path) -> None:
        if str(path) != ":memory:":
            path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._initialize()

    def _initialize(self) -> None:
        with self._conn:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    account_id TEXT PRIMARY KEY,
                    email TEXT,
                    billing_customer_ref TEXT,
                    subscription TEXT NOT NULL DEFAULT '{}',
                    payment_method TEXT,
                    company TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_accounts_customer_ref
                    ON accounts(billing_customer_ref);

                CREATE TABLE IF NOT EXISTS password_resets (
                    token TEXT PRIMARY KEY,
                    token_id TEXT NOT NULL,
                    email TEXT,
                    account_id TEXT,
                    created_at TEXT NOT NULL,
                    expires_at TEXT,
                    used INTEGER NOT NULL DEFAULT 0,
                    used_at TEXT
                );

                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    display_name TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )

    def close(self) -> None:
        self._conn.close()

    # AccountRepository API --------------------------------------------------
    def get_account(self, account_id: str) -> Optional[Account]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM accounts WHERE account_id = ?", (account_id,))
            row = cur.fetchone()
        return self._row_to_account(row) if row else None

    def get_account_by_customer_ref(self, customer_ref: str) -> Optional[Account]:
        with self._lock:
            cur = self._conn.execute(
                """
                SELECT * FROM accounts
                WHERE billing_customer_ref = ?
                   OR json_extract(subscription, '$.stripeCustomerId') = ?
                ORDER BY updated_at DESC
                LIMIT 1
                """,
                (customer_ref, customer_ref),
            )
            row = cur.fetchone()
        return self._row_to_account(row) if row else None

    def ensure_account(self, account_id: str, email: Optional[str] = None) -> Account:
        now = self._now()
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO accounts (account_id, email, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(account_id) DO UPDATE
                    SET email = COALESCE(accounts.email, excluded.email)
                """,
                (account_id, email.lower() if email else None, now, now),
            )
            cur = self._conn.execute("SELECT * FROM accounts WHERE account_id = ?", (account_id,))
            row = cur.fetchone()
        return self._row_to_account(row)

    def update_account_fields(self, account_id: str, fields: Mapping[str, Any]) -> Account:
        assignments, params = self._build_assignments(fields)
        assignments.append("updated_at = ?")
        params.append(self._now())
        params.append(account_id)
        with self._lock, self._conn:
            cur = self._conn.execute(
                f"UPDATE accounts SET {', '.join(assignments)} WHERE account_id = ?",
                params,
            )
            if cur.rowcount == 0:
                raise NotFound("Account not found.")
            cur = self._conn.execute("SELECT * FROM accounts WHERE account_id = ?", (account_id,))
            row = cur.fetchone()
        return self._row_to_account(row)

    # ResetTokenRepository API -----------------------------------------------
    def create_reset_token(self, token: ResetToken) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO password_resets (
                    token, token_id, email, account_id, created_at, expires_at, used, used_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    token.token,
                    token.token_id,
                    token.email,
                    token.account_id,
                    to_timestamp(token.created_at),
                    to_timestamp(token.expires_at),
                    int(token.used),
                    to_timestamp(token.used_at),
                ),
            )

    def get_reset_token(self, token: str) -> Optional[ResetToken]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM password_resets WHERE token = ?", (token,))
            row = cur.fetchone()
        return self._row_to_reset_token(row) if row else None

    def mark_reset_token_used(self, token: str, used_at: datetime) -> bool:
        """Flip ``used`` only if it is still unset; returns False when another request won."""
        with self._lock, self._conn:
            cur = self._conn.execute(
                "UPDATE password_resets SET used = 1, used_at = ? WHERE token = ? AND used = 0",
                (to_timestamp(used_at), token),
            )
            return cur.rowcount == 1

    def revert_reset_token(self, token: str) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE password_resets SET used = 0, used_at = NULL WHERE token = ?",
                (token,),
            )

    # UserRepository API ----------------------------------------------------
    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM users WHERE email = ?", (email.lower(),))
            row = cur.fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
            row = cur.fetchone()
        return self._row_to_user(row) if row else None

    def create_user(
        self,
        email: str,
        password_hash: str,
        display_name: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> User:
        normalized = email.lower()
        user_id = user_id or uuid.uuid4().hex
        now = self._now()
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO users (id, email, password_hash, display_name, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (user_id, normalized, password_hash, display_name, now, now),
            )
            cur = self._conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
            row = cur.fetchone()
        if not row:
            raise RuntimeError("Failed to persist user.")
        return self._row_to_user(row)

    def update_user_password(self, user_id: str, password_hash: str) -> User:
        now = self._now()
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
                (password_hash, now, user_id),
            )
            cur = self._conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
            row = cur.fetchone()
        if not row:
            raise NotFound(f"User {user_id} not found.")
        return self._row_to_user(row)

    # Helpers ----------------------------------------------------------------
    def _build_assignments(self, fields: Mapping[str, Any]) -> Tuple[List[str], List[Any]]:
        json_paths: Dict[str, List[Tuple[str, Any]]] = {}
        assignments: List[str] = []
        params: List[Any] = []
        for path, value in fields.items():
            column, separator, rest = path.partition(".")
            if separator and not rest:
                raise ValueError(f"Invalid field path: {path}")
            if column in _SCALAR_COLUMNS and not rest:
                assignments.append(f"{column} = ?")
                params.append(value)
            elif column in _JSON_COLUMNS and not rest:
                if value is None and column == "subscription":
                    value = {}
                assignments.append(f"{column} = ?")
                params.append(self._dump(value) if value is not None else None)
            elif column in _JSON_COLUMNS:
                segments = rest.split(".")
                if not all(_PATH_SEGMENT.match(segment) for segment in segments):
                    raise ValueError(f"Invalid field path: {path}")
                json_paths.setdefault(column, []).append(("$." + rest, value))
            else:
                raise ValueError(f"Unknown account field: {path}")

        for column, updates in json_paths.items():
            pairs = ", ".join("?, json(?)" for _ in updates)
            assignments.append(f"{column} = json_set(COALESCE({column}, '{{}}'), {pairs})")
            for json_path, value in updates:
                params.extend([json_path, self._dump(value)])
        if not assignments:
            raise ValueError("No fields to update.")
        return assignments, params

    @staticmethod
    def _dump(value: Any) -> str:
        return json.dumps(value, default=_json_default, ensure_ascii=False)

    @staticmethod
    def _load(value: Optional[str]) -> Optional[Dict[str, Any]]:
        if not value:
            return None
        return json.loads(value)

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).replace(microsecond=0).isoformat()

    @staticmethod
    def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
        if not value:
            return None
        try:
            result = datetime.fromisoformat(value)
        except ValueError:
            # Fallback for legacy formats without 'T'
            result = datetime.strptime(value, "%Y-%m-%d %H:%M:%S")
        if result.tzinfo is None:
            return result.replace(tzinfo=timezone.utc)
        return result.astimezone(timezone.utc)

    def _row_to_account(self, row: sqlite3.Row) -> Account:
        return Account(
            account_id=row["account_id"],
            email=row["email"],
            billing_customer_ref=row["billing_customer_ref"],
            subscription_data=self._load(row["subscription"]) or {},
            payment_method=self._load(row["payment_method"]),
            company=self._load(row["company"]),
            created_at=self._parse_datetime(row["created_at"]),
            updated_at=self._parse_datetime(row["updated_at"]),
        )

    def _row_to_reset_token(self, row: sqlite3.Row) -> ResetToken:
        return ResetToken(
            token=row["token"],
            token_id=row["token_id"],
            email=row["email"],
            account_id=row["account_id"],
            created_at=self._parse_datetime(row["created_at"]),
            expires_at=self._parse_datetime(row["expires_at"]),
            used=bool(row["used"]),
            used_at=self._parse_datetime(row["used_at"]),
        )

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            password_hash=row["password_hash"],
            display_name=row["display_name"],
            created_at=self._parse_datetime(row["created_at"]),
            updated_at=self._parse_datetime(row["updated_at"]),
        )


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_timestamp(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
