from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
import logging
import os
import threading
from typing import Dict, List, Optional, Sequence
import uuid

import pymysql
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

MYSQL_HOST = os.getenv("MYSQL_HOST", "localhost")
MYSQL_PORT = int(os.getenv("MYSQL_PORT", "3306"))
MYSQL_USER = os.getenv("MYSQL_USER", "swadesh")
MYSQL_PASSWORD = os.getenv("MYSQL_PASSWORD", "swadesh_password")
MYSQL_DATABASE = os.getenv("MYSQL_DATABASE", "swadesh")
DEFAULT_MEMORY_CATEGORY = "general"
MAX_CATEGORY_LENGTH = 255

LOGGER = logging.getLogger("swadesh.storage")

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id VARCHAR(255) NOT NULL PRIMARY KEY,
        email VARCHAR(255) NULL,
        first_name VARCHAR(255) NULL,
        last_name VARCHAR(255) NULL,
        profile_image_url TEXT NULL,
        setup_completed BOOLEAN NOT NULL DEFAULT FALSE,
        created_at DATETIME(6) NOT NULL,
        updated_at DATETIME(6) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memories (
        id VARCHAR(64) NOT NULL PRIMARY KEY,
        user_id VARCHAR(255) NOT NULL,
        content TEXT NOT NULL,
        category VARCHAR(255) NOT NULL DEFAULT 'general',
        created_at DATETIME(6) NOT NULL,
        updated_at DATETIME(6) NOT NULL,
        INDEX idx_memories_user (user_id),
        CONSTRAINT fk_memories_user FOREIGN KEY (user_id)
            REFERENCES users (id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id VARCHAR(128) NOT NULL PRIMARY KEY,
        user_id VARCHAR(255) NOT NULL,
        created_at DATETIME(6) NOT NULL,
        expires_at DATETIME(6) NOT NULL,
        INDEX idx_sessions_expires (expires_at),
        CONSTRAINT fk_sessions_user FOREIGN KEY (user_id)
            REFERENCES users (id) ON DELETE CASCADE
    )
    """,
)


class StorageError(RuntimeError):
    """Raised when the backing store cannot complete an operation."""


class MemoryValidationError(ValueError):
    pass


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserRecord(CamelModel):
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    setup_completed: bool = False
    created_at: datetime
    updated_at: datetime


class UserUpsert(CamelModel):
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None


class MemoryRecord(CamelModel):
    id: str
    user_id: str
    content: str
    category: str = DEFAULT_MEMORY_CATEGORY
    created_at: datetime
    updated_at: datetime


class SessionRecord(BaseModel):
    session_id: str
    user_id: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at <= (now or datetime.now(timezone.utc))


class Ownership(str, Enum):
    FOUND = "found"
    NOT_OWNED = "not_owned"
    ABSENT = "absent"


@dataclass(frozen=True)
class OwnershipCheck:
    status: Ownership
    record: Optional[MemoryRecord] = None

    @property
    def found(self) -> bool:
        return self.status is Ownership.FOUND


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _next_timestamp(previous: datetime) -> datetime:
    # Keeps updated_at strictly increasing even within one clock tick.
    now = _utcnow()
    previous = _as_utc(previous)
    if now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def _validated_content(content: Optional[str]) -> str:
    if content is None or not content.strip():
        raise MemoryValidationError("Memory content cannot be empty.")
    return content


def _validated_category(category: Optional[str]) -> str:
    if not category:
        return DEFAULT_MEMORY_CATEGORY
    if len(category) > MAX_CATEGORY_LENGTH:
        raise MemoryValidationError(
            f"Memory category must be at most {MAX_CATEGORY_LENGTH} characters."
        )
    return category


def _generate_memory_id() -> str:
    return uuid.uuid4().hex


class Storage(ABC):
    """Users, memories and sessions, with every memory access scoped by owner.

    Backends implement the row-level primitives; the ownership rules live
    here once so both backends enforce them identically.
    """

    def ensure_schema(self) -> None:
        return None

    # Users

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[UserRecord]:
        raise NotImplementedError

    @abstractmethod
    def upsert_user(self, payload: UserUpsert) -> UserRecord:
        raise NotImplementedError

    @abstractmethod
    def update_user_setup(self, user_id: str, setup_completed: bool = True) -> None:
        raise NotImplementedError

    # Memory primitives

    @abstractmethod
    def list_memories(self, user_id: str) -> List[MemoryRecord]:
        raise NotImplementedError

    @abstractmethod
    def _insert_memory(self, record: MemoryRecord) -> None:
        raise NotImplementedError

    @abstractmethod
    def _fetch_memory(self, memory_id: str) -> Optional[MemoryRecord]:
        raise NotImplementedError

    @abstractmethod
    def _write_memory_content(
        self, memory_id: str, content: str, updated_at: datetime
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    def _delete_memory_row(self, memory_id: str) -> bool:
        raise NotImplementedError

    # Sessions

    @abstractmethod
    def create_session(
        self, user_id: str, session_id: str, ttl: timedelta
    ) -> SessionRecord:
        raise NotImplementedError

    @abstractmethod
    def _fetch_session(self, session_id: str) -> Optional[SessionRecord]:
        raise NotImplementedError

    @abstractmethod
    def delete_session(self, session_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def purge_expired_sessions(self) -> int:
        raise NotImplementedError

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        session = self._fetch_session(session_id)
        if session is None:
            return None
        if session.is_expired():
            self.delete_session(session_id)
            return None
        return session

    # Memory service

    def load_memory_for_user(self, memory_id: str, user_id: str) -> OwnershipCheck:
        record = self._fetch_memory(memory_id)
        if record is None:
            return OwnershipCheck(Ownership.ABSENT)
        if record.user_id != user_id:
            return OwnershipCheck(Ownership.NOT_OWNED)
        return OwnershipCheck(Ownership.FOUND, record)

    def create_memory(
        self,
        user_id: str,
        content: str,
        category: Optional[str] = None,
    ) -> MemoryRecord:
        now = _utcnow()
        record = MemoryRecord(
            id=_generate_memory_id(),
            user_id=user_id,
            content=_validated_content(content),
            category=_validated_category(category),
            created_at=now,
            updated_at=now,
        )
        self._insert_memory(record)
        _log_memory_event("create", user_id, memory_id=record.id)
        return record

    def update_memory(
        self, memory_id: str, user_id: str, content: str
    ) -> Optional[MemoryRecord]:
        content = _validated_content(content)
        check = self.load_memory_for_user(memory_id, user_id)
        if not check.found:
            _log_memory_event("update-miss", user_id, memory_id=memory_id)
            return None
        updated_at = _next_timestamp(check.record.updated_at)
        self._write_memory_content(memory_id, content, updated_at)
        _log_memory_event("update", user_id, memory_id=memory_id)
        return check.record.model_copy(
            update={"content": content, "updated_at": updated_at}
        )

    def delete_memory(self, memory_id: str, user_id: str) -> bool:
        check = self.load_memory_for_user(memory_id, user_id)
        if not check.found:
            _log_memory_event("delete-miss", user_id, memory_id=memory_id)
            return False
        deleted = self._delete_memory_row(memory_id)
        _log_memory_event("delete", user_id, memory_id=memory_id)
        return deleted


def _log_memory_event(action: str, user_id: str, memory_id: Optional[str] = None) -> None:
    LOGGER.info("memory %s user=%s memory=%s", action, user_id, memory_id or "-")


class InMemoryStorage(Storage):
    """Process-local backend for development and tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.users: Dict[str, UserRecord] = {}
        self.memories: Dict[str, MemoryRecord] = {}
        self.sessions: Dict[str, SessionRecord] = {}

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._lock:
            return self.users.get(user_id)

    def upsert_user(self, payload: UserUpsert) -> UserRecord:
        now = _utcnow()
        with self._lock:
            existing = self.users.get(payload.id)
            if existing:
                user = existing.model_copy(
                    update={
                        "email": payload.email,
                        "first_name": payload.first_name,
                        "last_name": payload.last_name,
                        "profile_image_url": payload.profile_image_url,
                        "updated_at": _next_timestamp(existing.updated_at),
                    }
                )
            else:
                user = UserRecord(
                    **payload.model_dump(), created_at=now, updated_at=now
                )
            self.users[user.id] = user
            return user

    def update_user_setup(self, user_id: str, setup_completed: bool = True) -> None:
        with self._lock:
            user = self.users.get(user_id)
            if user:
                self.users[user_id] = user.model_copy(
                    update={
                        "setup_completed": setup_completed,
                        "updated_at": _next_timestamp(user.updated_at),
                    }
                )

    def list_memories(self, user_id: str) -> List[MemoryRecord]:
        with self._lock:
            owned = [m for m in self.memories.values() if m.user_id == user_id]
        return sorted(owned, key=lambda m: (m.created_at, m.id))

    def _insert_memory(self, record: MemoryRecord) -> None:
        with self._lock:
            self.memories[record.id] = record

    def _fetch_memory(self, memory_id: str) -> Optional[MemoryRecord]:
        with self._lock:
            return self.memories.get(memory_id)

    def _write_memory_content(
        self, memory_id: str, content: str, updated_at: datetime
    ) -> None:
        with self._lock:
            record = self.memories.get(memory_id)
            if record:
                self.memories[memory_id] = record.model_copy(
                    update={"content": content, "updated_at": updated_at}
                )

    def _delete_memory_row(self, memory_id: str) -> bool:
        with self._lock:
            return self.memories.pop(memory_id, None) is not None

    def create_session(
        self, user_id: str, session_id: str, ttl: timedelta
    ) -> SessionRecord:
        now = _utcnow()
        session = SessionRecord(
            session_id=session_id,
            user_id=user_id,
            created_at=now,
            expires_at=now + ttl,
        )
        with self._lock:
            self.sessions[session_id] = session
        return session

    def _fetch_session(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            return self.sessions.get(session_id)

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            self.sessions.pop(session_id, None)

    def purge_expired_sessions(self) -> int:
        now = _utcnow()
        with self._lock:
            expired = [sid for sid, s in self.sessions.items() if s.is_expired(now)]
            for session_id in expired:
                self.sessions.pop(session_id, None)
        return len(expired)


class DatabaseStorage(Storage):
    def __init__(
        self,
        host: str = MYSQL_HOST,
        port: int = MYSQL_PORT,
        user: str = MYSQL_USER,
        password: str = MYSQL_PASSWORD,
        database: str = MYSQL_DATABASE,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.database = database

    @contextmanager
    def _db_connection(self):
        try:
            connection = pymysql.connect(
                host=self.host,
                port=self.port,
                user=self.user,
                password=self.password,
                database=self.database,
                cursorclass=pymysql.cursors.DictCursor,
                autocommit=False,
            )
        except pymysql.MySQLError as exc:
            raise StorageError(f"Could not connect to MySQL: {exc}") from exc
        try:
            yield connection
        except pymysql.MySQLError as exc:
            connection.rollback()
            raise StorageError(str(exc)) from exc
        finally:
            connection.close()

    def ensure_schema(self) -> None:
        with self._db_connection() as connection:
            with connection.cursor() as cursor:
                for statement in SCHEMA_STATEMENTS:
                    cursor.execute(statement)
            connection.commit()

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._db_connection() as connection:
            with connection.cursor() as cursor:
                cursor.execute(
                    """
                    SELECT id, email, first_name, last_name, profile_image_url,
                           setup_completed, created_at, updated_at
                    FROM users
                    WHERE id = %s
                    """,
                    (user_id,),
                )
                row = cursor.fetchone()
        return _row_to_user(row) if row else None

    def upsert_user(self, payload: UserUpsert) -> UserRecord:
        now = _utcnow()
        with self._db_connection() as connection:
            with connection.cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO users (id, email, first_name, last_name,
                                       profile_image_url, setup_completed,
                                       created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, FALSE, %s, %s) AS new
                    ON DUPLICATE KEY UPDATE
                        email = new.email,
                        first_name = new.first_name,
                        last_name = new.last_name,
                        profile_image_url = new.profile_image_url,
                        updated_at = new.updated_at
                    """,
                    (
                        payload.id,
                        payload.email,
                        payload.first_name,
                        payload.last_name,
                        payload.profile_image_url,
                        now,
                        now,
                    ),
                )
            connection.commit()
        user = self.get_user(payload.id)
        if user is None:
            raise StorageError(f"User {payload.id} missing after upsert.")
        return user

    def update_user_setup(self, user_id: str, setup_completed: bool = True) -> None:
        with self._db_connection() as connection:
            with connection.cursor() as cursor:
                cursor.execute(
                    "UPDATE users SET setup_completed = %s, updated_at = %s WHERE id = %s",
                    (setup_completed, _utcnow(), user_id),
                )
            connection.commit()

    def list_memories(self, user_id: str) -> List[MemoryRecord]:
        with self._db_connection() as connection:
            with connection.cursor() as cursor:
                cursor.execute(
                    """
                    SELECT id, user_id, content, category, created_at, updated_at
                    FROM memories
                    WHERE user_id = %s
                    ORDER BY created_at ASC, id ASC
                    """,
                    (user_id,),
                )
                rows = cursor.fetchall()
        return _rows_to_memory_records(rows)

    def _insert_memory(self, record: MemoryRecord) -> None:
        with self._db_connection() as connection:
            with connection.cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO memories (id, user_id, content, category, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (
                        record.id,
                        record.user_id,
                        record.content,
                        record.category,
                        record.created_at,
                        record.updated_at,
                    ),
                )
            connection.commit()

    def _fetch_memory(self, memory_id: str) -> Optional[MemoryRecord]:
        with self._db_connection() as connection:
            with connection.cursor() as cursor:
                cursor.execute(
                    """
                    SELECT id, user_id, content, category, created_at, updated_at
                    FROM memories
                    WHERE id = %s
                    """,
                    (memory_id,),
                )
                row = cursor.fetchone()
        records = _rows_to_memory_records([row] if row else [])
        return records[0] if records else None

    def _write_memory_content(
        self, memory_id: str, content: str, updated_at: datetime
    ) -> None:
        with self._db_connection() as connection:
            with connection.cursor() as cursor:
                cursor.execute(
                    "UPDATE memories SET content = %s, updated_at = %s WHERE id = %s",
                    (content, updated_at, memory_id),
                )
            connection.commit()

    def _delete_memory_row(self, memory_id: str) -> bool:
        with self._db_connection() as connection:
            with connection.cursor() as cursor:
                cursor.execute("DELETE FROM memories WHERE id = %s", (memory_id,))
                deleted = cursor.rowcount > 0
            connection.commit()
        return deleted

    def create_session(
        self, user_id: str, session_id: str, ttl: timedelta
    ) -> SessionRecord:
        now = _utcnow()
        session = SessionRecord(
            session_id=session_id,
            user_id=user_id,
            created_at=now,
            expires_at=now + ttl,
        )
        with self._db_connection() as connection:
            with connection.cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO sessions (id, user_id, created_at, expires_at)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (session.session_id, user_id, session.created_at, session.expires_at),
                )
            connection.commit()
        return session

    def _fetch_session(self, session_id: str) -> Optional[SessionRecord]:
        with self._db_connection() as connection:
            with connection.cursor() as cursor:
                cursor.execute(
                    "SELECT id, user_id, created_at, expires_at FROM sessions WHERE id = %s",
                    (session_id,),
                )
                row = cursor.fetchone()
        if not row:
            return None
        return SessionRecord(
            session_id=row["id"],
            user_id=row["user_id"],
            created_at=_as_utc(row["created_at"]),
            expires_at=_as_utc(row["expires_at"]),
        )

    def delete_session(self, session_id: str) -> None:
        with self._db_connection() as connection:
            with connection.cursor() as cursor:
                cursor.execute("DELETE FROM sessions WHERE id = %s", (session_id,))
            connection.commit()

    def purge_expired_sessions(self) -> int:
        with self._db_connection() as connection:
            with connection.cursor() as cursor:
                cursor.execute("DELETE FROM sessions WHERE expires_at <= %s", (_utcnow(),))
                purged = cursor.rowcount
            connection.commit()
        return purged


def _row_to_user(row: Dict[str, object]) -> UserRecord:
    return UserRecord(
        id=row["id"],
        email=row.get("email"),
        first_name=row.get("first_name"),
        last_name=row.get("last_name"),
        profile_image_url=row.get("profile_image_url"),
        setup_completed=bool(row.get("setup_completed")),
        created_at=_as_utc(row["created_at"]),
        updated_at=_as_utc(row["updated_at"]),
    )


def _rows_to_memory_records(rows: Sequence[Dict[str, object]]) -> List[MemoryRecord]:
    return [
        MemoryRecord(
            id=row["id"],
            user_id=row["user_id"],
            content=row["content"],
            category=row.get("category") or DEFAULT_MEMORY_CATEGORY,
            created_at=_as_utc(row["created_at"]),
            updated_at=_as_utc(row["updated_at"]),
        )
        for row in rows
    ]


def storage_from_env(backend: Optional[str] = None) -> Storage:
    selected = (backend or os.getenv("STORAGE_BACKEND", "mysql")).strip().lower()
    if selected == "memory":
        LOGGER.warning("Using in-memory storage; data will not survive a restart.")
        return InMemoryStorage()
    if selected != "mysql":
        raise ValueError(f"Unsupported STORAGE_BACKEND: {selected}")
    return DatabaseStorage()
