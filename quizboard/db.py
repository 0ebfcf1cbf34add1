"""
Storage contract for user rows and its two relational engines.

``SqliteUserStore`` keeps everything in a local database file;
``MysqlUserStore`` talks to a MySQL server through a bounded pool. Both run
the same SQLAlchemy statements and only differ in how the engine is built and
in the dialect-specific insert-on-conflict statement.
"""

from __future__ import annotations

import functools
import logging
import ssl
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Enum,
    String,
    Text,
    case,
    event,
    func,
    select,
    update,
)
from sqlalchemy.dialects import mysql, sqlite
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import AsyncAdaptedQueuePool

from quizboard.errors import DuplicateUserError, StorageError

logger = logging.getLogger(__name__)

ROLES = ("user", "admin")
DEFAULT_ROLE = "user"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class UserRecord:
    id: str
    name: str
    email: str
    password: Optional[str] = None
    university: Optional[str] = None
    avatar_url: Optional[str] = None
    banner_url: Optional[str] = None
    role: str = DEFAULT_ROLE
    score: int = 0
    created_at: Optional[datetime] = None

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "password": self.password,
            "university": self.university,
            "avatarUrl": self.avatar_url,
            "bannerUrl": self.banner_url,
            "role": self.role,
            "score": self.score,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class LeaderboardUser:
    id: str
    name: str
    score: int
    avatar_url: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "score": self.score,
            "avatarUrl": self.avatar_url,
        }


@dataclass
class UniversityStats:
    university: str
    total_score: int
    user_count: int
    average_score: int = field(init=False)

    def __post_init__(self):
        self.average_score = round_half_up(self.total_score, self.user_count)

    def as_dict(self) -> dict:
        return {
            "university": self.university,
            "totalScore": self.total_score,
            "userCount": self.user_count,
            "averageScore": self.average_score,
        }


def round_half_up(total: int, count: int) -> int:
    """Integer ``total / count`` rounded half up; 0 when ``count`` is 0."""
    if not count:
        return 0
    return (2 * total + count) // (2 * count)


class UserStore(Protocol):
    """Interface every storage engine adapter satisfies."""

    async def initialize(self) -> None:
        ...

    async def dispose(self) -> None:
        ...

    async def ping(self) -> None:
        ...

    async def upsert_user(self, record: UserRecord) -> tuple[UserRecord, bool]:
        ...

    async def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    async def get_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        ...

    async def update_user(self, user_id: str, changes: dict) -> Optional[UserRecord]:
        ...

    async def increment_score(self, user_id: str, delta: int) -> Optional[UserRecord]:
        ...

    async def top_users(self, limit: int) -> list[LeaderboardUser]:
        ...

    async def university_totals(self) -> list[UniversityStats]:
        ...


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"
    __table_args__ = {"mysql_engine": "InnoDB", "mysql_charset": "utf8mb4"}

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    password = Column(String(255), nullable=True)
    university = Column(String(255), nullable=True)
    avatarUrl = Column(Text, nullable=True)
    bannerUrl = Column(Text, nullable=True)
    role = Column(
        Enum(*ROLES, name="user_role"), nullable=False, default=DEFAULT_ROLE
    )
    score = Column(BigInteger, nullable=False, default=0)
    created_at = Column(
        DateTime().with_variant(mysql.DATETIME(fsp=6), "mysql"),
        nullable=False,
        default=_utcnow,
    )


# Dataclass attribute -> column attribute on UserRow
_COLUMN_FOR_FIELD = {
    "name": "name",
    "university": "university",
    "avatar_url": "avatarUrl",
    "banner_url": "bannerUrl",
    "role": "role",
}


def _translate_errors(method):
    """Re-raise driver and SQLAlchemy failures as ``StorageError``."""

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except StorageError:
            raise
        except (SQLAlchemyError, OSError, OverflowError, ValueError) as exc:
            logger.error("%s.%s failed: %s", type(self).__name__, method.__name__, exc)
            raise StorageError(str(getattr(exc, "orig", None) or exc)) from exc

    return wrapper


class SqlUserStore:
    """
    Shared SQLAlchemy implementation. Subclasses build the engine and the
    insert-on-conflict statement for their dialect.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.Session = async_sessionmaker(
            bind=engine, class_=AsyncSession, expire_on_commit=False
        )

    def _to_user_record(self, row: UserRow) -> UserRecord:
        return UserRecord(
            id=row.id,
            name=row.name,
            email=row.email,
            password=row.password,
            university=row.university,
            avatar_url=row.avatarUrl,
            banner_url=row.bannerUrl,
            role=row.role,
            score=int(row.score or 0),
            created_at=row.created_at,
        )

    def _insert_values(self, record: UserRecord) -> dict:
        return {
            "id": record.id,
            "name": record.name,
            "email": record.email,
            "password": record.password,
            "university": record.university,
            "avatarUrl": record.avatar_url,
            "bannerUrl": record.banner_url,
            "role": record.role or DEFAULT_ROLE,
            "score": record.score or 0,
            "created_at": _utcnow(),
        }

    def _upsert_statement(self, values: dict):
        raise NotImplementedError

    async def _fetch_user(
        self, session: AsyncSession, *criteria
    ) -> Optional[UserRecord]:
        stmt = select(UserRow).where(*criteria).limit(1)
        row = (await session.execute(stmt)).scalar_one_or_none()
        return self._to_user_record(row) if row else None

    @_translate_errors
    async def initialize(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @_translate_errors
    async def ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(select(1))

    @_translate_errors
    async def upsert_user(self, record: UserRecord) -> tuple[UserRecord, bool]:
        """
        Insert ``record``; when its id already exists, overwrite the mutable
        fields and leave score, email, password and created_at alone.

        Returns the resulting row and whether this call inserted it.
        """
        values = self._insert_values(record)
        stmt = self._upsert_statement(values)
        async with self.Session() as session:
            try:
                await session.execute(stmt)
                user = await self._fetch_user(session, UserRow.id == record.id)
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateUserError(record.email) from exc
        if user is None:
            # The conflicting key was the email of another row.
            raise DuplicateUserError(record.email)
        # A conflict update never touches created_at.
        return user, user.created_at == values["created_at"]

    @_translate_errors
    async def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        async with self.Session() as session:
            return await self._fetch_user(session, UserRow.email == email)

    @_translate_errors
    async def get_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        async with self.Session() as session:
            return await self._fetch_user(session, UserRow.id == user_id)

    @_translate_errors
    async def update_user(self, user_id: str, changes: dict) -> Optional[UserRecord]:
        values = {
            _COLUMN_FOR_FIELD[key]: value
            for key, value in changes.items()
            if key in _COLUMN_FOR_FIELD and value is not None
        }
        async with self.Session() as session:
            if values:
                stmt = (
                    update(UserRow)
                    .where(UserRow.id == user_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                result = await session.execute(stmt)
                if not result.rowcount:
                    await session.rollback()
                    return None
            user = await self._fetch_user(session, UserRow.id == user_id)
            await session.commit()
            return user

    @_translate_errors
    async def increment_score(self, user_id: str, delta: int) -> Optional[UserRecord]:
        stmt = (
            update(UserRow)
            .where(UserRow.id == user_id)
            .values(score=UserRow.score + delta)
            .execution_options(synchronize_session=False)
        )
        async with self.Session() as session:
            result = await session.execute(stmt)
            if not result.rowcount:
                await session.rollback()
                return None
            user = await self._fetch_user(session, UserRow.id == user_id)
            await session.commit()
            return user

    @_translate_errors
    async def top_users(self, limit: int) -> list[LeaderboardUser]:
        stmt = (
            select(UserRow.id, UserRow.name, UserRow.score, UserRow.avatarUrl)
            .where(UserRow.score > 0)
            .order_by(UserRow.score.desc(), UserRow.created_at.asc())
            .limit(limit)
        )
        async with self.Session() as session:
            rows = (await session.execute(stmt)).all()
        return [
            LeaderboardUser(
                id=str(row.id),
                name=str(row.name),
                score=int(row.score),
                avatar_url=row.avatarUrl,
            )
            for row in rows
        ]

    @_translate_errors
    async def university_totals(self) -> list[UniversityStats]:
        total = func.sum(UserRow.score).label("totalScore")
        count = func.count().label("userCount")
        stmt = (
            select(UserRow.university, total, count)
            .where(UserRow.university.is_not(None), UserRow.score > 0)
            .group_by(UserRow.university)
            .order_by(total.desc())
        )
        async with self.Session() as session:
            rows = (await session.execute(stmt)).all()
        # MySQL returns SUM() as Decimal.
        return [
            UniversityStats(
                university=str(row.university),
                total_score=int(row.totalScore or 0),
                user_count=int(row.userCount or 0),
            )
            for row in rows
        ]


class SqliteUserStore(SqlUserStore):
    """Self-contained engine backed by a single SQLite file (WAL mode)."""

    def __init__(self, path: str | Path, *, pool_size: int = 5):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{self.path}",
            poolclass=AsyncAdaptedQueuePool,
            pool_size=pool_size,
            max_overflow=0,
            connect_args={"timeout": 30},
        )

        @event.listens_for(engine.sync_engine, "connect")
        def _set_pragmas(dbapi_connection, _record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

        super().__init__(engine)

    def _upsert_statement(self, values: dict):
        stmt = sqlite.insert(UserRow.__table__).values(**values)
        return stmt.on_conflict_do_update(
            index_elements=[UserRow.__table__.c.id],
            set_={
                column: getattr(stmt.excluded, column)
                for column in _COLUMN_FOR_FIELD.values()
            },
        )


class MysqlUserStore(SqlUserStore):
    """Client/server engine talking to MySQL through aiomysql."""

    def __init__(self, url: str | URL, *, pool_size: int = 10, use_ssl: bool = False):
        connect_args = {}
        if use_ssl:
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
            connect_args["ssl"] = context
        engine = create_async_engine(
            mysql_async_url(url),
            pool_size=pool_size,
            max_overflow=0,
            pool_pre_ping=True,
            pool_recycle=1800,
            connect_args=connect_args,
        )
        super().__init__(engine)

    def _upsert_statement(self, values: dict):
        table = UserRow.__table__
        stmt = mysql.insert(table).values(**values)
        # ON DUPLICATE KEY fires for the email key too; only merge when the
        # conflicting row is the one with our id.
        same_id = table.c.id == stmt.inserted.id
        return stmt.on_duplicate_key_update(
            {
                column: case(
                    (same_id, getattr(stmt.inserted, column)),
                    else_=table.c[column],
                )
                for column in _COLUMN_FOR_FIELD.values()
            }
        )


def mysql_async_url(url: str | URL) -> URL:
    """Point a ``mysql://`` style URL at the aiomysql driver."""
    parsed = make_url(url)
    query = dict(parsed.query)
    query.setdefault("charset", "utf8mb4")
    return parsed.set(drivername="mysql+aiomysql", query=query)
