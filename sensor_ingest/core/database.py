"""
PostgreSQL Database

SQLAlchemy engine/session factory and the sensor_readings store.
Blocking calls run on the default thread pool so the consume loop
only ever awaits them.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, Index, String, Uuid, create_engine, select, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from sensor_ingest.core.logging import get_logger
from sensor_ingest.core.models import NormalizedReadingInput, PersistedReading, utcnow

logger = get_logger("core.database", labels={"component": "database"})

Base = declarative_base()


class StoreWriteError(Exception):
    """An insert failed on transport or a constraint; nothing from the call was kept."""


class SensorReadingRow(Base):
    __tablename__ = "sensor_readings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    sensor_type: Mapped[str] = mapped_column(String(100), nullable=False)
    sensor_name: Mapped[str] = mapped_column(String(255), nullable=False)
    payload: Mapped[Any] = mapped_column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_sensor_readings_type", "sensor_type"),
        Index("idx_sensor_readings_name", "sensor_name"),
        Index("idx_sensor_readings_timestamp", "timestamp"),
        Index("idx_sensor_readings_created_at", "created_at"),
        Index("idx_sensor_readings_type_name", "sensor_type", "sensor_name"),
        # GIN on Postgres JSONB; other dialects ignore postgresql_using
        Index("idx_sensor_readings_payload", "payload", postgresql_using="gin"),
    )

    def to_reading(self) -> PersistedReading:
        return PersistedReading(
            id=self.id,
            sensor_type=self.sensor_type,
            sensor_name=self.sensor_name,
            payload=self.payload,
            timestamp=_as_utc(self.timestamp),
            created_at=_as_utc(self.created_at),
        )


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _engine_options(url: str, max_connections: int, min_connections: int, acquire_timeout: int) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {
        "pool_size": min_connections,
        "max_overflow": max(max_connections - min_connections, 0),
        "pool_timeout": acquire_timeout,
        "pool_pre_ping": True,
    }


class Database:
    def __init__(
        self,
        url: str,
        max_connections: int = 10,
        min_connections: int = 1,
        acquire_timeout: int = 30,
    ):
        self.engine = create_engine(
            url, **_engine_options(url, max_connections, min_connections, acquire_timeout)
        )
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_tables(self):
        Base.metadata.create_all(self.engine)

    def session(self):
        return self.Session()

    def dispose(self):
        self.engine.dispose()


class SensorReadingStore:
    """
    Insert/query surface over sensor_readings.

    insert_batch is a single transaction: a chunk is either fully
    persisted or not at all, which is what the caller's chunk-level
    failure accounting relies on.
    """

    def __init__(self, database: Database):
        self.database = database

    async def insert_one(self, data: NormalizedReadingInput) -> PersistedReading:
        rows = await asyncio.to_thread(self._insert, [data])
        return rows[0]

    async def insert_batch(self, data_batch: list[NormalizedReadingInput]) -> list[PersistedReading]:
        if not data_batch:
            return []
        return await asyncio.to_thread(self._insert, list(data_batch))

    async def get_by_type(self, sensor_type: str) -> list[PersistedReading]:
        stmt = select(SensorReadingRow).where(SensorReadingRow.sensor_type == sensor_type)
        return await asyncio.to_thread(self._fetch, stmt)

    async def get_by_name(self, sensor_name: str) -> list[PersistedReading]:
        stmt = select(SensorReadingRow).where(SensorReadingRow.sensor_name == sensor_name)
        return await asyncio.to_thread(self._fetch, stmt)

    async def get_latest(self, limit: int) -> list[PersistedReading]:
        return await asyncio.to_thread(self._fetch, select(SensorReadingRow), limit)

    async def get_by_time_range(self, start_time: datetime, end_time: datetime) -> list[PersistedReading]:
        stmt = select(SensorReadingRow).where(
            SensorReadingRow.timestamp.between(start_time, end_time)
        )
        return await asyncio.to_thread(self._fetch, stmt)

    async def health_check(self) -> bool:
        return await asyncio.to_thread(self.ping)

    def ping(self) -> bool:
        """Blocking liveness probe, safe to call from a non-async thread."""
        try:
            with self.database.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Database health check failed: {e}")
            return False

    def _insert(self, data_batch: list[NormalizedReadingInput]) -> list[PersistedReading]:
        now = utcnow()
        rows = [
            SensorReadingRow(
                id=uuid4(),
                sensor_type=data.sensor_type,
                sensor_name=data.sensor_name,
                payload=data.payload,
                timestamp=data.timestamp,
                created_at=now,
            )
            for data in data_batch
        ]
        session = self.database.session()
        try:
            session.add_all(rows)
            session.commit()
        except (SQLAlchemyError, ValueError) as e:
            # psycopg2 raises a bare ValueError for NUL characters in strings
            session.rollback()
            raise StoreWriteError(f"failed to insert {len(rows)} sensor readings: {e}") from e
        finally:
            session.close()
        return [row.to_reading() for row in rows]

    def _fetch(self, stmt, limit: Optional[int] = None) -> list[PersistedReading]:
        stmt = stmt.order_by(SensorReadingRow.timestamp.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.database.session() as session:
            return [row.to_reading() for row in session.scalars(stmt)]
