"""
SQL Property Store

SQLAlchemy-backed store. The full record is kept in a JSON column; the
natural key and the fields used for filtering are mirrored into indexed
columns. Natural-key uniqueness is enforced by a unique constraint.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from core.exceptions import DuplicateNaturalKeyError, StoreUnavailableError
from core.models import EnrichedProperty
from core.persistence.base import PropertyStore, RecordFilter


logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class PropertyRow(Base):
    __tablename__ = "properties"
    __table_args__ = (
        UniqueConstraint("postcode", "external_id", name="uq_properties_postcode_external_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    postcode: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    external_id: Mapped[str] = mapped_column(String(160), nullable=False)
    source_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    purchase_price: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    is_potential_hmo: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True, index=True)
    deal_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    hmo_classification: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    uprn: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    epc_rating: Mapped[Optional[str]] = mapped_column(String(1), nullable=True)

    first_ingested_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    last_seen_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    is_stale: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    stale_marked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    data: Mapped[dict] = mapped_column(JSON, nullable=False)


# Filterable columns for RecordFilter.missing_any
_MISSING_COLUMNS = {
    "purchase_price": PropertyRow.purchase_price,
    "is_potential_hmo": PropertyRow.is_potential_hmo,
    "uprn": PropertyRow.uprn,
    "epc_rating": PropertyRow.epc_rating,
}


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Columns hold naive UTC so comparisons behave the same on every backend."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _apply_record(row: PropertyRow, record: EnrichedProperty) -> None:
    row.postcode = record.postcode
    row.external_id = record.external_id
    row.source_name = record.source_name
    row.purchase_price = record.listing.purchase_price
    row.is_potential_hmo = record.is_potential_hmo
    row.deal_score = record.deal_score
    row.hmo_classification = record.classification.value if record.classification else None
    row.uprn = record.listing.uprn
    row.epc_rating = record.listing.epc.rating
    row.first_ingested_at = _naive_utc(record.first_ingested_at)
    row.last_seen_at = _naive_utc(record.last_seen_at)
    row.is_stale = record.is_stale
    row.stale_marked_at = _naive_utc(record.stale_marked_at)
    row.data = record.to_dict()


def _to_record(row: PropertyRow) -> EnrichedProperty:
    return EnrichedProperty.from_dict(row.data)


class SqlPropertyStore(PropertyStore):
    """
    Property store on any SQLAlchemy-supported database.

    Args:
        database_url: SQLAlchemy URL, e.g. ``sqlite:///./data/properties.db``
        engine: Pre-built engine (takes precedence over database_url)
        create_schema: Create the table if it does not exist
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[Engine] = None,
        create_schema: bool = True,
    ):
        if engine is None:
            if not database_url:
                raise ValueError("database_url or engine is required")
            engine = self.create_engine(database_url)
        self._engine = engine
        self._session_factory = sessionmaker(
            bind=engine,
            autoflush=False,
            expire_on_commit=False,
        )
        if create_schema:
            Base.metadata.create_all(engine)

    @staticmethod
    def create_engine(database_url: str) -> Engine:
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection so every session sees the same database
            return create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(database_url, pool_pre_ping=True)

    def _session(self) -> Session:
        return self._session_factory()

    # =========================================================================
    # PropertyStore
    # =========================================================================

    def ping(self) -> None:
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Database unreachable: {e}") from e

    def get(self, record_id: str) -> Optional[EnrichedProperty]:
        with self._session() as session:
            row = session.get(PropertyRow, record_id)
            return _to_record(row) if row else None

    def find_by_natural_key(self, postcode: str, external_id: str) -> Optional[EnrichedProperty]:
        with self._session() as session:
            row = self._row_by_key(session, postcode, external_id)
            return _to_record(row) if row else None

    def insert(self, record: EnrichedProperty) -> EnrichedProperty:
        with self._session() as session:
            row = PropertyRow(id=record.id)
            _apply_record(row, record)
            session.add(row)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise DuplicateNaturalKeyError(record.postcode, record.external_id) from e
        return record

    def upsert(self, record: EnrichedProperty) -> EnrichedProperty:
        with self._session() as session:
            row = self._row_by_key(session, record.postcode, record.external_id)
            if row is None:
                row = PropertyRow(id=record.id)
                session.add(row)
            else:
                record.id = row.id
            _apply_record(row, record)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise DuplicateNaturalKeyError(record.postcode, record.external_id) from e
        return record

    def find_where(self, record_filter: RecordFilter, limit: Optional[int] = None) -> list[EnrichedProperty]:
        stmt = self._filtered(record_filter).order_by(PropertyRow.first_ingested_at, PropertyRow.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session() as session:
            return [_to_record(row) for row in session.scalars(stmt)]

    def update_where(self, record_filter: RecordFilter, patch: dict[str, Any]) -> int:
        stmt = self._filtered(record_filter)
        with self._session() as session:
            try:
                rows = list(session.scalars(stmt))
                for row in rows:
                    record = _to_record(row)
                    record.apply_tracking(patch)
                    _apply_record(row, record)
                session.commit()
            except Exception:
                session.rollback()
                raise
            return len(rows)

    def count(self) -> int:
        with self._session() as session:
            return len(session.scalars(select(PropertyRow.id)).all())

    def list_all(self) -> list[EnrichedProperty]:
        stmt = select(PropertyRow).order_by(PropertyRow.first_ingested_at, PropertyRow.id)
        with self._session() as session:
            return [_to_record(row) for row in session.scalars(stmt)]

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _row_by_key(session: Session, postcode: str, external_id: str) -> Optional[PropertyRow]:
        stmt = select(PropertyRow).where(
            PropertyRow.postcode == postcode,
            PropertyRow.external_id == external_id,
        )
        return session.scalars(stmt).first()

    @staticmethod
    def _filtered(record_filter: RecordFilter):
        stmt = select(PropertyRow)
        if record_filter.is_stale is not None:
            stmt = stmt.where(PropertyRow.is_stale == record_filter.is_stale)
        if record_filter.last_seen_before is not None:
            stmt = stmt.where(PropertyRow.last_seen_at < _naive_utc(record_filter.last_seen_before))
        if record_filter.missing_any:
            stmt = stmt.where(or_(*(_MISSING_COLUMNS[name].is_(None) for name in record_filter.missing_any)))
        return stmt
