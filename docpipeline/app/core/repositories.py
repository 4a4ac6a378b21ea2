# docpipeline/app/core/repositories.py
"""Resume and reference-letter persistence.

``update`` is a full-row replace; ``mark_processing`` is the one conditional
write, so a redelivered job can never move a completed or failed row back to
processing.
"""

import threading
from typing import Dict, Generic, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy import create_engine, select, update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from docpipeline.app.core.errors import RepositoryError
from docpipeline.app.models.db_models import Base, ReferenceLetterRecord, ResumeRecord
from docpipeline.app.models.entities import (
    PROCESSABLE_STATUSES,
    EntityStatus,
    ProcessedEntity,
    ReferenceLetter,
    Resume,
    utcnow,
)

E = TypeVar("E", bound=ProcessedEntity)


class EntityRepository(Generic[E]):
    def create(self, entity: E) -> E:
        raise NotImplementedError

    def get_by_id(self, entity_id: UUID) -> Optional[E]:
        raise NotImplementedError

    def update(self, entity: E) -> bool:
        """Replace the stored row. Returns False if the row no longer exists."""
        raise NotImplementedError

    def mark_processing(self, entity_id: UUID) -> Optional[E]:
        """Move a pending/processing row to processing.

        Returns the updated entity, or None when the row is gone or already
        terminal.
        """
        raise NotImplementedError


class ResumeRepository(EntityRepository[Resume]):
    pass


class ReferenceLetterRepository(EntityRepository[ReferenceLetter]):
    pass


# ---------- In-memory ----------

class _InMemoryRepository(EntityRepository[E]):
    def __init__(self):
        self._lock = threading.Lock()
        self._rows: Dict[UUID, E] = {}

    def create(self, entity: E) -> E:
        with self._lock:
            self._rows[entity.id] = entity.model_copy(deep=True)
        return entity

    def get_by_id(self, entity_id: UUID) -> Optional[E]:
        with self._lock:
            row = self._rows.get(entity_id)
            return row.model_copy(deep=True) if row is not None else None

    def update(self, entity: E) -> bool:
        with self._lock:
            if entity.id not in self._rows:
                return False
            self._rows[entity.id] = entity.model_copy(deep=True)
            return True

    def mark_processing(self, entity_id: UUID) -> Optional[E]:
        with self._lock:
            row = self._rows.get(entity_id)
            if row is None or row.status not in PROCESSABLE_STATUSES:
                return None
            row.mark_processing()
            return row.model_copy(deep=True)

    def delete(self, entity_id: UUID) -> None:
        with self._lock:
            self._rows.pop(entity_id, None)


class InMemoryResumeRepository(_InMemoryRepository[Resume], ResumeRepository):
    pass


class InMemoryReferenceLetterRepository(_InMemoryRepository[ReferenceLetter], ReferenceLetterRepository):
    pass


# ---------- SQLAlchemy ----------

class _SqlAlchemyRepository(EntityRepository[E]):
    record_cls: Type = None
    entity_cls: Type[E] = None

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._columns = [c.key for c in self.record_cls.__table__.columns]

    def _to_entity(self, record) -> E:
        values = {name: getattr(record, name) for name in self._columns}
        values["status"] = EntityStatus(values["status"])
        return self.entity_cls.model_validate(values)

    def _values(self, entity: E) -> dict:
        values = {name: getattr(entity, name) for name in self._columns}
        values["status"] = entity.status.value
        return values

    def create(self, entity: E) -> E:
        try:
            with self._session_factory.begin() as session:
                session.add(self.record_cls(**self._values(entity)))
        except SQLAlchemyError as exc:
            raise RepositoryError(f"failed to create {self.record_cls.__tablename__} {entity.id}: {exc}") from exc
        return entity

    def get_by_id(self, entity_id: UUID) -> Optional[E]:
        try:
            with self._session_factory() as session:
                record = session.get(self.record_cls, entity_id)
                return self._to_entity(record) if record is not None else None
        except SQLAlchemyError as exc:
            raise RepositoryError(f"failed to load {self.record_cls.__tablename__} {entity_id}: {exc}") from exc

    def update(self, entity: E) -> bool:
        values = self._values(entity)
        values.pop("id")
        values["updated_at"] = utcnow()
        stmt = sa_update(self.record_cls).where(self.record_cls.id == entity.id).values(**values)
        try:
            with self._session_factory.begin() as session:
                return session.execute(stmt).rowcount > 0
        except SQLAlchemyError as exc:
            raise RepositoryError(f"failed to update {self.record_cls.__tablename__} {entity.id}: {exc}") from exc

    def mark_processing(self, entity_id: UUID) -> Optional[E]:
        stmt = (
            sa_update(self.record_cls)
            .where(
                self.record_cls.id == entity_id,
                self.record_cls.status.in_([s.value for s in PROCESSABLE_STATUSES]),
            )
            .values(
                status=EntityStatus.PROCESSING.value,
                extracted_data=None,
                error_message=None,
                updated_at=utcnow(),
            )
        )
        try:
            with self._session_factory.begin() as session:
                if session.execute(stmt).rowcount == 0:
                    return None
                record = session.scalars(select(self.record_cls).where(self.record_cls.id == entity_id)).one()
                return self._to_entity(record)
        except SQLAlchemyError as exc:
            raise RepositoryError(f"failed to mark {self.record_cls.__tablename__} {entity_id} processing: {exc}") from exc


class SqlAlchemyResumeRepository(_SqlAlchemyRepository[Resume], ResumeRepository):
    record_cls = ResumeRecord
    entity_cls = Resume


class SqlAlchemyReferenceLetterRepository(_SqlAlchemyRepository[ReferenceLetter], ReferenceLetterRepository):
    record_cls = ReferenceLetterRecord
    entity_cls = ReferenceLetter


def build_session_factory(database_url: str, create_tables: bool = False) -> sessionmaker:
    engine = create_engine(database_url, pool_pre_ping=True)
    if create_tables:
        Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, class_=Session, expire_on_commit=False)
