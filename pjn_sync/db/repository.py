# pjn_sync/db/repository.py
"""
Persistence port used by the sync and matching services.

Services get a ``PjnRepository`` handed to them instead of reaching for a
session themselves, so idempotent upserts and indexed lookups live in one
place and tests can run the whole pipeline against an in-memory SQLite DB.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

from sqlalchemy.orm import Session

from pjn_sync.db.database import SessionLocal

T = TypeVar("T")


class PjnRepository:
    def __init__(self, db: Session):
        self.db = db

    @classmethod
    def open(cls) -> "PjnRepository":
        """Repository over a fresh session; caller closes it."""
        return cls(SessionLocal())

    def close(self) -> None:
        self.db.close()

    # ── Reads ────────────────────────────────────────────────────────────────

    def get(self, model: Type[T], record_id: Any) -> Optional[T]:
        if record_id is None:
            return None
        return self.db.get(model, record_id)

    def find_one(self, model: Type[T], **filters: Any) -> Optional[T]:
        return self.db.query(model).filter_by(**filters).first()

    def find_all(self, model: Type[T], order_by: Any = None, limit: Optional[int] = None, **filters: Any) -> List[T]:
        query = self.db.query(model).filter_by(**filters)
        if order_by is not None:
            query = query.order_by(order_by)
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def query(self, model: Type[T]):
        return self.db.query(model)

    # ── Writes ───────────────────────────────────────────────────────────────

    def insert(self, model: Type[T], **values: Any) -> T:
        obj = model(**values)
        self.db.add(obj)
        self.db.flush()
        return obj

    def update(self, obj: T, **values: Any) -> T:
        for key, value in values.items():
            setattr(obj, key, value)
        self.db.flush()
        return obj

    def delete(self, obj: Any) -> None:
        self.db.delete(obj)
        self.db.flush()

    def find_or_create(
        self, model: Type[T], defaults: Optional[Dict[str, Any]] = None, **keys: Any
    ) -> Tuple[T, bool]:
        """Return ``(row, created)``. Existing rows are left untouched."""
        existing = self.find_one(model, **keys)
        if existing is not None:
            return existing, False
        return self.insert(model, **keys, **(defaults or {})), True

    def upsert(self, model: Type[T], keys: Dict[str, Any], values: Dict[str, Any]) -> Tuple[T, bool]:
        """Insert, or overwrite ``values`` on the row matching ``keys``."""
        existing = self.find_one(model, **keys)
        if existing is not None:
            return self.update(existing, **values), False
        return self.insert(model, **keys, **values), True

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
