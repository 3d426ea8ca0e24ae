"""AdBox — Persistent Store.

Thin upsert-by-id layer over SQLModel. Every call runs in its own short
transaction; the row is read with ``SELECT … FOR UPDATE`` (a no-op on SQLite)
so merge callbacks always see the state current at write time.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Type, TypeVar

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from adbox.core.logging import get_logger

logger = get_logger("store")

ModelT = TypeVar("ModelT", bound=SQLModel)

MAX_UPSERT_ATTEMPTS = 3


class StoreError(Exception):
    """Raised when a store write or read fails."""


class NotFoundError(StoreError):
    """Raised when an update targets a row that does not exist."""


class Store:
    """Upsert-keyed access to the AdBox tables."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    @staticmethod
    def _locked_get(session: Session, model: Type[ModelT], id: Any) -> Optional[ModelT]:
        stmt = select(model).where(model.id == id).with_for_update()
        return session.exec(stmt).first()

    # ── Upserts ──

    def upsert_with(
        self,
        model: Type[ModelT],
        id: Any,
        merge: Callable[[Optional[ModelT]], Dict[str, Any]],
    ) -> ModelT:
        """Upsert ``id`` with fields computed from the row as it is right now.

        ``merge`` receives the locked existing row (or None) and returns the
        fields to write. If a concurrent writer inserts the same key first, the
        insert fails on the primary key and the merge is re-run against that row.
        """
        for attempt in range(1, MAX_UPSERT_ATTEMPTS + 1):
            with self._session() as session:
                try:
                    existing = self._locked_get(session, model, id)
                    fields = merge(existing)
                    if existing is None:
                        row = model(id=id, **fields)
                    else:
                        row = existing
                        for key, value in fields.items():
                            setattr(row, key, value)
                    session.add(row)
                    session.commit()
                    session.refresh(row)
                    return row
                except IntegrityError as e:
                    session.rollback()
                    if attempt == MAX_UPSERT_ATTEMPTS:
                        raise StoreError(
                            f"Upsert {model.__name__}:{id} kept conflicting"
                        ) from e
                    logger.debug(
                        f"Concurrent insert on {model.__name__}:{id}, retrying as update"
                    )
                except SQLAlchemyError as e:
                    session.rollback()
                    raise StoreError(f"Upsert {model.__name__}:{id} failed: {e}") from e
        raise StoreError(f"Upsert {model.__name__}:{id} failed")

    def upsert(
        self,
        model: Type[ModelT],
        id: Any,
        create: Dict[str, Any],
        update: Dict[str, Any],
    ) -> ModelT:
        """Create with ``create`` fields or overwrite ``update`` fields."""
        return self.upsert_with(
            model, id, lambda existing: create if existing is None else update
        )

    def update(self, model: Type[ModelT], id: Any, fields: Dict[str, Any]) -> ModelT:
        """Patch an existing row; raises NotFoundError when absent."""
        with self._session() as session:
            try:
                row = self._locked_get(session, model, id)
                if row is None:
                    raise NotFoundError(f"{model.__name__} {id} not found")
                for key, value in fields.items():
                    setattr(row, key, value)
                session.add(row)
                session.commit()
                session.refresh(row)
                return row
            except SQLAlchemyError as e:
                session.rollback()
                raise StoreError(f"Update {model.__name__}:{id} failed: {e}") from e

    def add(self, row: ModelT) -> ModelT:
        """Insert a row without a natural key (e.g. SyncLog)."""
        with self._session() as session:
            try:
                session.add(row)
                session.commit()
                session.refresh(row)
                return row
            except SQLAlchemyError as e:
                session.rollback()
                raise StoreError(f"Insert {type(row).__name__} failed: {e}") from e

    def delete(self, model: Type[ModelT], id: Any) -> bool:
        """Delete a row by id; returns False when it was already gone."""
        with self._session() as session:
            try:
                row = self._locked_get(session, model, id)
                if row is None:
                    return False
                session.delete(row)
                session.commit()
                return True
            except SQLAlchemyError as e:
                session.rollback()
                raise StoreError(f"Delete {model.__name__}:{id} failed: {e}") from e

    def replace(
        self,
        model: Type[ModelT],
        old_id: Any,
        new_id: Any,
        merge: Callable[[ModelT, Optional[ModelT]], Dict[str, Any]],
    ) -> ModelT:
        """Atomically move ``old_id`` to ``new_id``.

        ``merge(old_row, row_at_new_id)`` returns the fields for the surviving
        row. The old row is deleted in the same transaction, so the two ids are
        never both visible.
        """
        with self._session() as session:
            try:
                old = self._locked_get(session, model, old_id)
                if old is None:
                    raise NotFoundError(f"{model.__name__} {old_id} not found")
                target = self._locked_get(session, model, new_id)
                fields = merge(old, target)
                session.delete(old)
                session.flush()
                if target is None:
                    target = model(id=new_id, **fields)
                else:
                    for key, value in fields.items():
                        setattr(target, key, value)
                session.add(target)
                session.commit()
                session.refresh(target)
                return target
            except SQLAlchemyError as e:
                session.rollback()
                raise StoreError(
                    f"Replace {model.__name__}:{old_id}->{new_id} failed: {e}"
                ) from e

    # ── Reads ──

    def find_by_id(self, model: Type[ModelT], id: Any) -> Optional[ModelT]:
        with self._session() as session:
            return session.get(model, id)

    def find_by_scope(
        self,
        model: Type[ModelT],
        scope_field: str,
        scope_ids: Iterable[Any],
        limit: Optional[int] = None,
        order_by: Any = None,
    ) -> List[ModelT]:
        """Rows whose ``scope_field`` is one of ``scope_ids``."""
        ids = list(scope_ids)
        if not ids:
            return []
        column = getattr(model, scope_field)
        return self.find_where(model, column.in_(ids), order_by=order_by, limit=limit)

    def find_where(
        self,
        model: Type[ModelT],
        *conditions: Any,
        order_by: Any = None,
        limit: Optional[int] = None,
    ) -> List[ModelT]:
        stmt = select(model)
        if conditions:
            stmt = stmt.where(*conditions)
        if order_by is not None:
            if isinstance(order_by, (list, tuple)):
                stmt = stmt.order_by(*order_by)
            else:
                stmt = stmt.order_by(order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session() as session:
            try:
                return list(session.exec(stmt).all())
            except SQLAlchemyError as e:
                raise StoreError(f"Query on {model.__name__} failed: {e}") from e


def get_store() -> Store:
    """Dependency — the store bound to the application engine."""
    from adbox.database import engine

    return Store(engine)
