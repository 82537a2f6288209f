"""
Generic data access over the shared relational store.

Operations are addressed by relation name (``donations``,
``campaign_donations``, ...). Every committed mutation is announced on the
change bus. Inside ``transaction()`` writes are flushed but not committed and
their events are held until the outer block commits.
"""
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, update, delete, inspect
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from denasetu.core.exceptions import StoreError, DuplicateRecord
from denasetu.models import RELATIONS
from denasetu.schemas.events import ChangeEvent, ChangeType
from denasetu.store.changes import ChangeBus, change_bus

logger = structlog.get_logger(__name__)


def to_record(obj) -> Dict[str, Any]:
    """Column values of a mapped row as a plain dict"""
    mapper = inspect(obj).mapper
    return {column.key: getattr(obj, column.key) for column in mapper.column_attrs}


class DataStore:
    """Query / mutate / subscribe interface over named relations"""

    def __init__(self, db: Session, bus: ChangeBus = change_bus):
        self.db = db
        self.bus = bus
        self._depth = 0
        self._pending_events: List[ChangeEvent] = []

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def model(self, relation: str):
        try:
            return RELATIONS[relation]
        except KeyError:
            raise StoreError(f"Unknown relation: {relation}")

    def _event(self, relation: str, event_type: ChangeType, row_id: str, record: Dict[str, Any]) -> ChangeEvent:
        return ChangeEvent(
            relation=relation,
            event_type=event_type,
            row_id=str(row_id),
            record=record,
            origin=self.bus.origin,
            occurred_at=datetime.now(timezone.utc),
        )

    def _finish(self, events: Iterable[ChangeEvent]):
        """Commit now, or defer to the enclosing transaction"""
        if self._depth:
            self.db.flush()
            self._pending_events.extend(events)
            return
        self.db.commit()
        for event in events:
            self.bus.publish(event)

    def _fail(self, action: str, relation: str, error: Exception):
        if not self._depth:
            self.db.rollback()
        logger.error("Store operation failed", action=action, relation=relation, error=str(error))
        if isinstance(error, IntegrityError):
            raise DuplicateRecord(f"Duplicate {relation} record") from error
        raise StoreError(f"Failed to {action} {relation}: {error}") from error

    @contextmanager
    def transaction(self):
        """Group several mutations into one commit; events are published after it"""
        self._depth += 1
        try:
            yield self
        except Exception:
            self._depth -= 1
            if not self._depth:
                self.db.rollback()
                self._pending_events = []
            raise
        self._depth -= 1
        if self._depth:
            return
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self._pending_events = []
            self._fail("commit", "transaction", e)
        events, self._pending_events = self._pending_events, []
        for event in events:
            self.bus.publish(event)

    def _apply_filters(self, query, model, filters: Optional[Dict[str, Any]]):
        for column, value in (filters or {}).items():
            attribute = getattr(model, column)
            if isinstance(value, (list, tuple, set, frozenset)):
                query = query.where(attribute.in_(list(value)))
            elif value is None:
                query = query.where(attribute.is_(None))
            else:
                query = query.where(attribute == value)
        return query

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def get(self, relation: str, row_id: str, refresh: bool = False):
        """Point lookup by primary key"""
        model = self.model(relation)
        try:
            return self.db.get(model, row_id, populate_existing=refresh)
        except SQLAlchemyError as e:
            self._fail("get", relation, e)

    def select(
        self,
        relation: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = "created_at",
        descending: bool = True,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list:
        """Filtered list with ordering; list values in ``filters`` mean IN"""
        model = self.model(relation)
        query = self._apply_filters(select(model), model, filters)
        if order_by:
            column = getattr(model, order_by)
            query = query.order_by(column.desc() if descending else column.asc())
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        try:
            return list(self.db.execute(query).scalars().all())
        except SQLAlchemyError as e:
            self._fail("select", relation, e)

    def select_by_ids(self, relation: str, ids: Iterable[str]) -> Dict[str, Any]:
        """Rows keyed by id, for joining display fields onto another list"""
        wanted = {i for i in ids if i}
        if not wanted:
            return {}
        return {row.id: row for row in self.select(relation, {"id": wanted}, order_by=None)}

    # ------------------------------------------------------------------
    # mutations
    # ------------------------------------------------------------------

    def insert(self, relation: str, values: Dict[str, Any]):
        """Insert one row and return it"""
        model = self.model(relation)
        try:
            row = model(**values)
            self.db.add(row)
            self.db.flush()
            event = self._event(relation, ChangeType.INSERT, row.id, to_record(row))
            self._finish([event])
        except SQLAlchemyError as e:
            self._fail("insert", relation, e)
        logger.debug("Row inserted", relation=relation, row_id=row.id)
        return row

    def update(
        self,
        relation: str,
        row_id: str,
        values: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Update one row by id.

        ``expected`` adds column predicates to the WHERE clause, turning the
        write into a compare-and-set. Returns the number of rows changed (0 or 1).
        """
        model = self.model(relation)
        statement = update(model).where(model.id == row_id)
        statement = self._apply_filters(statement, model, expected)
        statement = statement.values(**values).execution_options(synchronize_session=False)
        try:
            result = self.db.execute(statement)
            changed = result.rowcount
            events = []
            if changed:
                row = self.db.get(model, row_id, populate_existing=True)
                events.append(self._event(relation, ChangeType.UPDATE, row_id, to_record(row)))
            self._finish(events)
        except SQLAlchemyError as e:
            self._fail("update", relation, e)
        return changed

    def increment(self, relation: str, row_id: str, column: str, delta: Any) -> int:
        """Atomic ``column = column + delta``"""
        model = self.model(relation)
        return self.update(relation, row_id, {column: getattr(model, column) + delta})

    def delete(self, relation: str, row_id: str) -> bool:
        model = self.model(relation)
        try:
            row = self.db.get(model, row_id)
            if row is None:
                return False
            record = to_record(row)
            self.db.execute(delete(model).where(model.id == row_id))
            self.db.expunge(row)
            self._finish([self._event(relation, ChangeType.DELETE, row_id, record)])
        except SQLAlchemyError as e:
            self._fail("delete", relation, e)
        return True


def money(value) -> Decimal:
    """Normalise an amount to a two-place Decimal"""
    return Decimal(str(value)).quantize(Decimal("0.01"))
