"""Generic record access over the tables declared in :mod:`app.models`.

Every operation takes a collection (table) name and returns plain ``dict``
records, so route handlers never build SQL themselves.
"""

import logging
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    Connection,
    Engine,
    Table,
    and_,
    delete,
    func,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.errors import ConflictError, DataAccessError, NotFoundError
from app.core.observability import log_event
import app.models  # noqa: F401
from app.db.base import Base
from app.db.filters import Conditions, TextSearch, compile_filters, normalize

logger = logging.getLogger("productivity.database")

Record = dict[str, Any]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class FindOptions:
    order_by: str | None = None
    ascending: bool = False
    limit: int | None = None
    offset: int | None = None


@dataclass(frozen=True)
class JoinSpec:
    """Embed columns of a related row, reached through a many-to-one key."""

    collection: str
    columns: Sequence[str] = field(default_factory=tuple)
    via: str | None = None
    alias: str | None = None

    @property
    def key(self) -> str:
        return self.alias or self.collection


class Database:
    def __init__(self, engine: Engine, *, connection: Connection | None = None):
        self.engine = engine
        self._connection = connection

    # -- plumbing ---------------------------------------------------------

    def _table(self, collection: str) -> Table:
        table = Base.metadata.tables.get(collection)
        if table is None:
            raise DataAccessError(f"Unknown collection '{collection}'")
        return table

    @contextmanager
    def _begin(self) -> Iterator[Connection]:
        if self._connection is not None:
            yield self._connection
            return
        try:
            with self.engine.begin() as conn:
                yield conn
        except IntegrityError as exc:
            log_event(logger, logging.INFO, "db_integrity_error", error=str(exc.orig))
            raise ConflictError("Record conflicts with an existing record") from exc
        except SQLAlchemyError as exc:
            log_event(logger, logging.ERROR, "db_error", error=str(exc))
            raise DataAccessError(details={"error": str(exc)}) from exc

    @contextmanager
    def transaction(self) -> Iterator["Database"]:
        """Run several operations on one connection; all commit or none do."""
        if self._connection is not None:
            yield self
            return
        with self._begin() as conn:
            yield Database(self.engine, connection=conn)

    def close(self) -> None:
        self.engine.dispose()

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            log_event(logger, logging.WARNING, "db_ping_failed", error=str(exc))
            return False
        return True

    def _apply_options(self, stmt, table: Table, options: FindOptions | None):
        if options is None:
            return stmt
        if options.order_by:
            if options.order_by not in table.c:
                raise DataAccessError(f"Unknown column '{options.order_by}' on '{table.name}'")
            column = table.c[options.order_by]
            stmt = stmt.order_by(column.asc() if options.ascending else column.desc(), table.c.id.asc())
        if options.limit is not None:
            stmt = stmt.limit(options.limit)
        if options.offset:
            stmt = stmt.offset(options.offset)
        return stmt

    @staticmethod
    def _where(stmt, table: Table, conditions: Conditions):
        clauses = compile_filters(table, conditions)
        if clauses:
            stmt = stmt.where(and_(*clauses))
        return stmt

    # -- reads ------------------------------------------------------------

    def find_by_id(self, collection: str, record_id: str) -> Record | None:
        table = self._table(collection)
        with self._begin() as conn:
            row = conn.execute(select(table).where(table.c.id == record_id)).mappings().first()
        return dict(row) if row else None

    def find_by_field(self, collection: str, field_name: str, value: Any) -> list[Record]:
        return self.find_all(collection, {field_name: value})

    def find_all(
        self,
        collection: str,
        conditions: Conditions = None,
        options: FindOptions | None = None,
    ) -> list[Record]:
        table = self._table(collection)
        stmt = self._where(select(table), table, conditions)
        stmt = self._apply_options(stmt, table, options)
        with self._begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [dict(row) for row in rows]

    def find_one(self, collection: str, conditions: Conditions) -> Record | None:
        rows = self.find_all(collection, conditions, FindOptions(limit=1))
        return rows[0] if rows else None

    def count(self, collection: str, conditions: Conditions = None) -> int:
        table = self._table(collection)
        stmt = self._where(select(func.count()).select_from(table), table, conditions)
        with self._begin() as conn:
            return int(conn.execute(stmt).scalar_one())

    def count_by(self, collection: str, field_name: str, conditions: Conditions = None) -> dict[Any, int]:
        table = self._table(collection)
        if field_name not in table.c:
            raise DataAccessError(f"Unknown column '{field_name}' on '{table.name}'")
        column = table.c[field_name]
        stmt = self._where(select(column, func.count()).select_from(table), table, conditions)
        with self._begin() as conn:
            rows = conn.execute(stmt.group_by(column)).all()
        return {value: int(total) for value, total in rows}

    def search(
        self,
        collection: str,
        term: str,
        fields: Sequence[str],
        options: FindOptions | None = None,
        conditions: Conditions = None,
    ) -> list[Record]:
        filters = normalize(conditions) + [TextSearch(term, fields)]
        return self.find_all(collection, filters, options)

    def find_with_joins(
        self,
        collection: str,
        joins: Sequence[JoinSpec],
        conditions: Conditions = None,
        options: FindOptions | None = None,
    ) -> list[Record]:
        table = self._table(collection)
        columns = list(table.c)
        from_clause = table
        embedded: list[tuple[JoinSpec, list[str], str]] = []

        for index, spec in enumerate(joins):
            related = self._table(spec.collection)
            via = spec.via or self._infer_foreign_key(table, related)
            if via not in table.c:
                raise DataAccessError(f"Unknown column '{via}' on '{table.name}'")
            aliased = related.alias(f"j{index}_{spec.key}")
            wanted = list(spec.columns) or [column.name for column in related.c]
            if "id" not in wanted:
                wanted.insert(0, "id")
            prefix = f"j{index}__"
            for name in wanted:
                if name not in aliased.c:
                    raise DataAccessError(f"Unknown column '{name}' on '{related.name}'")
                columns.append(aliased.c[name].label(f"{prefix}{name}"))
            from_clause = from_clause.outerjoin(aliased, table.c[via] == aliased.c.id)
            embedded.append((spec, wanted, prefix))

        stmt = self._where(select(*columns).select_from(from_clause), table, conditions)
        stmt = self._apply_options(stmt, table, options)
        with self._begin() as conn:
            rows = conn.execute(stmt).mappings().all()

        records = []
        for row in rows:
            record = {column.name: row[column.name] for column in table.c}
            for spec, wanted, prefix in embedded:
                nested = {name: row[f"{prefix}{name}"] for name in wanted}
                record[spec.key] = nested if nested["id"] is not None else None
            records.append(record)
        return records

    @staticmethod
    def _infer_foreign_key(table: Table, related: Table) -> str:
        candidates = [
            column.name
            for column in table.c
            for fk in column.foreign_keys
            if fk.column.table.name == related.name
        ]
        if len(candidates) != 1:
            raise DataAccessError(
                f"Cannot infer join from '{table.name}' to '{related.name}'; pass 'via'"
            )
        return candidates[0]

    # -- writes -----------------------------------------------------------

    def _prepare_insert(self, table: Table, data: Mapping[str, Any]) -> Record:
        values = dict(data)
        unknown = [key for key in values if key not in table.c]
        if unknown:
            raise DataAccessError(f"Unknown column(s) {unknown} on '{table.name}'")
        values.setdefault("id", str(uuid.uuid4()))
        now = utcnow()
        if "created_at" in table.c:
            values.setdefault("created_at", now)
        if "updated_at" in table.c:
            values.setdefault("updated_at", now)
        return values

    def create(self, collection: str, data: Mapping[str, Any]) -> Record:
        table = self._table(collection)
        values = self._prepare_insert(table, data)
        with self._begin() as conn:
            conn.execute(insert(table).values(values))
            row = conn.execute(select(table).where(table.c.id == values["id"])).mappings().one()
        return dict(row)

    def bulk_create(self, collection: str, rows: Sequence[Mapping[str, Any]]) -> list[Record]:
        if not rows:
            return []
        table = self._table(collection)
        prepared = [self._prepare_insert(table, row) for row in rows]
        ids = [values["id"] for values in prepared]
        with self._begin() as conn:
            for values in prepared:
                conn.execute(insert(table).values(values))
            found = conn.execute(select(table).where(table.c.id.in_(ids))).mappings().all()
        by_id = {row["id"]: dict(row) for row in found}
        return [by_id[record_id] for record_id in ids]

    def update(
        self,
        collection: str,
        record_id: str,
        data: Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> Record:
        table = self._table(collection)
        values = dict(data)
        for protected in ("id", "created_at", "version"):
            values.pop(protected, None)
        unknown = [key for key in values if key not in table.c]
        if unknown:
            raise DataAccessError(f"Unknown column(s) {unknown} on '{table.name}'")
        if "updated_at" in table.c:
            values["updated_at"] = utcnow()

        stmt = update(table).where(table.c.id == record_id)
        if "version" in table.c:
            values["version"] = table.c.version + 1
            if expected_version is not None:
                stmt = stmt.where(table.c.version == expected_version)

        with self._begin() as conn:
            result = conn.execute(stmt.values(values))
            if result.rowcount == 0:
                exists = conn.execute(select(table.c.id).where(table.c.id == record_id)).first()
                if exists and expected_version is not None:
                    raise ConflictError(
                        "Record was modified by another request",
                        details={"expected_version": expected_version},
                    )
                raise NotFoundError(f"Record not found in {collection}")
            row = conn.execute(select(table).where(table.c.id == record_id)).mappings().one()
        return dict(row)

    def delete(self, collection: str, record_id: str) -> Record:
        table = self._table(collection)
        with self._begin() as conn:
            row = conn.execute(select(table).where(table.c.id == record_id)).mappings().first()
            if row is None:
                raise NotFoundError(f"Record not found in {collection}")
            conn.execute(delete(table).where(table.c.id == record_id))
        return dict(row)

    def delete_where(self, collection: str, conditions: Conditions) -> int:
        table = self._table(collection)
        clauses = compile_filters(table, conditions)
        if not clauses:
            raise DataAccessError("Refusing to delete without conditions")
        with self._begin() as conn:
            result = conn.execute(delete(table).where(and_(*clauses)))
        return int(result.rowcount or 0)

    def next_sequence(self, organization_id: str, name: str) -> int:
        """Atomically advance a per-organization counter. Values are never reused."""
        table = self._table("sequences")
        key = and_(table.c.organization_id == organization_id, table.c.name == name)
        with self._begin() as conn:
            result = conn.execute(
                update(table).where(key).values(value=table.c.value + 1, updated_at=utcnow())
            )
            if result.rowcount == 0:
                conn.execute(
                    insert(table).values(
                        id=str(uuid.uuid4()),
                        organization_id=organization_id,
                        name=name,
                        value=1,
                        updated_at=utcnow(),
                    )
                )
            return int(conn.execute(select(table.c.value).where(key)).scalar_one())
