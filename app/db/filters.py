"""Filter expressions understood by :class:`app.db.database.Database`.

Conditions are passed as a list of filter values. Each variant knows how to
render itself against a table, so the set of supported predicates is closed
and explicit.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Union

from sqlalchemy import Column, ColumnElement, Table, and_, false, or_

from app.core.errors import DataAccessError


def _column(table: Table, field: str) -> Column:
    try:
        return table.c[field]
    except KeyError as exc:
        raise DataAccessError(f"Unknown column '{field}' on '{table.name}'") from exc


@dataclass(frozen=True)
class Eq:
    field: str
    value: Any

    def to_clause(self, table: Table) -> ColumnElement[bool]:
        column = _column(table, self.field)
        if self.value is None:
            return column.is_(None)
        return column == self.value


@dataclass(frozen=True)
class In:
    field: str
    values: tuple[Any, ...]

    def __init__(self, field: str, values: Iterable[Any]):
        object.__setattr__(self, "field", field)
        object.__setattr__(self, "values", tuple(values))

    def to_clause(self, table: Table) -> ColumnElement[bool]:
        if not self.values:
            return false()
        return _column(table, self.field).in_(self.values)


@dataclass(frozen=True)
class Range:
    field: str
    gte: Any = None
    lte: Any = None
    gt: Any = None
    lt: Any = None

    def to_clause(self, table: Table) -> ColumnElement[bool] | None:
        column = _column(table, self.field)
        clauses = []
        if self.gte is not None:
            clauses.append(column >= self.gte)
        if self.lte is not None:
            clauses.append(column <= self.lte)
        if self.gt is not None:
            clauses.append(column > self.gt)
        if self.lt is not None:
            clauses.append(column < self.lt)
        if not clauses:
            return None
        if len(clauses) == 1:
            return clauses[0]
        return and_(*clauses)


@dataclass(frozen=True)
class TextSearch:
    term: str
    fields: tuple[str, ...]

    def __init__(self, term: str, fields: Iterable[str]):
        object.__setattr__(self, "term", term)
        object.__setattr__(self, "fields", tuple(fields))

    def to_clause(self, table: Table) -> ColumnElement[bool] | None:
        term = (self.term or "").strip()
        if not term or not self.fields:
            return None
        return or_(
            *[_column(table, field).icontains(term, autoescape=True) for field in self.fields]
        )


Filter = Union[Eq, In, Range, TextSearch]
Conditions = Union[Iterable[Filter], Mapping[str, Any], None]


def conditions(mapping: Mapping[str, Any] | None) -> list[Filter]:
    """Translate a plain mapping: lists become membership tests, ``None`` is skipped."""
    if not mapping:
        return []
    filters: list[Filter] = []
    for field, value in mapping.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set, frozenset)):
            filters.append(In(field, value))
        else:
            filters.append(Eq(field, value))
    return filters


def normalize(value: Conditions) -> list[Filter]:
    if value is None:
        return []
    if isinstance(value, Mapping):
        return conditions(value)
    return list(value)


def compile_filters(table: Table, value: Conditions) -> list[ColumnElement[bool]]:
    clauses = []
    for item in normalize(value):
        if not isinstance(item, (Eq, In, Range, TextSearch)):
            raise DataAccessError(f"Unsupported filter: {item!r}")
        clause = item.to_clause(table)
        if clause is not None:
            clauses.append(clause)
    return clauses
