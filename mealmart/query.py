"""
Composable query builder shared by every list endpoint.

Turns a flat mapping of client-supplied query parameters into a narrowed
SQLAlchemy ``Query`` plus pagination metadata. Each stage only records what
it contributes; ``all()`` and ``count_total()`` both build from the same
predicate, so the reported total always matches the returned page.

Example:
    builder = (
        QueryBuilder(db.query(models.Meal), params, models.Meal)
        .search(["meal_name", "description"])
        .filter()
        .filter_by_range(["price"])
        .sort()
        .paginate()
        .fields()
    )
    meals = builder.all()
    meta = builder.count_total()
"""
import logging
import math
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional
from pydantic.alias_generators import to_snake
from sqlalchemy import or_
from sqlalchemy.orm import Query, load_only

logger = logging.getLogger(__name__)

RESERVED_KEYS = {"search_term", "sort", "limit", "page", "fields"}
DEFAULT_SORT = "-created_at"
DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100

_TRUE_VALUES = {"true", "1", "yes"}
_FALSE_VALUES = {"false", "0", "no"}


def _coerce(value: Any, python_type: type) -> Any:
    """Convert a raw query-string value to a column's Python type, or raise ValueError."""
    if python_type is bool:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ValueError(f"not a boolean: {value!r}")
    if python_type is Decimal:
        try:
            return Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"not a decimal: {value!r}")
    return python_type(value)


def _positive_int(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number >= 1 else default


class QueryBuilder:
    """
    Query pipeline over one model.

    Args:
        model_query: Base query, possibly already scoped (e.g. to one customer)
        query: Client parameters; keys may be camelCase or snake_case
        model: ORM model whose columns may be searched, filtered, sorted and projected
    """

    def __init__(self, model_query: Query, query: Dict[str, Any], model):
        self.model_query = model_query
        self.model = model
        self.query = {to_snake(key): value for key, value in (query or {}).items()}
        self._columns = {column.key: column for column in model.__table__.columns}
        self._criteria: List[Any] = []
        self._order_by: List[Any] = []
        self._range_keys: set = set()
        self._page: Optional[int] = None
        self._limit: Optional[int] = None
        self.selected_fields: Optional[List[str]] = None

    def _column(self, name: str):
        if name not in self._columns:
            return None
        return getattr(self.model, name)

    def search(self, searchable_fields: Iterable[str]) -> "QueryBuilder":
        """Case-insensitive substring match on ``searchTerm``, OR-ed across fields."""
        term = self.query.get("search_term")
        if term is None or str(term).strip() == "":
            return self
        clauses = [
            column.icontains(str(term).strip(), autoescape=True)
            for column in (self._column(name) for name in searchable_fields)
            if column is not None
        ]
        if clauses:
            self._criteria.append(or_(*clauses))
        return self

    def filter(self, exclude: Iterable[str] = ()) -> "QueryBuilder":
        """Every non-reserved key naming a column becomes an equality filter."""
        excluded = RESERVED_KEYS | {to_snake(key) for key in exclude} | self._range_keys
        for key, value in self.query.items():
            if key in excluded or key.endswith(("_min", "_max")):
                continue
            column = self._column(key)
            if column is None or value is None:
                continue
            try:
                coerced = _coerce(value, self._columns[key].type.python_type)
            except (ValueError, TypeError, NotImplementedError):
                logger.debug(f"Ignoring filter {key}={value!r}: cannot coerce")
                continue
            self._criteria.append(column == coerced)
        return self

    def filter_by_range(self, field_specs: Iterable[str]) -> "QueryBuilder":
        """
        Inclusive bounds from ``<field>Min`` / ``<field>Max`` keys.

        Malformed bounds are skipped so a bad value widens the result
        rather than failing the request.
        """
        for field in field_specs:
            name = to_snake(field)
            column = self._column(name)
            if column is None:
                continue
            for suffix, compare in (("_min", column.__ge__), ("_max", column.__le__)):
                key = f"{name}{suffix}"
                self._range_keys.add(key)
                raw = self.query.get(key)
                if raw is None or str(raw).strip() == "":
                    continue
                try:
                    bound = Decimal(str(raw).strip())
                except InvalidOperation:
                    logger.debug(f"Ignoring range bound {key}={raw!r}")
                    continue
                if not bound.is_finite():
                    continue
                self._criteria.append(compare(bound))
        return self

    def sort(self, exclude: Iterable[str] = ()) -> "QueryBuilder":
        """
        Comma-separated fields, ``-`` prefix for descending; default newest first.

        Columns in ``exclude`` are not sortable, so a view that hides a column
        cannot be ranked by it either.
        """
        excluded = {to_snake(key) for key in exclude}
        raw = self.query.get("sort") or DEFAULT_SORT
        order_by = []
        for part in str(raw).split(","):
            part = part.strip()
            if not part:
                continue
            descending = part.startswith("-")
            name = to_snake(part.lstrip("-"))
            column = None if name in excluded else self._column(name)
            if column is None:
                continue
            order_by.append(column.desc() if descending else column.asc())
        if not order_by and "created_at" in self._columns:
            order_by.append(self.model.created_at.desc())
        self._order_by = order_by
        return self

    def paginate(self) -> "QueryBuilder":
        self._page = _positive_int(self.query.get("page"), DEFAULT_PAGE)
        self._limit = min(_positive_int(self.query.get("limit"), DEFAULT_LIMIT), MAX_LIMIT)
        return self

    def fields(self) -> "QueryBuilder":
        """Inclusion projection from a comma-separated ``fields`` list."""
        raw = self.query.get("fields")
        if not raw:
            return self
        selected = [
            to_snake(name.strip().lstrip("-"))
            for name in str(raw).split(",")
            if name.strip()
        ]
        selected = [name for name in selected if name in self._columns]
        if selected:
            primary_keys = [column.key for column in self.model.__table__.primary_key.columns]
            self.selected_fields = primary_keys + [name for name in selected if name not in primary_keys]
        return self

    @property
    def page(self) -> int:
        return self._page or DEFAULT_PAGE

    @property
    def limit(self) -> int:
        return self._limit or DEFAULT_LIMIT

    def filtered_query(self) -> Query:
        """Base query narrowed by search and filters, without order or paging."""
        result = self.model_query
        if self._criteria:
            result = result.filter(*self._criteria)
        return result

    def build(self) -> Query:
        result = self.filtered_query()
        if self._order_by:
            result = result.order_by(*self._order_by)
        if self.selected_fields:
            result = result.options(
                load_only(*(getattr(self.model, name) for name in self.selected_fields))
            )
        if self._page is not None:
            result = result.offset((self.page - 1) * self.limit).limit(self.limit)
        return result

    def all(self) -> list:
        return self.build().all()

    def count_total(self) -> Dict[str, int]:
        """Pagination metadata from a count over the same predicate as the page."""
        total = self.filtered_query().order_by(None).count()
        return {
            "page": self.page,
            "limit": self.limit,
            "total": total,
            "totalPages": math.ceil(total / self.limit) if total else 0,
        }

    def project(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Drop keys outside the ``fields`` projection from a serialized record."""
        if not self.selected_fields:
            return record
        wanted = set(self.selected_fields)
        return {key: value for key, value in record.items() if to_snake(key) in wanted}
