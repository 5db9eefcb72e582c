"""
Compile client-supplied filter conditions into Django queries.

Every list endpoint in the dashboard receives the same loose shape of filter
terms::

    [
        {"field": "type", "operator": "eq", "value": "LDAP"},
        {"field": "nickName", "operator": "like", "value": "ali"},
        {"field": "quick", "operator": "quick", "value": "prod"},
    ]

:py:func:`search` turns those into one ANDed :py:class:`~django.db.models.Q`,
counts the matching records, and returns one window of them ordered newest
first.
"""

import operator
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from functools import reduce
from typing import Any, Generic, TypeVar

from django.core.exceptions import FieldDoesNotExist, ValidationError
from django.db import DatabaseError, models
from django.db.models import Q
from django.utils.text import camel_case_to_spaces

from .exceptions import FilterError, StorageError
from .typing import ConditionData, ConditionsData

#: The sentinel field name for the multi-field substring search
QUICK = "quick"
EQ = "eq"
NE = "ne"
LIKE = "like"
NOT_LIKE = "not like"

#: Accepted spellings of each operator
OPERATOR_ALIASES: dict[str, str] = {
    EQ: EQ,
    NE: NE,
    LIKE: LIKE,
    NOT_LIKE: NOT_LIKE,
    "not-like": NOT_LIKE,
    "not_like": NOT_LIKE,
    QUICK: QUICK,
}

#: Default ordering for search results: newest first.  The primary key breaks
#: ties so that windows never overlap.
DEFAULT_ORDERING: tuple[str, ...] = ("-create_at",)

INTEGER_RE = re.compile(r"^-?\d+$")

M = TypeVar("M", bound=models.Model)


@dataclass(frozen=True)
class Condition:
    """
    One filter term.

    Args:
        field: the (camelCase or snake_case) field name, or ``"quick"``
        operator: one of ``eq``, ``ne``, ``like``, ``not like``, ``quick``
        value: the value to compare against, as the client sent it

    """

    field: str
    operator: str
    value: str = ""

    @classmethod
    def from_dict(cls, data: ConditionData) -> "Condition":
        """
        Build a :py:class:`Condition` from a request payload item.

        Raises:
            FilterError: ``data`` has no ``field``

        """
        try:
            name = data["field"]
        except KeyError as e:
            msg = "Filter condition is missing its field"
            raise FilterError(msg) from e
        op = data.get("operator") or (QUICK if name == QUICK else EQ)
        value = data.get("value")
        return cls(
            field=str(name),
            operator=str(op),
            value="" if value is None else str(value),
        )

    @property
    def is_quick(self) -> bool:
        return self.field == QUICK


@dataclass(frozen=True)
class QueryWindow:
    """
    Which slice of the filtered results to return.  A ``page_size`` of 0
    means return everything.
    """

    page_num: int = 1
    page_size: int = 0

    def __post_init__(self) -> None:
        if self.page_num < 1:
            msg = f"Page number must be 1 or greater, not {self.page_num}"
            raise FilterError(msg)
        if self.page_size < 0:
            msg = f"Page size must be 0 or greater, not {self.page_size}"
            raise FilterError(msg)

    @property
    def bounded(self) -> bool:
        return self.page_size > 0

    @property
    def offset(self) -> int:
        return (self.page_num - 1) * self.page_size


@dataclass
class PageResult(Generic[M]):
    """
    One window of search results.  ``total`` counts every record matching
    the conditions, not just the ones in ``items``.
    """

    items: list[M] = field(default_factory=list)
    total: int = 0


def parse_conditions(data: ConditionsData | None) -> list[Condition]:
    """
    Build :py:class:`Condition` objects from a request payload, which may be
    a list of condition dicts or a dict of key to condition dict.
    """
    if not data:
        return []
    items: Iterable[ConditionData] = data.values() if isinstance(data, Mapping) else data
    return [Condition.from_dict(item) for item in items]


def normalize_field_name(name: str) -> str:
    """
    Convert a client field name (``nickName``, ``createAt``) to the model field
    name (``nick_name``, ``create_at``).
    """
    return camel_case_to_spaces(name).replace(" ", "_")


def parse_value_type(value: str) -> bool | int | str:
    """
    Guess the type of a condition value from what it looks like: ``"true"``
    and ``"false"`` become booleans, integers become ``int``, and everything
    else stays a string.
    """
    lowered = value.strip().lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    if INTEGER_RE.match(value.strip()):
        return int(value)
    return value


def get_model_field(model: type[models.Model], name: str) -> models.Field:
    """
    Resolve a client field name to a concrete field on ``model``.

    Raises:
        FilterError: ``model`` has no such field

    """
    field_name = normalize_field_name(name)
    try:
        model_field = model._meta.get_field(field_name)
    except FieldDoesNotExist as e:
        msg = f'"{name}" is not a valid field on {model.__name__}'
        raise FilterError(msg) from e
    if not model_field.concrete:
        msg = f'"{name}" is not a filterable field on {model.__name__}'
        raise FilterError(msg)
    return model_field


def coerce_value(model_field: models.Field, value: str) -> Any:
    """
    Convert the string ``value`` to the type ``model_field`` stores.

    Raises:
        FilterError: ``value`` does not fit the field's type

    """
    parsed = parse_value_type(value)
    if isinstance(model_field, models.BooleanField):
        if not isinstance(parsed, bool):
            msg = f'"{value}" is not a valid value for boolean field "{model_field.name}"'
            raise FilterError(msg)
        return parsed
    if isinstance(model_field, models.IntegerField):
        if isinstance(parsed, bool) or not isinstance(parsed, int):
            msg = f'"{value}" is not a valid value for integer field "{model_field.name}"'
            raise FilterError(msg)
        return parsed
    try:
        return model_field.to_python(value)
    except ValidationError as e:
        msg = f'"{value}" is not a valid value for field "{model_field.name}"'
        raise FilterError(msg) from e


def quick_filter(model: type[models.Model], value: str) -> Q:
    """
    Build the OR-group of case-insensitive substring matches across
    ``model.quick_search_fields``.

    Raises:
        FilterError: ``model`` does not support quick search

    """
    fields: Sequence[str] = getattr(model, "quick_search_fields", ())
    if not fields:
        msg = f"{model.__name__} does not support quick search"
        raise FilterError(msg)
    return reduce(operator.or_, (Q(**{f"{name}__icontains": value}) for name in fields))


def compile_condition(model: type[models.Model], condition: Condition) -> Q:
    """
    Compile a single :py:class:`Condition` against ``model``.

    Raises:
        FilterError: the field, operator or value is not valid for ``model``

    """
    if condition.is_quick:
        return quick_filter(model, condition.value)
    op = OPERATOR_ALIASES.get(condition.operator.strip().lower())
    if op is None or op == QUICK:
        msg = f'Unknown filter operator: "{condition.operator}"'
        raise FilterError(msg)
    model_field = get_model_field(model, condition.field)
    name = model_field.name
    if op in (EQ, NE):
        term = Q(**{name: coerce_value(model_field, condition.value)})
        return term if op == EQ else ~term
    term = Q(**{f"{name}__icontains": condition.value})
    return term if op == LIKE else ~term


def compile_conditions(model: type[models.Model], conditions: Iterable[Condition]) -> Q:
    """
    AND together every compiled condition.  No conditions compiles to an
    empty :py:class:`~django.db.models.Q`, which matches everything.
    """
    q = Q()
    for condition in conditions:
        q &= compile_condition(model, condition)
    return q


def search(
    queryset: models.QuerySet[M] | type[M],
    conditions: Iterable[Condition] | ConditionsData | None = None,
    page_num: int = 1,
    page_size: int = 0,
    order_by: Sequence[str] = DEFAULT_ORDERING,
) -> PageResult[M]:
    """
    Filter, count and window a model's records.

    Args:
        queryset: the records to search, or a model class to search all of them
        conditions: :py:class:`Condition` objects, or the raw request payload

    Keyword Args:
        page_num: 1-based page number
        page_size: records per page; 0 returns every matching record
        order_by: the ordering to apply before windowing

    Raises:
        FilterError: a condition or the window is invalid
        StorageError: the database query failed

    Returns:
        The window of matching records and the total number of matches.

    """
    if isinstance(queryset, type):
        queryset = queryset._default_manager.all()
    window = QueryWindow(page_num=page_num, page_size=page_size)
    if conditions is None or isinstance(conditions, Mapping):
        conditions = parse_conditions(conditions)
    else:
        conditions = [
            c if isinstance(c, Condition) else Condition.from_dict(c) for c in conditions
        ]
    q = compile_conditions(queryset.model, conditions)
    qs = queryset.filter(q).order_by(*order_by, "-pk")
    try:
        total = qs.count()
        if window.bounded:
            qs = qs[window.offset : window.offset + window.page_size]
        items = list(qs)
    except DatabaseError as e:
        msg = f"Searching {queryset.model.__name__} failed: {e}"
        raise StorageError(msg) from e
    return PageResult(items=items, total=total)
