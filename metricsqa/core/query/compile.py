"""
COMPILE MODULE - Turn model-produced query documents into SQLAlchemy statements

The generation model writes document-store style queries:
    filter:   {"circle": "Karnataka", "availability_pct": {"$gte": 95}}
    pipeline: [{"$match": {...}}, {"$group": {...}}, {"$sort": {...}}]

The metrics live in a relational table, so this module is the operator
surface of the store: every field, operator and stage is checked against
an allowlist and anything else is rejected with QueryExecutionError.

Pipelines compile stage by stage. Each stage reads the output columns of
the previous one (wrapped as a subquery when needed), so a $match after a
$group filters on the group's output names, the same as a document store.
"""

from datetime import datetime
from typing import Any, Dict, List, Tuple

from sqlalchemy import DateTime, and_, false, func, literal, not_, null, or_, select, true
from sqlalchemy.sql import ColumnElement, Select

from metricsqa.core import models
from metricsqa.core.exceptions import QueryExecutionError

Columns = Dict[str, ColumnElement]

SCALAR_TYPES = (str, int, float, bool)
LOGICAL_OPERATORS = ("$and", "$or", "$nor")
ROW_COUNT = "__row_count"


def metric_columns() -> Columns:
    """Document field name -> table column for the metrics table."""
    table = models.MetricRecord.__table__
    return {field: table.c[attr] for field, attr in models.METRIC_FIELDS.items()}


# ============================================================================
# FILTERS
# ============================================================================


def _resolve_field(field: str, columns: Columns) -> ColumnElement:
    if field not in columns:
        raise QueryExecutionError(f"Unknown field: {field}")
    return columns[field]


def _parse_timestamp(value: Any) -> datetime:
    # {"$date": "..."} is how extended JSON spells a date
    if isinstance(value, dict) and set(value) == {"$date"}:
        value = value["$date"]
    if not isinstance(value, str):
        raise QueryExecutionError(f"Expected an ISO timestamp, got {value!r}")
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as error:
        raise QueryExecutionError(f"Invalid timestamp {value!r}") from error


def _operand(column: ColumnElement, value: Any) -> Any:
    """Check one comparison operand and coerce it to the column's type."""
    if isinstance(column.type, DateTime) and value is not None:
        return _parse_timestamp(value)
    if value is not None and not isinstance(value, SCALAR_TYPES):
        raise QueryExecutionError(f"Unsupported comparison value {value!r}")
    return value


def _operand_list(column: ColumnElement, operator: str, value: Any) -> List[Any]:
    if not isinstance(value, list):
        raise QueryExecutionError(f"{operator} expects an array")
    return [_operand(column, item) for item in value]


def _compile_in(column: ColumnElement, values: List[Any]) -> ColumnElement:
    present = [value for value in values if value is not None]
    clause = column.in_(present)
    if len(present) != len(values):
        clause = or_(clause, column.is_(None))
    return clause


def _compile_operators(column: ColumnElement, spec: Dict[str, Any]) -> ColumnElement:
    clauses = []
    options = spec.get("$options", "")
    if not isinstance(options, str):
        raise QueryExecutionError("$options must be a string")

    for operator, raw in spec.items():
        if operator == "$options":
            continue

        if operator == "$eq":
            value = _operand(column, raw)
            clauses.append(column.is_(None) if value is None else column == value)
        elif operator == "$ne":
            value = _operand(column, raw)
            if value is None:
                clauses.append(column.is_not(None))
            else:
                # Missing values are "not equal" too
                clauses.append(or_(column != value, column.is_(None)))
        elif operator in ("$gt", "$gte", "$lt", "$lte"):
            value = _operand(column, raw)
            if value is None:
                raise QueryExecutionError(f"{operator} cannot compare with null")
            clauses.append(
                {
                    "$gt": column > value,
                    "$gte": column >= value,
                    "$lt": column < value,
                    "$lte": column <= value,
                }[operator]
            )
        elif operator == "$in":
            clauses.append(_compile_in(column, _operand_list(column, operator, raw)))
        elif operator == "$nin":
            values = _operand_list(column, operator, raw)
            if None in values:
                clauses.append(not_(_compile_in(column, values)))
            else:
                # Missing values are "not in" any list of present values
                clauses.append(or_(not_(column.in_(values)), column.is_(None)))
        elif operator == "$regex":
            if not isinstance(raw, str):
                raise QueryExecutionError("$regex expects a string pattern")
            # Inline flags work for both Python's re (SQLite) and PostgreSQL
            pattern = f"(?i){raw}" if "i" in options else raw
            clauses.append(column.regexp_match(pattern))
        elif operator == "$exists":
            clauses.append(column.is_not(None) if raw else column.is_(None))
        else:
            raise QueryExecutionError(f"Unsupported filter operator: {operator}")

    if not clauses:
        raise QueryExecutionError("Empty operator object in filter")
    return and_(*clauses)


def _compile_condition(column: ColumnElement, value: Any) -> ColumnElement:
    if isinstance(value, dict) and value and all(key.startswith("$") for key in value):
        if set(value) == {"$date"}:
            return column == _parse_timestamp(value)
        return _compile_operators(column, value)

    value = _operand(column, value)
    if value is None:
        return column.is_(None)
    return column == value


def _compile_logical(operator: str, value: Any, columns: Columns) -> ColumnElement:
    if not isinstance(value, list) or not value:
        raise QueryExecutionError(f"{operator} expects a non-empty array")
    branches = [compile_filter(branch, columns) for branch in value]
    if operator == "$and":
        return and_(*branches)
    if operator == "$or":
        return or_(*branches)
    # Rows where a branch is NULL (missing field) still satisfy $nor
    return not_(func.coalesce(or_(*branches), false()))


def compile_filter(document: Any, columns: Columns) -> ColumnElement:
    """
    Compile a filter document into a boolean SQL expression.

    Args:
        document: Parsed filter object
        columns: Field name -> column available at this point of the query

    Returns:
        WHERE clause; an empty filter matches every row

    Example:
        {"circle": {"$in": ["North", "South"]}, "health_status": "GOOD"}
        -> circle IN (...) AND health_status = 'GOOD'
    """
    if not isinstance(document, dict):
        raise QueryExecutionError("Filter must be a JSON object")

    clauses = []
    for key, value in document.items():
        if key in LOGICAL_OPERATORS:
            clauses.append(_compile_logical(key, value, columns))
        elif key.startswith("$"):
            raise QueryExecutionError(f"Unsupported filter operator: {key}")
        else:
            clauses.append(_compile_condition(_resolve_field(key, columns), value))

    return and_(true(), *clauses)


# ============================================================================
# AGGREGATION PIPELINES
# ============================================================================


def _reference(ref: Any, columns: Columns) -> ColumnElement:
    """Resolve a "$field" reference against the current stage's columns."""
    if not isinstance(ref, str) or not ref.startswith("$"):
        raise QueryExecutionError(f"Expected a field reference like '$field', got {ref!r}")
    return _resolve_field(ref[1:], columns)


def _is_positive_flag(value: Any) -> bool:
    return value is True or (isinstance(value, (int, float)) and value == 1)


def _is_negative_flag(value: Any) -> bool:
    return value is False or (
        isinstance(value, (int, float)) and not isinstance(value, bool) and value == 0
    )


class PipelineCompiler:
    """
    Compile a list of stage dicts into one SELECT statement.

    Supported stages: $match, $group, $sort, $limit, $skip, $project, $count.
    """

    def __init__(self):
        self._stmt: Select = select(
            *[column.label(field) for field, column in metric_columns().items()]
        )
        self._order: List[Tuple[str, bool]] = []  # (field, descending)
        self._limited = False
        self._offset = False
        self._handlers = {
            "$match": self._match,
            "$group": self._group,
            "$sort": self._sort,
            "$limit": self._limit,
            "$skip": self._skip,
            "$project": self._project,
            "$count": self._count,
        }

    def compile(self, pipeline: List[Dict[str, Any]]) -> Select:
        for position, stage in enumerate(pipeline):
            if len(stage) != 1:
                raise QueryExecutionError(
                    f"Stage {position} must contain exactly one operator"
                )
            ((operator, spec),) = stage.items()
            handler = self._handlers.get(operator)
            if handler is None:
                raise QueryExecutionError(f"Unsupported aggregation stage: {operator}")
            handler(spec)
        return self._stmt

    # --- helpers ------------------------------------------------------------

    def _wrap(self):
        """Turn the statement so far into a subquery the next stage reads from."""
        stmt = self._stmt
        if not (self._limited or self._offset):
            stmt = stmt.order_by(None)
        self._limited = self._offset = False
        return stmt.subquery()

    def _select_from(self, sub, *selected) -> Select:
        """SELECT from `sub`, keeping the previous sort where the columns survive."""
        stmt = select(*selected) if selected else select(*sub.c)
        names = set(stmt.selected_columns.keys())
        order = [
            sub.c[name].desc() if descending else sub.c[name]
            for name, descending in self._order
            if name in names
        ]
        self._order = [(name, descending) for name, descending in self._order if name in names]
        return stmt.order_by(*order)

    @staticmethod
    def _columns(sub) -> Columns:
        return {name: sub.c[name] for name in sub.c.keys()}

    # --- stages -------------------------------------------------------------

    def _match(self, spec: Any):
        sub = self._wrap()
        self._stmt = self._select_from(sub).where(compile_filter(spec, self._columns(sub)))

    def _group(self, spec: Any):
        if not isinstance(spec, dict) or "_id" not in spec:
            raise QueryExecutionError("$group requires an _id")

        sub = self._wrap()
        columns = self._columns(sub)
        selected = []
        group_by = []

        id_spec = spec["_id"]
        if isinstance(id_spec, dict):
            for key, ref in id_spec.items():
                column = _reference(ref, columns)
                selected.append(column.label(f"_id.{key}"))
                group_by.append(column)
        elif isinstance(id_spec, str) and id_spec.startswith("$"):
            column = _reference(id_spec, columns)
            selected.append(column.label("_id"))
            group_by.append(column)
        elif id_spec is None:
            selected.append(null().label("_id"))
        elif isinstance(id_spec, SCALAR_TYPES):
            selected.append(literal(id_spec).label("_id"))
        else:
            raise QueryExecutionError(f"Unsupported $group _id: {id_spec!r}")

        for name, accumulator in spec.items():
            if name == "_id":
                continue
            selected.append(self._accumulator(name, accumulator, columns).label(name))

        self._order = []
        if group_by:
            self._stmt = select(*selected).select_from(sub).group_by(*group_by)
            return

        # A single-bucket group over zero rows must yield zero documents
        counted = (
            select(*selected, func.count().label(ROW_COUNT)).select_from(sub).subquery()
        )
        self._stmt = select(
            *[column for column in counted.c if column.key != ROW_COUNT]
        ).where(counted.c[ROW_COUNT] > 0)

    @staticmethod
    def _accumulator(name: str, accumulator: Any, columns: Columns) -> ColumnElement:
        if not isinstance(accumulator, dict) or len(accumulator) != 1:
            raise QueryExecutionError(f"Accumulator {name} must name exactly one operator")
        ((operator, operand),) = accumulator.items()

        if operator == "$sum":
            if isinstance(operand, (int, float)) and not isinstance(operand, bool):
                return func.count() if operand == 1 else func.count() * literal(operand)
            # Summing only missing values gives 0, not null
            return func.coalesce(func.sum(_reference(operand, columns)), 0)
        if operator == "$avg":
            return func.avg(_reference(operand, columns))
        if operator == "$min":
            return func.min(_reference(operand, columns))
        if operator == "$max":
            return func.max(_reference(operand, columns))
        if operator == "$count":
            return func.count()
        raise QueryExecutionError(f"Unsupported accumulator: {operator}")

    def _sort(self, spec: Any):
        if not isinstance(spec, dict) or not spec:
            raise QueryExecutionError("$sort expects a non-empty object")
        if self._limited or self._offset:
            self._stmt = self._select_from(self._wrap())

        selected = self._stmt.selected_columns
        order = []
        clauses = []
        for field, direction in spec.items():
            if direction not in (1, -1) or isinstance(direction, bool):
                raise QueryExecutionError(f"Sort direction for {field} must be 1 or -1")
            names = [field]
            if field == "_id" and field not in selected:
                # A compound _id is stored as "_id.<key>" columns
                names = [name for name in selected.keys() if name.startswith("_id.")]
            if not names or any(name not in selected for name in names):
                raise QueryExecutionError(f"Unknown field: {field}")
            for name in names:
                column = selected[name]
                clauses.append(column.desc() if direction == -1 else column)
                order.append((name, direction == -1))

        self._order = order
        self._stmt = self._stmt.order_by(None).order_by(*clauses)

    @staticmethod
    def _count_value(operator: str, spec: Any, minimum: int) -> int:
        if isinstance(spec, bool) or not isinstance(spec, int) or spec < minimum:
            raise QueryExecutionError(f"{operator} expects an integer >= {minimum}")
        return spec

    def _limit(self, spec: Any):
        limit = self._count_value("$limit", spec, 1)
        if self._limited:
            self._stmt = self._select_from(self._wrap())
        self._stmt = self._stmt.limit(limit)
        self._limited = True

    def _skip(self, spec: Any):
        skip = self._count_value("$skip", spec, 0)
        if self._limited or self._offset:
            self._stmt = self._select_from(self._wrap())
        self._stmt = self._stmt.offset(skip)
        self._offset = True

    def _project(self, spec: Any):
        if not isinstance(spec, dict) or not spec:
            raise QueryExecutionError("$project expects a non-empty object")

        sub = self._wrap()
        columns = self._columns(sub)
        id_columns = [name for name in columns if name == "_id" or name.startswith("_id.")]
        excluded = {name for name, value in spec.items() if _is_negative_flag(value)}
        others = [name for name in spec if name != "_id" and name not in excluded]

        if excluded - {"_id"} or set(spec) == excluded:
            # Exclusion mode: everything except the named fields
            if others:
                raise QueryExecutionError("$project cannot mix inclusion and exclusion")
            dropped = set(excluded)
            if "_id" in excluded:
                dropped.update(id_columns)
            self._stmt = self._select_from(
                sub, *[column for name, column in columns.items() if name not in dropped]
            )
            return

        selected = []
        id_value = spec.get("_id", 1)
        if isinstance(id_value, str):
            selected.append(_reference(id_value, columns).label("_id"))
        elif not _is_negative_flag(id_value):
            selected.extend(columns[name] for name in id_columns)

        for name in others:
            value = spec[name]
            if _is_positive_flag(value):
                selected.append(_resolve_field(name, columns))
            elif isinstance(value, str) and value.startswith("$"):
                selected.append(_reference(value, columns).label(name))
            else:
                raise QueryExecutionError(f"Unsupported $project expression for {name}")

        if not selected:
            raise QueryExecutionError("$project leaves no fields")
        self._stmt = self._select_from(sub, *selected)

    def _count(self, spec: Any):
        if not isinstance(spec, str) or not spec or spec.startswith("$") or "." in spec:
            raise QueryExecutionError("$count expects a plain field name")

        sub = self._wrap()
        counted = select(func.count().label(spec)).select_from(sub).subquery()
        self._order = []
        # Counting zero rows yields no document at all
        self._stmt = select(counted.c[spec]).where(counted.c[spec] > 0)


def compile_pipeline(pipeline: List[Dict[str, Any]]) -> Select:
    """Compile parsed pipeline stages into a single SELECT."""
    return PipelineCompiler().compile(pipeline)
