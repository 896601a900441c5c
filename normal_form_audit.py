"""
Normal-form audit tool (1NF / 2NF / 3NF).

The auditor works on a declared schema: tables, columns, candidate keys,
foreign keys and functional dependencies. Dependencies are never inferred from
data; sample rows are only used to spot list-like cells and to illustrate
violations with concrete rows, the same way a "bad schema / good schema"
walkthrough would.

Schemas come from a JSON document or are reflected from a live database with
SQLAlchemy (the JSON document then acts as an annotation overlay carrying the
functional dependencies). Run it as `audit schema.json [--data rows.json]
[--format text|json]`. Exit codes: 0 when every table is in 3NF, 1 when any
violation is found, 2 on malformed input.
"""
from __future__ import annotations

import argparse
import csv
import json
import re
import sys
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from itertools import combinations
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import MetaData, create_engine, inspect, select
from sqlalchemy import Table as SqlTable
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError


# --------------------------------------------------------------------------------------
# Configuration
# --------------------------------------------------------------------------------------
CONFIG: Dict[str, Any] = {
    "LIMITS": {
        # Tables whose non-core columns exceed this are not searched for extra keys;
        # their declared keys are used as-is.
        "MAX_KEY_SEARCH_COLUMNS": 20,
        "MAX_EXAMPLE_ROWS": 2,
    },
    "HEURISTICS": {
        "LIST_SEPARATOR_REGEX": r"\s*[,;|]\s*",
        "MIN_TOKENS": 2,
    },
    "SAMPLING": {
        # Rows pulled per table when sample data comes from a live database.
        "MAX_ROWS": 1000,
    },
    "OUTPUT": {
        "BASE_PATH": "output",
        "QUIET": False,
    },
}


# --------------------------------------------------------------------------------------
# Errors and logging
# --------------------------------------------------------------------------------------
class SchemaError(ValueError):
    """Malformed schema declaration or input document. Fatal to the whole run."""


class AnalysisWarning(UserWarning):
    """Non-fatal finding attached to a table report (never raised)."""


def log(level: str, message: str) -> None:
    # stderr keeps JSON output on stdout parseable
    if level == "INFO" and CONFIG["OUTPUT"]["QUIET"]:
        return
    print(f"[{level}] {message}", file=sys.stderr)


# --------------------------------------------------------------------------------------
# Utility helpers
# --------------------------------------------------------------------------------------
ColumnSet = FrozenSet[str]


def set_sort_key(columns: Iterable[str]) -> Tuple[int, List[str]]:
    """Deterministic ordering for column sets: smaller sets first, then by name."""
    names = sorted(columns)
    return len(names), names


def format_columns(columns: Iterable[str]) -> str:
    return "{" + ", ".join(sorted(columns)) + "}"


def _freeze_value(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


# --------------------------------------------------------------------------------------
# Schema model
# --------------------------------------------------------------------------------------
@dataclass(frozen=True)
class Column:
    name: str
    data_type: str = "text"
    nullable: bool = True
    # True when one cell may hold several logical values (a comma separated phone list).
    multivalued: bool = False


@dataclass(frozen=True)
class ForeignKey:
    columns: Tuple[str, ...]
    referred_table: str
    referred_columns: Tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "referred_columns", tuple(self.referred_columns))


@dataclass(frozen=True)
class FunctionalDependency:
    determinant: ColumnSet
    dependent: ColumnSet

    def __post_init__(self) -> None:
        object.__setattr__(self, "determinant", frozenset(self.determinant))
        object.__setattr__(self, "dependent", frozenset(self.dependent))

    def __str__(self) -> str:
        return f"{format_columns(self.determinant)} -> {format_columns(self.dependent)}"


@dataclass(frozen=True)
class Table:
    """A declared table. Validated on construction and immutable afterwards.

    Candidate keys and functional dependencies are stored in a canonical order so
    two tables declaring the same facts compare equal.
    """

    name: str
    columns: Tuple[Column, ...]
    candidate_keys: Tuple[ColumnSet, ...] = ()
    foreign_keys: Tuple[ForeignKey, ...] = ()
    functional_dependencies: Tuple[FunctionalDependency, ...] = ()

    def __post_init__(self) -> None:
        keys = {frozenset(k) for k in self.candidate_keys}
        fds = {fd if isinstance(fd, FunctionalDependency) else FunctionalDependency(*fd) for fd in self.functional_dependencies}
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "candidate_keys", tuple(sorted(keys, key=set_sort_key)))
        object.__setattr__(self, "foreign_keys", tuple(self.foreign_keys))
        object.__setattr__(
            self,
            "functional_dependencies",
            tuple(sorted(fds, key=lambda fd: (sorted(fd.determinant), sorted(fd.dependent)))),
        )
        self._validate()

    def _validate(self) -> None:
        if not self.name:
            raise SchemaError("Table declared without a name")
        seen = set()
        for col in self.columns:
            if not isinstance(col.name, str) or not col.name:
                raise SchemaError(f"Table '{self.name}': column name must be a non-empty string, got {col.name!r}")
            if col.name in seen:
                raise SchemaError(f"Table '{self.name}': duplicate column '{col.name}'")
            seen.add(col.name)
        if not seen:
            raise SchemaError(f"Table '{self.name}': no columns declared")

        for key in self.candidate_keys:
            if not key:
                raise SchemaError(f"Table '{self.name}': empty candidate key")
            self._require_columns(key, "candidate key")
        for fd in self.functional_dependencies:
            if not fd.determinant or not fd.dependent:
                raise SchemaError(f"Table '{self.name}': functional dependency {fd} has an empty side")
            self._require_columns(fd.determinant | fd.dependent, f"functional dependency {fd}")
        for fk in self.foreign_keys:
            self._require_columns(fk.columns, "foreign key")
            if len(fk.columns) != len(fk.referred_columns) or not fk.columns:
                raise SchemaError(
                    f"Table '{self.name}': foreign key {list(fk.columns)} -> {fk.referred_table}"
                    f"{list(fk.referred_columns)} has mismatched column counts"
                )

        # A declared key must be minimal: dropping any one column may not leave a superkey.
        dependencies = implied_dependencies(self)
        everything = frozenset(self.column_names)
        for key in self.candidate_keys:
            for subset in combinations(sorted(key), len(key) - 1):
                if attribute_closure(subset, dependencies) == everything:
                    raise SchemaError(
                        f"Table '{self.name}': candidate key {format_columns(key)} is not minimal; "
                        f"{format_columns(subset) if subset else '{}'} already determines every column"
                    )

    def _require_columns(self, names: Iterable[str], what: str) -> None:
        known = set(self.column_names)
        for name in sorted(names):
            if name not in known:
                raise SchemaError(f"Table '{self.name}': {what} references unknown column '{name}'")

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(c.name for c in self.columns)

    def column(self, name: str) -> Column:
        for col in self.columns:
            if col.name == name:
                return col
        raise SchemaError(f"Table '{self.name}': unknown column '{name}'")


@dataclass(frozen=True)
class Schema:
    tables: Tuple[Table, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "tables", tuple(self.tables))
        by_name: Dict[str, Table] = {}
        for table in self.tables:
            if table.name in by_name:
                raise SchemaError(f"Duplicate table '{table.name}'")
            by_name[table.name] = table
        for table in self.tables:
            for fk in table.foreign_keys:
                target = by_name.get(fk.referred_table)
                if target is None:
                    raise SchemaError(
                        f"Table '{table.name}': foreign key {list(fk.columns)} references unknown table '{fk.referred_table}'"
                    )
                for col in fk.referred_columns:
                    if col not in target.column_names:
                        raise SchemaError(
                            f"Table '{table.name}': foreign key references unknown column '{fk.referred_table}.{col}'"
                        )

    @property
    def by_name(self) -> Dict[str, Table]:
        return {t.name: t for t in self.tables}

    @property
    def table_names(self) -> List[str]:
        return [t.name for t in self.tables]

    @property
    def functional_dependencies(self) -> Dict[str, Tuple[FunctionalDependency, ...]]:
        return {t.name: t.functional_dependencies for t in self.tables}

    def table(self, name: str) -> Table:
        try:
            return self.by_name[name]
        except KeyError:
            raise SchemaError(f"Unknown table '{name}'") from None


# --------------------------------------------------------------------------------------
# Declarative form (JSON)
# --------------------------------------------------------------------------------------
def _read_document(path: Path, what: str) -> Any:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except UnicodeDecodeError as exc:
        raise SchemaError(f"{what} is not UTF-8 text: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise SchemaError(f"{what} is not valid JSON: {exc}") from exc


def _require_name(value: Any, what: str) -> str:
    if not isinstance(value, str) or not value:
        raise SchemaError(f"{what} must be a non-empty string, got {value!r}")
    return value


def _require_names(value: Any, what: str) -> List[str]:
    if not isinstance(value, list):
        raise SchemaError(f"{what} must be a list of column names, got {value!r}")
    return [_require_name(v, what) for v in value]


def _require_flag(value: Any, what: str) -> bool:
    if not isinstance(value, bool):
        raise SchemaError(f"{what} must be true or false, got {value!r}")
    return value


def _require_key_lists(doc: Mapping[str, Any], where: str) -> List[ColumnSet]:
    entries = doc.get("candidate_keys", [])
    if not isinstance(entries, list):
        raise SchemaError(f"{where}: 'candidate_keys' must be a list of column lists")
    keys = [frozenset(_require_names(k, f"{where}: candidate key")) for k in entries]
    if doc.get("primary_key") is not None:
        keys.append(frozenset(_require_names(doc["primary_key"], f"{where}: primary key")))
    return keys


def _dependencies_from(doc: Mapping[str, Any], where: str) -> List[FunctionalDependency]:
    return [
        FunctionalDependency(
            frozenset(_require_names(fd["determinant"], f"{where}: dependency determinant")),
            frozenset(_require_names(fd["dependent"], f"{where}: dependency dependent")),
        )
        for fd in doc.get("functional_dependencies", [])
    ]


def _table_from_dict(doc: Mapping[str, Any]) -> Table:
    if not isinstance(doc, Mapping):
        raise SchemaError(f"Table entry must be an object, got {doc!r}")
    name = _require_name(doc.get("name"), "Table name")
    where = f"Table '{name}'"
    try:
        columns = [
            Column(
                name=_require_name(c["name"], f"{where}: column name"),
                data_type=_require_name(c.get("type", "text"), f"{where}: column type"),
                nullable=_require_flag(c.get("nullable", True), f"{where}: 'nullable' of {c['name']!r}"),
                multivalued=_require_flag(c.get("multivalued", False), f"{where}: 'multivalued' of {c['name']!r}"),
            )
            for c in doc["columns"]
        ]
        keys = _require_key_lists(doc, where)
        foreign_keys = [
            ForeignKey(
                columns=tuple(_require_names(fk["columns"], f"{where}: foreign key columns")),
                referred_table=_require_name(fk["references"]["table"], f"{where}: referenced table"),
                referred_columns=tuple(_require_names(fk["references"]["columns"], f"{where}: referenced columns")),
            )
            for fk in doc.get("foreign_keys", [])
        ]
        fds = _dependencies_from(doc, where)
    except (KeyError, TypeError, AttributeError) as exc:
        raise SchemaError(f"{where}: malformed declaration ({exc!r})") from exc
    return Table(
        name=name,
        columns=tuple(columns),
        candidate_keys=tuple(keys),
        foreign_keys=tuple(foreign_keys),
        functional_dependencies=tuple(fds),
    )


def schema_from_dict(doc: Mapping[str, Any]) -> Schema:
    if not isinstance(doc, Mapping) or not isinstance(doc.get("tables"), list):
        raise SchemaError("Schema document must be an object with a 'tables' list")
    return Schema(tables=tuple(_table_from_dict(t) for t in doc["tables"]))


def schema_to_dict(schema: Schema) -> Dict[str, Any]:
    return {
        "tables": [
            {
                "name": t.name,
                "columns": [
                    {"name": c.name, "type": c.data_type, "nullable": c.nullable, "multivalued": c.multivalued}
                    for c in t.columns
                ],
                "candidate_keys": [sorted(k) for k in t.candidate_keys],
                "foreign_keys": [
                    {
                        "columns": list(fk.columns),
                        "references": {"table": fk.referred_table, "columns": list(fk.referred_columns)},
                    }
                    for fk in t.foreign_keys
                ],
                "functional_dependencies": [
                    {"determinant": sorted(fd.determinant), "dependent": sorted(fd.dependent)}
                    for fd in t.functional_dependencies
                ],
            }
            for t in schema.tables
        ]
    }


def parse_schema(text: str) -> Schema:
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SchemaError(f"Schema is not valid JSON: {exc}") from exc
    return schema_from_dict(doc)


def dump_schema(schema: Schema) -> str:
    return json.dumps(schema_to_dict(schema), indent=2)


def load_schema(path: Path) -> Schema:
    return schema_from_dict(_read_document(path, "Schema"))


def load_sample_data(path: Path, schema: Schema) -> Dict[str, List[Dict[str, Any]]]:
    """Read `{table: [row, ...]}` and check every row against the schema."""
    doc = _read_document(path, "Sample data")
    if not isinstance(doc, dict):
        raise SchemaError("Sample data must map table names to lists of rows")
    return validate_sample_data(doc, schema)


def validate_sample_data(doc: Mapping[str, Any], schema: Schema) -> Dict[str, List[Dict[str, Any]]]:
    data: Dict[str, List[Dict[str, Any]]] = {}
    for table_name, rows in doc.items():
        table = schema.table(table_name)
        if not isinstance(rows, list):
            raise SchemaError(f"Sample data for '{table_name}' must be a list of rows")
        known = set(table.column_names)
        for idx, row in enumerate(rows):
            if not isinstance(row, dict):
                raise SchemaError(f"Sample data for '{table_name}': row {idx} is not an object")
            unknown = sorted(set(row) - known)
            if unknown:
                raise SchemaError(f"Sample data for '{table_name}': row {idx} has unknown column '{unknown[0]}'")
        data[table_name] = [dict(r) for r in rows]
    return data


# --------------------------------------------------------------------------------------
# Database reflection
# --------------------------------------------------------------------------------------
class DatabaseClient:
    """Thin wrapper around SQLAlchemy used for reflection and row sampling."""

    def __init__(self, url: str) -> None:
        self.engine: Engine = create_engine(url)

    def dispose(self) -> None:
        self.engine.dispose()


class SchemaReflector:
    """Builds a Schema from the catalog: columns, primary/unique keys and foreign keys."""

    def __init__(self, client: DatabaseClient) -> None:
        self.client = client

    def list_tables(self) -> List[str]:
        return sorted(inspect(self.client.engine).get_table_names())

    def reflect(self) -> Schema:
        names = self.list_tables()
        return Schema(tables=tuple(self.reflect_table(name, names) for name in names))

    def reflect_table(self, name: str, known_tables: Sequence[str]) -> Table:
        insp = inspect(self.client.engine)
        columns = tuple(
            Column(name=c["name"], data_type=str(c["type"]).lower(), nullable=bool(c.get("nullable", True)))
            for c in insp.get_columns(name)
        )

        keys: List[ColumnSet] = []
        pk = insp.get_pk_constraint(name).get("constrained_columns") or []
        if pk:
            keys.append(frozenset(pk))
        for uc in insp.get_unique_constraints(name):
            keys.append(frozenset(uc["column_names"]))
        # Unique constraints wider than another key would fail the minimality check.
        keys = [k for k in keys if not any(other < k for other in keys)]

        foreign_keys = []
        for fk in insp.get_foreign_keys(name):
            if fk.get("referred_table") not in known_tables:
                log("WARN", f"Skipping foreign key on {name} to unreflected table {fk.get('referred_table')}")
                continue
            foreign_keys.append(
                ForeignKey(
                    columns=tuple(fk["constrained_columns"]),
                    referred_table=fk["referred_table"],
                    referred_columns=tuple(fk["referred_columns"]),
                )
            )
        return Table(name=name, columns=columns, candidate_keys=tuple(keys), foreign_keys=tuple(foreign_keys))


class SampleReader:
    """Reads a bounded number of rows per table for heuristics and examples."""

    def __init__(self, client: DatabaseClient) -> None:
        self.client = client

    def fetch_rows(self, table: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        limit = limit or CONFIG["SAMPLING"]["MAX_ROWS"]
        sql_table = SqlTable(table, MetaData(), autoload_with=self.client.engine)
        with self.client.engine.connect() as conn:
            result = conn.execute(select(sql_table).limit(limit))
            return [dict(row._mapping) for row in result]

    def fetch_all(self, schema: Schema) -> Dict[str, List[Dict[str, Any]]]:
        return {name: self.fetch_rows(name) for name in schema.table_names}


def apply_annotations(schema: Schema, doc: Mapping[str, Any]) -> Schema:
    """Overlay functional dependencies, multivalued flags and extra keys onto a reflected schema."""
    if not isinstance(doc, Mapping) or not isinstance(doc.get("tables"), list):
        raise SchemaError("Annotation document must be an object with a 'tables' list")
    annotated = {t.get("name"): t for t in doc["tables"] if isinstance(t, Mapping)}
    for name in sorted(set(annotated) - set(schema.table_names)):
        log("WARN", f"Annotations for {name} ignored: table not found in database")

    tables = []
    for table in schema.tables:
        notes = annotated.get(table.name)
        if notes is None:
            tables.append(table)
            continue
        try:
            where = f"Table '{table.name}' annotation"
            multivalued = {
                _require_name(c["name"], f"{where}: column name")
                for c in notes.get("columns", [])
                if _require_flag(c.get("multivalued", False), f"{where}: 'multivalued' of {c['name']!r}")
            }
            extra_keys = _require_key_lists(notes, where)
            fds = _dependencies_from(notes, where)
        except (KeyError, TypeError, AttributeError) as exc:
            raise SchemaError(f"Table '{table.name}': malformed annotation ({exc!r})") from exc
        for name in sorted(multivalued):
            table.column(name)
        columns = tuple(replace(c, multivalued=c.multivalued or c.name in multivalued) for c in table.columns)
        tables.append(
            replace(
                table,
                columns=columns,
                candidate_keys=table.candidate_keys + tuple(extra_keys),
                functional_dependencies=table.functional_dependencies + tuple(fds),
            )
        )
    return Schema(tables=tuple(tables))


# --------------------------------------------------------------------------------------
# Dependency analysis
# --------------------------------------------------------------------------------------
def implied_dependencies(table: Table) -> List[FunctionalDependency]:
    """Declared dependencies plus `key -> every column` for each declared key."""
    everything = frozenset(table.column_names)
    deps = list(table.functional_dependencies)
    for key in table.candidate_keys:
        if everything - key:
            deps.append(FunctionalDependency(key, everything - key))
    return deps


def attribute_closure(attributes: Iterable[str], dependencies: Sequence[FunctionalDependency]) -> ColumnSet:
    """Standard closure: keep adding dependents whose determinant is already covered.

    Every pass that continues adds at least one column, so the loop runs at most
    |columns| + 1 times even with cyclic dependencies.
    """
    result = set(attributes)
    changed = True
    while changed:
        changed = False
        for fd in dependencies:
            if fd.determinant <= result and not fd.dependent <= result:
                result |= fd.dependent
                changed = True
    return frozenset(result)


class DependencyAnalyzer:
    """Closure and candidate-key computations for one table, memoized per instance."""

    def __init__(self, table: Table) -> None:
        self.table = table
        self.all_columns: ColumnSet = frozenset(table.column_names)
        self.dependencies = implied_dependencies(table)
        self.warnings: List[AnalysisWarning] = []
        self._closures: Dict[ColumnSet, ColumnSet] = {}
        self._keys: Optional[Tuple[ColumnSet, ...]] = None

    def closure(self, attributes: Iterable[str]) -> ColumnSet:
        attrs = frozenset(attributes)
        cached = self._closures.get(attrs)
        if cached is None:
            cached = attribute_closure(attrs, self.dependencies)
            self._closures[attrs] = cached
        return cached

    def is_superkey(self, attributes: Iterable[str]) -> bool:
        return self.closure(attributes) == self.all_columns

    def candidate_keys(self) -> Tuple[ColumnSet, ...]:
        if self._keys is None:
            self._keys = self._discover_keys()
        return self._keys

    def prime_columns(self) -> ColumnSet:
        return frozenset().union(*self.candidate_keys()) if self.candidate_keys() else frozenset()

    def _discover_keys(self) -> Tuple[ColumnSet, ...]:
        if not self.table.functional_dependencies:
            return self.table.candidate_keys

        # Columns never derived from others belong to every key.
        derived = set()
        for fd in self.dependencies:
            derived |= fd.dependent - fd.determinant
        core = self.all_columns - derived
        if self.is_superkey(core):
            return (core,)

        rest = sorted(self.all_columns - core)
        if len(rest) > CONFIG["LIMITS"]["MAX_KEY_SEARCH_COLUMNS"]:
            self.warnings.append(
                AnalysisWarning(
                    f"{self.table.name}: {len(rest)} columns exceed the key search limit; "
                    "only declared candidate keys are used"
                )
            )
            return self.table.candidate_keys

        found: List[ColumnSet] = []
        for size in range(1, len(rest) + 1):
            for combo in combinations(rest, size):
                candidate = core | frozenset(combo)
                if any(key <= candidate for key in found):
                    continue
                if self.is_superkey(candidate):
                    found.append(candidate)
        return tuple(sorted(found, key=set_sort_key))


# --------------------------------------------------------------------------------------
# Normal-form checks
# --------------------------------------------------------------------------------------
class ViolationKind(str, Enum):
    ONE_NF = "1NF"
    TWO_NF = "2NF"
    THREE_NF = "3NF"


class NormalForm(str, Enum):
    UNNORMALIZED = "UNF"
    FIRST = "1NF"
    SECOND = "2NF"
    THIRD = "3NF"


@dataclass
class Violation:
    kind: ViolationKind
    table: str
    columns: Tuple[str, ...]
    explanation: str
    key: Tuple[str, ...] = ()
    determinant: Tuple[str, ...] = ()
    heuristic: bool = False
    example_rows: List[Dict[str, Any]] = field(default_factory=list)

    def to_record(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "table": self.table,
            "columns": list(self.columns),
            "key": list(self.key),
            "determinant": list(self.determinant),
            "heuristic": self.heuristic,
            "explanation": self.explanation,
            "example_rows": self.example_rows,
        }


def token_shape(token: str) -> str:
    shape = re.sub(r"\d+", "9", token)
    shape = re.sub(r"[^\W\d_]+", "a", shape)
    return re.sub(r"\s+", " ", shape)


def looks_multivalued(value: Any) -> bool:
    """Heuristic: a cell holding a delimited list of similarly shaped tokens."""
    min_tokens = CONFIG["HEURISTICS"]["MIN_TOKENS"]
    if isinstance(value, (list, tuple, set)):
        return len(value) >= min_tokens
    if not isinstance(value, str):
        return False
    tokens = re.split(CONFIG["HEURISTICS"]["LIST_SEPARATOR_REGEX"], value.strip())
    if len(tokens) < min_tokens or any(not t for t in tokens):
        return False
    return len({token_shape(t) for t in tokens}) == 1


class NormalFormChecker:
    """Runs the 1NF, 2NF and 3NF checks independently and keeps every finding."""

    def __init__(self, table: Table, rows: Optional[Sequence[Mapping[str, Any]]] = None) -> None:
        self.table = table
        self.rows = list(rows or [])
        self.analyzer = DependencyAnalyzer(table)
        self.warnings: List[AnalysisWarning] = []

    @property
    def keys(self) -> Tuple[ColumnSet, ...]:
        return self.analyzer.candidate_keys()

    def non_prime_columns(self) -> List[str]:
        prime = self.analyzer.prime_columns()
        return [c for c in self.table.column_names if c not in prime]

    def check_first(self) -> List[Violation]:
        violations = []
        for col in self.table.columns:
            if col.multivalued:
                example = [r for r in self.rows if r.get(col.name) not in (None, "")][:1]
                violations.append(
                    Violation(
                        kind=ViolationKind.ONE_NF,
                        table=self.table.name,
                        columns=(col.name,),
                        explanation=f"column '{col.name}' is declared multivalued; one cell holds several values",
                        example_rows=[dict(r) for r in example],
                    )
                )
                continue
            for row in self.rows:
                value = row.get(col.name)
                if looks_multivalued(value):
                    violations.append(
                        Violation(
                            kind=ViolationKind.ONE_NF,
                            table=self.table.name,
                            columns=(col.name,),
                            explanation=f"column '{col.name}' holds a list-like value {value!r}",
                            heuristic=True,
                            example_rows=[dict(row)],
                        )
                    )
                    self.warnings.append(
                        AnalysisWarning(f"{self.table.name}.{col.name}: list-like value {value!r} (heuristic)")
                    )
                    break
        return violations

    def check_second(self) -> List[Violation]:
        violations = []
        for key in self.keys:
            if len(key) < 2:
                continue
            for col in self.non_prime_columns():
                part = self._partial_determinant(key, col)
                if part is None:
                    continue
                violations.append(
                    Violation(
                        kind=ViolationKind.TWO_NF,
                        table=self.table.name,
                        columns=(col,),
                        key=tuple(sorted(key)),
                        determinant=tuple(sorted(part)),
                        explanation=(
                            f"'{col}' depends on {format_columns(part)}, only part of the key "
                            f"{format_columns(key)} (partial dependency)"
                        ),
                        example_rows=self._example_pair(part, col),
                    )
                )
        return violations

    def check_third(self) -> List[Violation]:
        violations = []
        for col in self.non_prime_columns():
            via = self._transitive_determinant(col)
            if via is None:
                continue
            for key in self.keys:
                violations.append(
                    Violation(
                        kind=ViolationKind.THREE_NF,
                        table=self.table.name,
                        columns=(col,),
                        key=tuple(sorted(key)),
                        determinant=tuple(sorted(via)),
                        explanation=(
                            f"'{col}' depends on the key {format_columns(key)} only through "
                            f"{format_columns(via)}, which is not a key (transitive dependency)"
                        ),
                        example_rows=self._example_pair(via, col),
                    )
                )
        return violations

    def _partial_determinant(self, key: ColumnSet, col: str) -> Optional[ColumnSet]:
        for size in range(1, len(key)):
            for subset in combinations(sorted(key), size):
                if col in self.analyzer.closure(subset):
                    return frozenset(subset)
        return None

    def _transitive_determinant(self, col: str) -> Optional[ColumnSet]:
        # Any transitive chain ends with a declared dependency whose determinant is
        # itself not a superkey, so declared determinants are enough to search.
        determinants = sorted({fd.determinant for fd in self.table.functional_dependencies}, key=set_sort_key)
        for det in determinants:
            if col in det or self.analyzer.is_superkey(det):
                continue
            if any(det <= key for key in self.keys):
                # proper part of a key: reported as a partial dependency instead
                continue
            if col in self.analyzer.closure(det):
                return det
        return None

    def _example_pair(self, determinant: Iterable[str], col: str) -> List[Dict[str, Any]]:
        """Two rows agreeing on the determinant: the repeated (or conflicting) value is the anomaly."""
        det = sorted(determinant)
        groups: Dict[Tuple[str, ...], List[Mapping[str, Any]]] = defaultdict(list)
        for row in self.rows:
            values = [row.get(c) for c in det]
            if any(v is None for v in values) or col not in row:
                continue
            group = groups[tuple(_freeze_value(v) for v in values)]
            group.append(row)
            if len(group) >= CONFIG["LIMITS"]["MAX_EXAMPLE_ROWS"]:
                return [dict(r) for r in group]
        return []

    def check(self) -> "TableReport":
        first = self.check_first()
        if self.keys:
            second = self.check_second()
            third = self.check_third()
        else:
            second, third = [], []
            self.warnings.append(
                AnalysisWarning(f"{self.table.name}: no candidate key declared or derivable; 2NF/3NF not analysed")
            )

        # heuristic findings count too; they are only labelled as possible false positives
        if first:
            normal_form = NormalForm.UNNORMALIZED
        elif not self.keys or second:
            normal_form = NormalForm.FIRST
        elif third:
            normal_form = NormalForm.SECOND
        else:
            normal_form = NormalForm.THIRD

        violations = first + second + third
        return TableReport(
            table=self.table.name,
            normal_form=normal_form,
            candidate_keys=[tuple(sorted(k)) for k in self.keys],
            violations=violations,
            warnings=self.analyzer.warnings + self.warnings,
            proposals=ProposalBuilder(self.table, self.keys, violations).build(),
        )


# --------------------------------------------------------------------------------------
# Proposal builder
# --------------------------------------------------------------------------------------
@dataclass
class Proposal:
    kind: ViolationKind
    source_table: str
    new_table: str
    key: Tuple[str, ...]
    columns: List[str]
    notes: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "source_table": self.source_table,
            "new_table": self.new_table,
            "key": list(self.key),
            "columns": self.columns,
            "notes": self.notes,
        }


class ProposalBuilder:
    """Generates human-reviewable decomposition proposals (no DDL)."""

    def __init__(self, table: Table, keys: Sequence[ColumnSet], violations: Sequence[Violation]) -> None:
        self.table = table
        self.keys = list(keys)
        self.violations = violations

    def build(self) -> List[Proposal]:
        proposals: List[Proposal] = []
        base_key = tuple(sorted(self.keys[0])) if self.keys else ()
        for v in self.violations:
            if v.kind is not ViolationKind.ONE_NF or v.heuristic:
                continue
            col = v.columns[0]
            proposals.append(
                Proposal(
                    kind=v.kind,
                    source_table=self.table.name,
                    new_table=f"{self.table.name}_{col}",
                    key=base_key + (col,),
                    columns=[col],
                    notes=[
                        f"Store one {col} value per row, referencing {self.table.name}{list(base_key)}.",
                        f"Drop {col} from {self.table.name}.",
                    ],
                )
            )

        # One lookup table per (kind, determinant), gathering every dependent it explains.
        grouped: Dict[Tuple[ViolationKind, Tuple[str, ...]], List[str]] = {}
        for v in self.violations:
            if v.kind is ViolationKind.ONE_NF:
                continue
            cols = grouped.setdefault((v.kind, v.determinant), [])
            for col in v.columns:
                if col not in cols:
                    cols.append(col)
        for (kind, determinant), cols in grouped.items():
            proposals.append(
                Proposal(
                    kind=kind,
                    source_table=self.table.name,
                    new_table=f"{self.table.name}_{'_'.join(determinant)}",
                    key=determinant,
                    columns=cols,
                    notes=[
                        f"Keep {', '.join(determinant)} in {self.table.name} as a foreign key to the new table.",
                        "Review semantics and ensure the determinant uniquely identifies the moved columns.",
                    ],
                )
            )
        return proposals


# --------------------------------------------------------------------------------------
# Reports
# --------------------------------------------------------------------------------------
@dataclass
class TableReport:
    table: str
    normal_form: Optional[NormalForm]
    candidate_keys: List[Tuple[str, ...]] = field(default_factory=list)
    violations: List[Violation] = field(default_factory=list)
    warnings: List[AnalysisWarning] = field(default_factory=list)
    proposals: List[Proposal] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def in_third_normal_form(self) -> bool:
        return self.error is None and self.normal_form is NormalForm.THIRD

    def violations_of(self, kind: ViolationKind) -> List[Violation]:
        return [v for v in self.violations if v.kind is kind]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "normal_form": self.normal_form.value if self.normal_form else None,
            "candidate_keys": [list(k) for k in self.candidate_keys],
            "violations": [v.to_record() for v in self.violations],
            "warnings": [str(w) for w in self.warnings],
            "proposals": [p.to_dict() for p in self.proposals],
            "error": self.error,
        }


@dataclass
class AuditReport:
    tables: List[TableReport] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 0 if all(t.in_third_normal_form for t in self.tables) else 1

    def table(self, name: str) -> TableReport:
        for report in self.tables:
            if report.table == name:
                return report
        raise KeyError(name)

    def to_records(self) -> List[Dict[str, Any]]:
        return [v.to_record() for t in self.tables for v in t.violations]

    def to_dict(self) -> Dict[str, Any]:
        return {"tables": [t.to_dict() for t in self.tables], "violations": self.to_records()}


def _format_row(row: Mapping[str, Any]) -> str:
    return ", ".join(f"{k}={v!r}" for k, v in row.items())


def describe_violation(v: Violation) -> str:
    label = f"[{v.kind.value}{', heuristic' if v.heuristic else ''}]"
    sentence = f"{label} {v.table}.{', '.join(v.columns)}: {v.explanation}"
    if v.heuristic:
        sentence += " (may be a false positive)"
    return sentence


def render_text(report: AuditReport) -> str:
    lines: List[str] = []
    for t in report.tables:
        if t.error:
            lines.append(f"Table {t.table}: analysis failed ({t.error})")
            lines.append("")
            continue
        status = "in 3NF" if t.in_third_normal_form else f"highest normal form {t.normal_form.value}"
        lines.append(f"Table {t.table}: {status}")
        keys = ", ".join(format_columns(k) for k in t.candidate_keys) or "none"
        lines.append(f"  Candidate keys: {keys}")
        for v in t.violations:
            lines.append(f"  {describe_violation(v)}")
            for row in v.example_rows:
                lines.append(f"      row: {_format_row(row)}")
        for w in t.warnings:
            lines.append(f"  Warning: {w}")
        for p in t.proposals:
            lines.append(
                f"  Proposal ({p.kind.value}): new table {p.new_table} with key {format_columns(p.key)} "
                f"holding {', '.join(p.columns)}"
            )
            for note in p.notes:
                lines.append(f"    - {note}")
        lines.append("")
    clean = sum(1 for t in report.tables if t.in_third_normal_form)
    lines.append(f"{clean}/{len(report.tables)} tables in 3NF; {len(report.to_records())} violation(s)")
    return "\n".join(lines)


def render_json(report: AuditReport) -> str:
    return json.dumps(report.to_dict(), indent=2, default=str)


# --------------------------------------------------------------------------------------
# Artifact writer
# --------------------------------------------------------------------------------------
class ArtifactWriter:
    """Handles filesystem output for both machine-readable and human-readable artifacts."""

    def __init__(self, base_path: Path) -> None:
        self.base_path = base_path
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.manifest: Dict[str, Any] = {"tables": []}
        self.summary_rows: List[List[Any]] = []

    def table_folder(self, table: str) -> Path:
        return self.base_path / table

    def write_json(self, path: Path, obj: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(obj, indent=2, default=str))

    def append_manifest(self, entry: Dict[str, Any]) -> None:
        self.manifest["tables"].append(entry)

    def write_table(self, report: TableReport) -> None:
        folder = self.table_folder(report.table)
        self.write_json(folder / "violations.json", [v.to_record() for v in report.violations])
        self.write_json(folder / "proposals.json", [p.to_dict() for p in report.proposals])
        self.write_report(folder / "report.md", report)
        entry: Dict[str, Any] = {"table": report.table}
        if report.error:
            entry["error"] = report.error
        else:
            entry["normal_form"] = report.normal_form.value
        self.append_manifest(entry)
        self.summary_rows.append(
            [
                report.table,
                report.normal_form.value if report.normal_form else "",
                "; ".join(format_columns(k) for k in report.candidate_keys),
                len(report.violations),
                len(report.warnings),
            ]
        )

    def finalize(self) -> None:
        (self.base_path / "manifest.json").write_text(json.dumps(self.manifest, indent=2, default=str))
        with (self.base_path / "summary.csv").open("w", newline="") as fh:
            writer = csv.writer(fh)
            writer.writerow(["table", "normal_form", "candidate_keys", "violations", "warnings"])
            for row in self.summary_rows:
                writer.writerow(row)

    def write_report(self, path: Path, report: TableReport) -> None:
        lines = [f"# Normal-Form Audit: {report.table}", ""]
        if report.error:
            lines.append(f"Analysis failed: {report.error}")
        else:
            lines.append(f"- Normal form reached: {report.normal_form.value}")
            lines.append("- Candidate keys: " + (", ".join(format_columns(k) for k in report.candidate_keys) or "none"))
            lines.append("")
            lines.append("## Violations")
            if report.violations:
                for v in report.violations:
                    lines.append(f"- {describe_violation(v)}")
                    for row in v.example_rows:
                        lines.append(f"  - row: {_format_row(row)}")
            else:
                lines.append("- None. Table is in 3NF under the declared dependencies.")
            if report.warnings:
                lines.append("")
                lines.append("## Warnings")
                lines.extend(f"- {w}" for w in report.warnings)
            lines.append("")
            lines.append("## Decomposition Proposals")
            if report.proposals:
                for p in report.proposals:
                    lines.append(
                        f"- New table {p.new_table} with key {format_columns(p.key)}; move {', '.join(p.columns)} ({p.kind.value})"
                    )
                    for note in p.notes:
                        lines.append(f"  - Note: {note}")
            else:
                lines.append("- No proposals.")

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines))


# --------------------------------------------------------------------------------------
# Runner
# --------------------------------------------------------------------------------------
class Runner:
    """Audits every table of a schema; a failure in one table never stops the others."""

    def __init__(
        self,
        schema: Schema,
        sample_data: Optional[Mapping[str, Sequence[Mapping[str, Any]]]] = None,
        output_root: Optional[Path] = None,
    ) -> None:
        self.schema = schema
        self.sample_data = sample_data or {}
        self.writer: Optional[ArtifactWriter] = None
        if output_root is not None:
            ts = datetime.now(timezone.utc).strftime("run_%Y%m%d_%H%M%S")
            self.output_root = Path(output_root) / ts
            self.writer = ArtifactWriter(self.output_root)

    def run(self) -> AuditReport:
        report = AuditReport()
        for table in self.schema.tables:
            log("INFO", f"Auditing {table.name}")
            try:
                table_report = NormalFormChecker(table, self.sample_data.get(table.name)).check()
            except Exception as exc:
                log("ERROR", f"Failed auditing {table.name}: {exc}")
                table_report = TableReport(table=table.name, normal_form=None, error=str(exc))
            report.tables.append(table_report)
            if self.writer is not None:
                self.writer.write_table(table_report)
        if self.writer is not None:
            self.writer.finalize()
            log("INFO", f"Run complete. Artifacts at {self.output_root}")
        return report


def audit_schema(
    schema: Schema, sample_data: Optional[Mapping[str, Sequence[Mapping[str, Any]]]] = None
) -> AuditReport:
    return Runner(schema, sample_data).run()


# --------------------------------------------------------------------------------------
# CLI
# --------------------------------------------------------------------------------------
def _load_inputs(args: argparse.Namespace) -> Tuple[Schema, Dict[str, List[Dict[str, Any]]]]:
    if args.url:
        client = DatabaseClient(args.url)
        try:
            log("INFO", f"Reflecting schema from {client.engine.url.render_as_string(hide_password=True)}")
            schema = SchemaReflector(client).reflect()
            if args.schema_file:
                schema = apply_annotations(schema, _read_document(args.schema_file, "Schema"))
            sample = load_sample_data(args.data, schema) if args.data else SampleReader(client).fetch_all(schema)
        finally:
            client.dispose()
        return schema, sample

    schema = load_schema(args.schema_file)
    sample = load_sample_data(args.data, schema) if args.data else {}
    return schema, sample


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="audit", description="Audit a declared schema for 1NF/2NF/3NF.")
    parser.add_argument("schema_file", nargs="?", help="JSON schema declaration (annotations when --url is used)")
    parser.add_argument("--data", help="JSON file mapping table names to sample rows")
    parser.add_argument("--format", choices=["text", "json"], default="text", help="Report format (default: %(default)s)")
    parser.add_argument("--url", help="SQLAlchemy URL to reflect tables, keys and sample rows from")
    parser.add_argument("--output", help="Also write per-table artifacts under this folder")
    parser.add_argument("--max-sample-rows", type=int, help="Rows read per table from --url (default: %d)" % CONFIG["SAMPLING"]["MAX_ROWS"])
    parser.add_argument("--quiet", action="store_true", help="Suppress [INFO] progress lines")
    args = parser.parse_args(argv)
    if not args.schema_file and not args.url:
        parser.error("a schema file or --url is required")
    return args


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    # flags apply to this run only
    saved = (CONFIG["OUTPUT"]["QUIET"], CONFIG["SAMPLING"]["MAX_ROWS"])
    CONFIG["OUTPUT"]["QUIET"] = args.quiet
    if args.max_sample_rows:
        CONFIG["SAMPLING"]["MAX_ROWS"] = args.max_sample_rows
    try:
        return _run(args)
    finally:
        CONFIG["OUTPUT"]["QUIET"], CONFIG["SAMPLING"]["MAX_ROWS"] = saved


def _run(args: argparse.Namespace) -> int:
    try:
        schema, sample = _load_inputs(args)
    except SchemaError as exc:
        log("ERROR", f"Malformed input: {exc}")
        return 2
    except OSError as exc:
        log("ERROR", f"Cannot read input: {exc}")
        return 2
    except SQLAlchemyError as exc:
        log("ERROR", f"Database error: {exc}")
        return 2

    output_root = Path(args.output) if args.output else None
    report = Runner(schema, sample, output_root=output_root).run()
    print(render_json(report) if args.format == "json" else render_text(report))
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
