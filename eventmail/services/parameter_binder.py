"""
Dynamic parameter binding and invocation for monitored stored procedures.

The parameter schema of a procedure lives in the SpParameters side table and is
resolved on every invocation: each row names the parameter, its declared type,
its direction and carries one value per supported type. The declared type picks
exactly one of those slots; a NULL in the picked slot is bound as a typed NULL.

Invocation is dialect specific:
- SQL Server: a T-SQL batch declaring one typed variable per parameter, an EXEC
  with OUTPUT markers, and a trailing SELECT of the output variables.
- PostgreSQL: `SELECT * FROM fn(name => value, ...)`; OUT/INOUT values are read
  from the returned columns of the first row.
"""
from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from eventmail.db.models.events import SpParameter
from eventmail.db.repo.queue_repo import QueueRepo
from eventmail.errors import ConfigurationError, ParameterSchemaError
from eventmail.services.result_rows import ResultRow


class ParamType(str, Enum):
    INTEGER = "integer"
    TEXT = "text"
    DECIMAL = "decimal"
    TIMESTAMP = "timestamp"
    BOOLEAN = "boolean"


class Direction(str, Enum):
    IN = "in"
    OUT = "out"
    INOUT = "inout"


TYPE_ALIASES: dict[str, ParamType] = {
    "integer": ParamType.INTEGER,
    "int": ParamType.INTEGER,
    "text": ParamType.TEXT,
    "nvarchar": ParamType.TEXT,
    "varchar": ParamType.TEXT,
    "decimal": ParamType.DECIMAL,
    "numeric": ParamType.DECIMAL,
    "timestamp": ParamType.TIMESTAMP,
    "datetime2": ParamType.TIMESTAMP,
    "datetime": ParamType.TIMESTAMP,
    "boolean": ParamType.BOOLEAN,
    "bit": ParamType.BOOLEAN,
}

DIRECTION_ALIASES: dict[str, Direction] = {
    "in": Direction.IN,
    "input": Direction.IN,
    "out": Direction.OUT,
    "output": Direction.OUT,
    "inout": Direction.INOUT,
    "inputoutput": Direction.INOUT,
}

_PYTHON_TYPES: dict[ParamType, tuple[type, ...]] = {
    ParamType.INTEGER: (int,),
    ParamType.TEXT: (str,),
    ParamType.DECIMAL: (Decimal, int),
    ParamType.TIMESTAMP: (datetime,),
    ParamType.BOOLEAN: (bool,),
}

_IDENTIFIER = re.compile(r"^(?:\[[^\[\]]+\]|[A-Za-z_#][A-Za-z0-9_$#@]*)$")


def parse_param_type(raw: str | None) -> ParamType:
    key = str(raw or "").strip().lower()
    if key not in TYPE_ALIASES:
        raise ParameterSchemaError(f"unsupported parameter type {raw!r}")
    return TYPE_ALIASES[key]


def parse_direction(raw: str | None) -> Direction:
    key = str(raw or "").strip().lower()
    if not key:
        return Direction.IN
    if key not in DIRECTION_ALIASES:
        raise ParameterSchemaError(f"unsupported parameter direction {raw!r}")
    return DIRECTION_ALIASES[key]


@dataclass(frozen=True)
class ParamValue:
    """Tagged value: the declared type plus the literal from its slot (or None)."""

    type: ParamType
    value: int | str | Decimal | datetime | bool | None = None

    def __post_init__(self) -> None:
        v = self.value
        if v is None:
            return
        if self.type != ParamType.BOOLEAN and isinstance(v, bool):
            raise ParameterSchemaError(f"{self.type.value} parameter cannot hold a boolean")
        if not isinstance(v, _PYTHON_TYPES[self.type]):
            raise ParameterSchemaError(f"{self.type.value} parameter cannot hold {type(v).__name__}")

    @classmethod
    def from_slots(
        cls,
        param_type: ParamType,
        *,
        integer: int | None = None,
        text: str | None = None,
        decimal: Decimal | None = None,
        timestamp: datetime | None = None,
        boolean: bool | None = None,
    ) -> "ParamValue":
        slots: dict[ParamType, Any] = {
            ParamType.INTEGER: integer,
            ParamType.TEXT: text,
            ParamType.DECIMAL: decimal,
            ParamType.TIMESTAMP: timestamp,
            ParamType.BOOLEAN: boolean,
        }
        return cls(param_type, slots[param_type])


@dataclass(frozen=True)
class BoundParameter:
    name: str
    value: ParamValue
    direction: Direction = Direction.IN

    @property
    def is_output(self) -> bool:
        return self.direction in (Direction.OUT, Direction.INOUT)

    @property
    def sends_value(self) -> bool:
        return self.direction in (Direction.IN, Direction.INOUT)


@dataclass
class ProcedureResult:
    rows: list[ResultRow] = field(default_factory=list)
    outputs: dict[str, Any] = field(default_factory=dict)


def _normalize_param_name(raw: str | None) -> str:
    name = str(raw or "").strip().lstrip("@")
    if not name or not re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", name):
        raise ParameterSchemaError(f"invalid parameter name {raw!r}")
    return name


def parameter_from_row(row: SpParameter) -> BoundParameter:
    param_type = parse_param_type(row.sql_db_type)
    value = ParamValue.from_slots(
        param_type,
        integer=row.value_int,
        text=row.value_nvarchar,
        decimal=Decimal(row.value_decimal) if row.value_decimal is not None else None,
        timestamp=row.value_datetime2,
        boolean=bool(row.value_bit) if row.value_bit is not None else None,
    )
    return BoundParameter(
        name=_normalize_param_name(row.name),
        value=value,
        direction=parse_direction(row.direction),
    )


def qualified_procedure_name(proc_name: str, database_name: str | None = None) -> str:
    parts = [p for p in str(proc_name or "").strip().split(".")]
    db = str(database_name or "").strip()
    if db:
        parts = db.split(".") + parts
    if not parts or any(not _IDENTIFIER.match(p.strip()) for p in parts):
        raise ParameterSchemaError(f"invalid procedure name {proc_name!r} (database={database_name!r})")
    return ".".join(p.strip() for p in parts)


class ParameterBinder:
    def __init__(self, repo: QueueRepo) -> None:
        self.repo = repo

    def bind(self, session: Session, procedure_id: int) -> list[BoundParameter]:
        return [parameter_from_row(r) for r in self.repo.list_parameters(session, procedure_id)]


class ProcedureInvoker(ABC):
    @abstractmethod
    def invoke(self, session: Session, qualified_name: str, parameters: list[BoundParameter]) -> ProcedureResult:
        raise NotImplementedError


MSSQL_TYPES: dict[ParamType, str] = {
    ParamType.INTEGER: "INT",
    ParamType.TEXT: "NVARCHAR(MAX)",
    ParamType.DECIMAL: "DECIMAL(38, 10)",
    ParamType.TIMESTAMP: "DATETIME2(7)",
    ParamType.BOOLEAN: "BIT",
}


class MssqlProcedureInvoker(ProcedureInvoker):
    def build_batch(self, qualified_name: str, parameters: list[BoundParameter]) -> tuple[str, list[Any]]:
        lines = ["SET NOCOUNT ON;"]
        args: list[Any] = []
        exec_args: list[str] = []
        outputs: list[str] = []
        for i, p in enumerate(parameters):
            var = f"@__p{i}"
            lines.append(f"DECLARE {var} {MSSQL_TYPES[p.value.type]} = ?;")
            args.append(p.value.value if p.sends_value else None)
            exec_args.append(f"@{p.name} = {var}" + (" OUTPUT" if p.is_output else ""))
            if p.is_output:
                outputs.append(f"{var} AS [{p.name}]")
        lines.append(f"EXEC {qualified_name}" + (" " + ", ".join(exec_args) if exec_args else "") + ";")
        if outputs:
            lines.append("SELECT " + ", ".join(outputs) + ";")
        return "\n".join(lines), args

    def invoke(self, session: Session, qualified_name: str, parameters: list[BoundParameter]) -> ProcedureResult:
        sql, args = self.build_batch(qualified_name, parameters)
        dbapi_conn = session.connection().connection
        cursor = dbapi_conn.cursor()
        try:
            cursor.execute(sql, args)
            result_sets: list[list[ResultRow]] = []
            while True:
                if cursor.description:
                    cols = [d[0] for d in cursor.description]
                    result_sets.append([ResultRow.from_columns(cols, r) for r in cursor.fetchall()])
                if not cursor.nextset():
                    break
        finally:
            cursor.close()

        outputs: dict[str, Any] = {}
        if any(p.is_output for p in parameters) and result_sets:
            last = result_sets.pop()
            if last:
                outputs = dict(last[0].items())
        return ProcedureResult(rows=result_sets[0] if result_sets else [], outputs=outputs)


POSTGRES_TYPES: dict[ParamType, str] = {
    ParamType.INTEGER: "integer",
    ParamType.TEXT: "text",
    ParamType.DECIMAL: "numeric",
    ParamType.TIMESTAMP: "timestamp",
    ParamType.BOOLEAN: "boolean",
}


class PostgresProcedureInvoker(ProcedureInvoker):
    def build_query(self, qualified_name: str, parameters: list[BoundParameter]) -> tuple[str, dict[str, Any]]:
        args: list[str] = []
        binds: dict[str, Any] = {}
        for i, p in enumerate(parameters):
            if not p.sends_value:
                continue
            key = f"p{i}"
            args.append(f"{p.name} => CAST(:{key} AS {POSTGRES_TYPES[p.value.type]})")
            binds[key] = p.value.value
        return f"SELECT * FROM {qualified_name}({', '.join(args)})", binds

    def invoke(self, session: Session, qualified_name: str, parameters: list[BoundParameter]) -> ProcedureResult:
        sql, binds = self.build_query(qualified_name, parameters)
        result = session.execute(text(sql), binds)
        cols = list(result.keys())
        rows = [ResultRow.from_columns(cols, r) for r in result.all()]
        outputs: dict[str, Any] = {}
        if rows:
            for p in parameters:
                if p.is_output and p.name in rows[0]:
                    outputs[p.name] = rows[0][p.name]
        return ProcedureResult(rows=rows, outputs=outputs)


def invoker_for_dialect(dialect_name: str) -> ProcedureInvoker:
    name = (dialect_name or "").strip().lower()
    if name == "mssql":
        return MssqlProcedureInvoker()
    if name == "postgresql":
        return PostgresProcedureInvoker()
    raise ConfigurationError(f"stored procedures are not supported on dialect {dialect_name!r}")
