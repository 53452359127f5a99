import decimal
import re
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from rule_anon.common.constants import DEFAULT_DIALECT
from rule_anon.common.errors import ConfigurationError

ANSI_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_$]*$")
ORACLE_IDENTIFIER = re.compile(r"^[A-Za-z][A-Za-z0-9_$#]*$")
MYSQL_IDENTIFIER = re.compile(r"^(?!\d+$)[A-Za-z0-9_$]+$")
MSSQL_IDENTIFIER = re.compile(r"^[A-Za-z_@#][A-Za-z0-9_@#$]*$")
ORDER_BY_PATTERN = re.compile(r"\border\s+by\b", re.IGNORECASE)
WHERE_PREFIX_PATTERN = re.compile(r"^\s*where\b\s*", re.IGNORECASE)


# Row limiting fragments: (query, limit, offset) -> query. A limit of 0 leaves the query unchanged.

def limit_offset_clause(query: str, limit: int, offset: int = 0) -> str:
    if limit == 0:
        return query

    sql = f"{query} LIMIT {limit}"
    if offset:
        sql += f" OFFSET {offset}"
    return sql


def offset_fetch_clause(query: str, limit: int, offset: int = 0) -> str:
    if limit == 0:
        return query

    # OFFSET ... FETCH is only valid after ORDER BY on SQL Server
    if not ORDER_BY_PATTERN.search(query):
        query += " ORDER BY (SELECT NULL)"
    return f"{query} OFFSET {offset} ROWS FETCH NEXT {limit} ROWS ONLY"


def fetch_first_clause(query: str, limit: int, offset: int = 0) -> str:
    if limit == 0:
        return query

    sql = query
    if offset:
        sql += f" OFFSET {offset} ROWS"
    return f"{sql} FETCH FIRST {limit} ROWS ONLY"


# Identifier quoting fragments: names that don't need quoting are returned unchanged

def plain_identifier(name: str) -> str:
    return name


def double_quote_identifier(name: str) -> str:
    if ANSI_IDENTIFIER.match(name):
        return name
    return '"' + name.replace('"', '""') + '"'


def oracle_identifier(name: str) -> str:
    if ORACLE_IDENTIFIER.match(name):
        return name
    return '"' + name.replace('"', '""') + '"'


def backtick_identifier(name: str) -> str:
    if MYSQL_IDENTIFIER.match(name):
        return name
    return "`" + name.replace("`", "``") + "`"


def bracket_identifier(name: str) -> str:
    if MSSQL_IDENTIFIER.match(name):
        return name
    return "[" + name.replace("]", "]]") + "]"


# Literal fragments

def standard_literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float, decimal.Decimal)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


def mysql_literal(value: Any) -> str:
    if isinstance(value, str):
        return "'" + value.replace("\\", "\\\\").replace("'", "''") + "'"
    return standard_literal(value)


def numeric_bool_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    return standard_literal(value)


def national_literal(value: Any) -> str:
    if isinstance(value, str):
        return "N" + standard_literal(value)
    return numeric_bool_literal(value)


@dataclass(frozen=True)
class Dialect:
    """
    SQL construction policy of one storage engine.

    Every engine starts from the default policy and replaces only the
    fragments that differ.
    """
    name: str
    limit_clause: Callable[[str, int, int], str] = limit_offset_clause
    quote_identifier: Callable[[str], str] = plain_identifier
    quote_literal: Callable[[Any], str] = standard_literal


DEFAULT = Dialect(name=DEFAULT_DIALECT)

DIALECTS: Dict[str, Dialect] = {
    "default": DEFAULT,
    "sqlite": replace(DEFAULT, name="sqlite", quote_identifier=double_quote_identifier),
    "postgres": replace(DEFAULT, name="postgres", quote_identifier=double_quote_identifier),
    "mysql": replace(DEFAULT, name="mysql", quote_identifier=backtick_identifier, quote_literal=mysql_literal),
    "mssql": replace(
        DEFAULT,
        name="mssql",
        limit_clause=offset_fetch_clause,
        quote_identifier=bracket_identifier,
        quote_literal=national_literal,
    ),
    "oracle": replace(
        DEFAULT,
        name="oracle",
        limit_clause=fetch_first_clause,
        quote_identifier=oracle_identifier,
        quote_literal=numeric_bool_literal,
    ),
}

DIALECT_ALIASES = {
    "postgresql": "postgres",
    "pg": "postgres",
    "mariadb": "mysql",
    "sqlserver": "mssql",
}


def get_dialect(name: Optional[str] = None) -> Dialect:
    if not name:
        return DEFAULT

    key = name.strip().lower()
    key = DIALECT_ALIASES.get(key, key)
    dialect = DIALECTS.get(key)
    if dialect is None:
        raise ConfigurationError(f"Unknown dialect: {name}. Expected one of: {', '.join(sorted(DIALECTS))}")
    return dialect


class QueryBuilder:
    """
    Builds SELECT and UPDATE statements for one dialect. Never executes anything.
    """

    def __init__(self, dialect: Optional[Dialect] = None, schema: Optional[str] = None):
        self.dialect = dialect or DEFAULT
        self.schema = schema or None

    def quote(self, identifier: str) -> str:
        return self.dialect.quote_identifier(identifier)

    def literal(self, value: Any) -> str:
        return self.dialect.quote_literal(value)

    def qualify(self, table_name: str, schema: Optional[str] = None) -> str:
        schema = schema or self.schema
        if not schema:
            return self.quote(table_name)
        return f"{self.quote(schema)}.{self.quote(table_name)}"

    def build_select(self, table_query: str, limit: int, offset: int = 0) -> str:
        if limit < 0 or offset < 0:
            raise ValueError("Limit and offset must be greater than or equal to zero")
        return self.dialect.limit_clause(table_query, limit, offset)

    def build_table_query(
            self,
            table_name: str,
            columns: Iterable[str],
            primary_key: Iterable[str],
            schema: Optional[str] = None,
            condition: Optional[str] = None,
    ) -> str:
        primary_key = list(primary_key)
        selected: List[str] = []
        for column in [*primary_key, *columns]:
            if column not in selected:
                selected.append(column)

        fields_expr = ", ".join(self.quote(column) for column in selected)
        query = f"SELECT {fields_expr} FROM {self.qualify(table_name, schema)}"

        if condition:
            query += f" WHERE {WHERE_PREFIX_PATTERN.sub('', condition)}"

        if primary_key:
            query += " ORDER BY " + ", ".join(self.quote(column) for column in primary_key)

        return query

    def build_update(
            self,
            table_name: str,
            values: Mapping[str, Any],
            primary_key_values: Mapping[str, Any],
            schema: Optional[str] = None,
    ) -> str:
        if not values:
            raise ValueError("Nothing to update")
        if not primary_key_values:
            raise ValueError("Update must be keyed by primary key")

        assignments = ", ".join(
            f"{self.quote(column)} = {self.literal(value)}" for column, value in values.items()
        )
        conditions = " AND ".join(
            f"{self.quote(column)} IS NULL" if value is None else f"{self.quote(column)} = {self.literal(value)}"
            for column, value in primary_key_values.items()
        )
        return f"UPDATE {self.qualify(table_name, schema)} SET {assignments} WHERE {conditions}"

    def build_primary_key_query(self, table_name: str, schema: Optional[str] = None) -> str:
        schema = schema or self.schema
        query = (
            "SELECT kcu.column_name AS column_name"
            " FROM information_schema.table_constraints tc"
            " JOIN information_schema.key_column_usage kcu"
            " ON kcu.constraint_name = tc.constraint_name"
            " AND kcu.table_schema = tc.table_schema"
            " AND kcu.table_name = tc.table_name"
            f" WHERE tc.constraint_type = 'PRIMARY KEY' AND tc.table_name = {self.literal(table_name)}"
        )
        if schema:
            query += f" AND tc.table_schema = {self.literal(schema)}"
        return query + " ORDER BY kcu.ordinal_position"
