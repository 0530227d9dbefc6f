# agentic_obs_store/db/infra/sql_utils.py
"""
SQL identifier helpers used when rendering DDL from the declarative schema.

 - validate_identifier(name)    -> raises on suspicious/invalid names
 - quote_ident(name)            -> double-quoted, SQL-escaped identifier
 - quote_column_list(columns)   -> accepts either "a,b" or ["a","b"]
 - placeholders(n)              -> "?, ?, ..." for parameter binding
"""
from __future__ import annotations

from typing import Sequence, Union


def validate_identifier(name: str) -> None:
    """
    Reject non-strings, empty names and control characters.
    Raises ValueError/TypeError on invalid input.
    """
    if not isinstance(name, str):
        raise TypeError("Identifier must be a string")
    if not name:
        raise ValueError("Identifier must not be empty")
    if "\x00" in name or "\n" in name or "\r" in name:
        raise ValueError("Identifier contains disallowed control characters")


def quote_ident(name: str) -> str:
    """
    quote_ident('config') -> '"config"'
    quote_ident('we"ird') -> '"we""ird"'
    """
    validate_identifier(name)
    return '"' + name.replace('"', '""') + '"'


def quote_column_list(columns: Union[str, Sequence[str]]) -> str:
    if isinstance(columns, str):
        parts = [p.strip() for p in columns.split(",") if p.strip()]
    else:
        parts = list(columns)
    if not parts:
        raise ValueError("Empty column list provided")
    return ", ".join(quote_ident(p) for p in parts)


def placeholders(count: int) -> str:
    if count < 1:
        raise ValueError("placeholders requires at least one parameter")
    return ", ".join("?" for _ in range(count))
