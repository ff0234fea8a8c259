# protoknow/errors.py
"""
Error types for the protocol notation front-end.

Error hierarchy
───────────────
    ProtoError (base)
    └── ParseError       - grammar violations, carries the offending line
        └── SemanticError - undeclared / re-bound names, bad key owners

The lexer never raises: characters it does not recognise come out as
one-character identifiers so the parser decides whether they are an
error.  The knowledge analyzer has no error channel of its own.

Shells that want errors as values rather than exceptions use
:func:`protoknow.parser.try_parse`, which returns a ``ParseOutcome``
holding either the protocol or the error, or call
:meth:`ParseError.to_diagnostic` to obtain a plain frozen record.

Example Usage:
──────────────
    from protoknow.parser import parse_protocol
    from protoknow.errors import ParseError

    try:
        proto = parse_protocol(text)
    except ParseError as exc:
        print(exc.line, exc.message)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, unique
from typing import Any, Dict

__all__ = [
    "ErrorPhase",
    "Diagnostic",
    "ProtoError",
    "ParseError",
    "SemanticError",
]


@unique
class ErrorPhase(Enum):
    """Front-end phase in which a problem was found."""

    SYNTAX = "syntax"
    SEMANTIC = "semantic"


@dataclass(frozen=True)
class Diagnostic:
    """Plain structured form of a front-end failure."""

    message: str
    line: int
    phase: ErrorPhase = ErrorPhase.SYNTAX

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "line": self.line,
            "phase": self.phase.value,
        }

    def __str__(self) -> str:
        return f"line {self.line}: {self.message}"


class ProtoError(Exception):
    """Base exception for every protoknow error."""
    pass


class ParseError(ProtoError):
    """Raised when protocol text does not match the grammar.

    Parsing stops at the first error; there is no recovery and no
    multi-error reporting.
    """

    phase: ErrorPhase = ErrorPhase.SYNTAX

    def __init__(self, message: str, line: int) -> None:
        self.message = message
        self.line = line
        super().__init__(f"line {line}: {message}")

    def to_diagnostic(self) -> Diagnostic:
        return Diagnostic(message=self.message, line=self.line, phase=self.phase)

    def to_dict(self) -> Dict[str, Any]:
        return self.to_diagnostic().to_dict()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, line={self.line})"


class SemanticError(ParseError):
    """Raised by the post-parse checks (undeclared or re-bound names).

    Reported the same way as a syntax error so callers can treat both
    uniformly.
    """

    phase: ErrorPhase = ErrorPhase.SEMANTIC
