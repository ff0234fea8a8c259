"""
protoknow/lexer.py - tokeniser for the protocol notation.

Turns raw protocol text into a list of :class:`Token` ending with an
``EOF`` token.  The lexer never raises: any character it does not
recognise is emitted as a one-character ``IDENT`` so that the parser,
not the lexer, reports structural errors.

Whitespace and ``//`` line comments are skipped.  Line breaks bump a
line counter that is attached to every following token; this is the
only information the lexer carries forward, and it exists purely for
diagnostics.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict, List

logger = logging.getLogger(__name__)

__all__ = ["TokType", "Token", "KEYWORDS", "tokenise"]


class TokType(enum.Enum):
    """Lexical token types."""
    # declaration keywords
    ROLES = "roles"
    SHARED = "shared"
    PUBLIC = "public"
    PRIVATE = "private"
    FOR = "for"
    ASSERT = "assert"
    SECRET = "secret"
    # cryptographic constructors
    ENC = "Enc"
    MAC = "Mac"
    SIGN = "Sign"
    VERIFY = "Verify"
    HASH = "H"
    # punctuation
    ARROW = "->"
    CONCAT = "||"
    COLON = ":"
    COMMA = ","
    EQUAL = "="
    LPAREN = "("
    RPAREN = ")"
    IDENT = "IDENT"
    EOF = "EOF"


@dataclass(frozen=True)
class Token:
    """A lexical token: type, literal text and 1-based source line."""
    type: TokType
    text: str
    line: int

    def describe(self) -> str:
        """Human-readable form used in diagnostics."""
        if self.type is TokType.EOF:
            return "end of input"
        return f"'{self.text}'"

    def __repr__(self) -> str:
        return f"Token({self.type.name}, {self.text!r}, line {self.line})"


KEYWORDS: Dict[str, TokType] = {
    "roles": TokType.ROLES,
    "shared": TokType.SHARED,
    "public": TokType.PUBLIC,
    "private": TokType.PRIVATE,
    "for": TokType.FOR,
    "assert": TokType.ASSERT,
    "secret": TokType.SECRET,
    "Enc": TokType.ENC,
    "Mac": TokType.MAC,
    "Sign": TokType.SIGN,
    "Verify": TokType.VERIFY,
    "H": TokType.HASH,
}

# Two-character operators (checked before single-char)
_TWO_CHAR_OPS = {
    "->": TokType.ARROW,
    "||": TokType.CONCAT,
}

_ONE_CHAR_OPS = {
    ":": TokType.COLON,
    ",": TokType.COMMA,
    "=": TokType.EQUAL,
    "(": TokType.LPAREN,
    ")": TokType.RPAREN,
}


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def tokenise(text: str) -> List[Token]:
    """Tokenise protocol text.

    Parameters
    ----------
    text : str
        The raw protocol source.

    Returns
    -------
    list of Token
        Token list, always ending with an EOF token.
    """
    tokens: List[Token] = []
    i = 0
    n = len(text)
    line = 1

    while i < n:
        ch = text[i]

        if ch == "\n":
            line += 1
            i += 1
            continue

        if ch.isspace():
            i += 1
            continue

        # Line comments
        if text.startswith("//", i):
            while i < n and text[i] != "\n":
                i += 1
            continue

        two = text[i:i + 2]
        if two in _TWO_CHAR_OPS:
            tokens.append(Token(_TWO_CHAR_OPS[two], two, line))
            i += 2
            continue

        if ch in _ONE_CHAR_OPS:
            tokens.append(Token(_ONE_CHAR_OPS[ch], ch, line))
            i += 1
            continue

        if _is_ident_char(ch):
            start = i
            while i < n and _is_ident_char(text[i]):
                i += 1
            word = text[start:i]
            tokens.append(Token(KEYWORDS.get(word, TokType.IDENT), word, line))
            continue

        # Unknown character: hand it to the parser as a 1-char identifier
        logger.debug("line %d: unrecognised character %r lexed as identifier",
                     line, ch)
        tokens.append(Token(TokType.IDENT, ch, line))
        i += 1

    tokens.append(Token(TokType.EOF, "", line))
    return tokens
