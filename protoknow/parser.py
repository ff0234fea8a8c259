"""protoknow/parser.py – recursive-descent parser for the protocol notation.

Grammar::

    protocol   := rolesDecl keyDecl* message* assertion* ;
    rolesDecl  := "roles" ":" ident ("," ident)* ;
    keyDecl    := ("shared" ident "for" identList)
                | ("public" | "private") ident "for" ident ;
    message    := ident "->" ident ":" stmt ;
    stmt       := ident "=" expr | expr ;
    expr       := term ("||" term)* ;
    term       := "Enc" "(" expr "," expr ")"
                | "Mac" "(" expr "," expr ")"
                | "Sign" "(" ident "," expr ")"
                | "Verify" "(" ident "," expr "," expr ")"
                | "H" "(" expr ")"
                | ident ;
    assertion  := "assert" "secret" "(" ident ")" ("for" identList)? ;

Design principles
-----------------
* **Single pass** over the token list produced by :func:`tokenise`.
* **One token of lookahead**, used only at statement position to tell
  ``ident "=" expr`` from a bare ``expr``; the assignment reading wins
  whenever the second token is ``=``.  No expression starts with
  ``ident "="`` so this is unambiguous.
* **Fail fast** – the first unexpected token raises
  :class:`~protoknow.errors.ParseError` with an
  ``expected <X> after <Y>`` message and the offending line.  There is
  no recovery.
* **Bounded depth** - an expression tree deeper than
  :data:`MAX_EXPR_DEPTH` levels is rejected with a ``ParseError``.

Public API
----------
``parse_protocol(text, *, check=True) -> Protocol``
    Lex, parse and (by default) run the semantic checks.

``try_parse(text) -> ParseOutcome``
    Same pipeline, returning the error as a value instead of raising.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from protoknow import ast as A
from protoknow.errors import ParseError
from protoknow.lexer import Token, TokType, tokenise
from protoknow.semantic import check_protocol

logger = logging.getLogger(__name__)

__all__ = ["Parser", "ParseOutcome", "parse_protocol", "try_parse"]

_KEY_KINDS = {
    TokType.SHARED: A.KeyKind.SHARED,
    TokType.PUBLIC: A.KeyKind.PUBLIC,
    TokType.PRIVATE: A.KeyKind.PRIVATE,
}

# Deepest expression tree the parser will build.  Every nested term and
# every "||" operand adds one level.
MAX_EXPR_DEPTH = 100


class Parser:
    """Recursive-descent parser over a token list ending in EOF."""

    def __init__(self, tokens: List[Token]):
        if not tokens or tokens[-1].type is not TokType.EOF:
            raise ValueError("token list must end with an EOF token")
        self._tokens = tokens
        self._pos = 0
        self._depth = 0

    # ---- token helpers -------------------------------------------------

    def _peek(self, offset: int = 0) -> Token:
        idx = min(self._pos + offset, len(self._tokens) - 1)
        return self._tokens[idx]

    def _previous(self) -> Optional[Token]:
        return self._tokens[self._pos - 1] if self._pos > 0 else None

    def _advance(self) -> Token:
        tok = self._tokens[self._pos]
        if tok.type is not TokType.EOF:
            self._pos += 1
        return tok

    def _at(self, *types: TokType) -> bool:
        return self._peek().type in types

    def _error(self, expected: str) -> ParseError:
        tok = self._peek()
        prev = self._previous()
        after = prev.describe() if prev is not None else "start of input"
        return ParseError(
            f"expected {expected} after {after}, found {tok.describe()}",
            tok.line,
        )

    def _expect(self, tt: TokType, expected: str) -> Token:
        if self._peek().type is not tt:
            raise self._error(expected)
        return self._advance()

    def _enter(self, line: int) -> None:
        self._depth += 1
        if self._depth > MAX_EXPR_DEPTH:
            raise ParseError(
                f"expression nested too deeply (more than {MAX_EXPR_DEPTH} levels)",
                line,
            )

    def _ident(self, expected: str = "identifier") -> A.Identifier:
        tok = self._expect(TokType.IDENT, expected)
        return A.Identifier(tok.text, line=tok.line)

    def _ident_list(self, expected: str) -> Tuple[A.Identifier, ...]:
        items = [self._ident(expected)]
        while self._at(TokType.COMMA):
            self._advance()
            items.append(self._ident(expected))
        return tuple(items)

    # ---- productions ---------------------------------------------------

    def parse(self) -> A.Protocol:
        """protocol := rolesDecl keyDecl* message* assertion*"""
        roles = self._parse_roles()

        keys: List[A.KeyDecl] = []
        while self._at(*_KEY_KINDS):
            keys.append(self._parse_key_decl())

        messages: List[A.MessageSend] = []
        while self._at(TokType.IDENT):
            messages.append(self._parse_message())

        assertions: List[A.SecrecyAssertion] = []
        while self._at(TokType.ASSERT):
            assertions.append(self._parse_assertion())

        if not self._at(TokType.EOF):
            if assertions:
                expected = "'assert' or end of input"
            elif messages:
                expected = "message, 'assert' or end of input"
            else:
                expected = "key declaration, message, 'assert' or end of input"
            raise self._error(expected)

        logger.debug("parsed %d role(s), %d key(s), %d message(s), %d assertion(s)",
                     len(roles.roles), len(keys), len(messages), len(assertions))
        return A.Protocol(
            roles=roles,
            key_decls=tuple(keys),
            messages=tuple(messages),
            assertions=tuple(assertions),
        )

    def _parse_roles(self) -> A.RoleSet:
        """rolesDecl := "roles" ":" ident ("," ident)*"""
        head = self._expect(TokType.ROLES, "'roles'")
        self._expect(TokType.COLON, "':'")
        return A.RoleSet(self._ident_list("role name"), line=head.line)

    def _parse_key_decl(self) -> A.KeyDecl:
        """keyDecl := "shared" ident "for" identList | ("public"|"private") ident "for" ident"""
        head = self._advance()
        kind = _KEY_KINDS[head.type]
        name = self._ident("key name")
        self._expect(TokType.FOR, "'for'")
        if kind is A.KeyKind.SHARED:
            owners = self._ident_list("owner role")
        else:
            owners = (self._ident("owner role"),)
        return A.KeyDecl(kind, name, owners, line=head.line)

    def _parse_message(self) -> A.MessageSend:
        """message := ident "->" ident ":" stmt"""
        sender = self._ident("sender")
        self._expect(TokType.ARROW, "'->'")
        receiver = self._ident("receiver")
        self._expect(TokType.COLON, "':'")
        body = self._parse_stmt()
        return A.MessageSend(sender, receiver, body, line=sender.line)

    def _parse_stmt(self) -> A.Body:
        """stmt := ident "=" expr | expr"""
        if self._at(TokType.IDENT) and self._peek(1).type is TokType.EQUAL:
            target = self._ident()
            self._advance()  # '='
            value = self._parse_expr()
            return A.Assign(target, value, line=target.line)
        return self._parse_expr()

    def _parse_expr(self) -> A.Expr:
        """expr := term ("||" term)*"""
        base = self._depth
        self._enter(self._peek().line)
        try:
            left = self._parse_term()
            while self._at(TokType.CONCAT):
                self._enter(self._advance().line)
                right = self._parse_term()
                left = A.Concat(left, right, line=left.line)
            return left
        finally:
            self._depth = base

    def _parse_term(self) -> A.Expr:
        tok = self._peek()
        if tok.type is TokType.IDENT:
            return self._ident()
        if tok.type is TokType.ENC:
            key, msg = self._parse_keyed_expr()
            return A.Encrypt(key, msg, line=tok.line)
        if tok.type is TokType.MAC:
            key, msg = self._parse_keyed_expr()
            return A.Mac(key, msg, line=tok.line)
        if tok.type is TokType.SIGN:
            self._advance()
            self._expect(TokType.LPAREN, "'('")
            key = self._ident("signing key")
            self._expect(TokType.COMMA, "','")
            msg = self._parse_expr()
            self._expect(TokType.RPAREN, "')'")
            return A.Sign(key, msg, line=tok.line)
        if tok.type is TokType.VERIFY:
            self._advance()
            self._expect(TokType.LPAREN, "'('")
            key = self._ident("verification key")
            self._expect(TokType.COMMA, "','")
            msg = self._parse_expr()
            self._expect(TokType.COMMA, "','")
            sig = self._parse_expr()
            self._expect(TokType.RPAREN, "')'")
            return A.Verify(key, msg, sig, line=tok.line)
        if tok.type is TokType.HASH:
            self._advance()
            self._expect(TokType.LPAREN, "'('")
            inner = self._parse_expr()
            self._expect(TokType.RPAREN, "')'")
            return A.Hash(inner, line=tok.line)
        raise self._error("expression")

    def _parse_keyed_expr(self) -> Tuple[A.Identifier, A.Expr]:
        """Shared tail of ``Enc``/``Mac``: "(" expr "," expr ")"."""
        head = self._advance()
        self._expect(TokType.LPAREN, "'('")
        key_tok = self._peek()
        key = self._parse_expr()
        if not isinstance(key, A.Identifier):
            raise ParseError(
                f"expected key identifier after '{head.text}(', "
                f"found {key.label()}",
                key_tok.line,
            )
        self._expect(TokType.COMMA, "','")
        msg = self._parse_expr()
        self._expect(TokType.RPAREN, "')'")
        return key, msg

    def _parse_assertion(self) -> A.SecrecyAssertion:
        """assertion := "assert" "secret" "(" ident ")" ("for" identList)?"""
        head = self._advance()
        self._expect(TokType.SECRET, "'secret'")
        self._expect(TokType.LPAREN, "'('")
        term = self._ident("secret term")
        self._expect(TokType.RPAREN, "')'")
        restricted: Optional[Tuple[A.Identifier, ...]] = None
        if self._at(TokType.FOR):
            self._advance()
            restricted = self._ident_list("role name")
        return A.SecrecyAssertion(term, restricted, line=head.line)


@dataclass(frozen=True)
class ParseOutcome:
    """Result of :func:`try_parse`: exactly one of the fields is set."""

    protocol: Optional[A.Protocol] = None
    error: Optional[ParseError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_protocol(text: str, *, check: bool = True) -> A.Protocol:
    """Parse protocol text into a :class:`~protoknow.ast.Protocol`.

    Parameters
    ----------
    text : str
        The protocol source.
    check : bool
        Run the post-parse semantic checks (undeclared names, bad key
        owners, re-bound assignment targets).  Defaults to ``True``.

    Raises
    ------
    ParseError
        On the first syntax error.
    SemanticError
        On the first semantic error (only when *check* is true).
    """
    protocol = Parser(tokenise(text)).parse()
    if check:
        check_protocol(protocol)
    return protocol


def try_parse(text: str, *, check: bool = True) -> ParseOutcome:
    """Like :func:`parse_protocol` but returns failures as values."""
    try:
        return ParseOutcome(protocol=parse_protocol(text, check=check))
    except ParseError as exc:
        logger.debug("parse failed: %s", exc)
        return ParseOutcome(error=exc)
