"""
Post-parse semantic checks for protocol ASTs.

Performs name resolution over a freshly parsed :class:`Protocol`:

1. Role table - ``roles:`` entries, no duplicates
2. Key table - declared keys, no clash with roles, owners must be roles
3. Message scan - senders/receivers are roles, keys are known before
   they are used as keys, assignment targets never re-bind a name
4. Assertions - the secret term must occur in the protocol and a
   ``for`` list may only name roles

Any identifier in a message body that is not a role, a key or an
earlier assignment target is a *fresh value* (nonce, plaintext) bound
by its first use and attributed to the sender of that step.

The first problem raises :class:`~protoknow.errors.SemanticError`; it
carries a message and a line just like a syntax error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

from protoknow import ast as A
from protoknow.errors import SemanticError

logger = logging.getLogger(__name__)

__all__ = ["NameKind", "Binding", "Scope", "check_protocol", "collect_scope"]


class NameKind(Enum):
    """How a name entered the protocol's scope."""
    ROLE = "role"
    KEY = "key"
    ASSIGNED = "assigned"
    FRESH = "fresh"


@dataclass(frozen=True)
class Binding:
    """A resolved name.

    Attributes:
        name: The identifier text
        kind: Role, declared key, assignment target or fresh value
        line: Line of the declaration or first use
        origin: Role that introduced the name (assigned / fresh only)
        step: 0-based index of the introducing message (assigned / fresh only)
    """
    name: str
    kind: NameKind
    line: int
    origin: Optional[str] = None
    step: Optional[int] = None


@dataclass
class Scope:
    """Symbol table produced by :func:`collect_scope`."""
    bindings: Dict[str, Binding] = field(default_factory=dict)

    def lookup(self, name: str) -> Optional[Binding]:
        return self.bindings.get(name)

    def names(self, kind: NameKind) -> Tuple[str, ...]:
        return tuple(b.name for b in self.bindings.values() if b.kind is kind)

    @property
    def roles(self) -> Tuple[str, ...]:
        return self.names(NameKind.ROLE)

    @property
    def keys(self) -> Tuple[str, ...]:
        return self.names(NameKind.KEY)

    @property
    def fresh(self) -> Tuple[str, ...]:
        return self.names(NameKind.FRESH)

    @property
    def assigned(self) -> Tuple[str, ...]:
        return self.names(NameKind.ASSIGNED)

    def _bind(self, binding: Binding) -> None:
        self.bindings[binding.name] = binding


class _BodyResolver(A.ExprVisitor[None]):
    """Resolves the names of one message body against the scope."""

    def __init__(self, scope: Scope, sender: str, step: int) -> None:
        self.scope = scope
        self.sender = sender
        self.step = step

    def _use(self, node: A.Identifier) -> None:
        if self.scope.lookup(node.name) is None:
            self.scope._bind(Binding(node.name, NameKind.FRESH, node.line,
                                     origin=self.sender, step=self.step))

    def _use_key(self, node: A.Identifier, ctor: str) -> None:
        binding = self.scope.lookup(node.name)
        if binding is None:
            raise SemanticError(
                f"undeclared key '{node.name}' used in {ctor}(...)", node.line)
        if binding.kind is NameKind.ROLE:
            raise SemanticError(
                f"role '{node.name}' cannot be used as a key in {ctor}(...)",
                node.line)

    def visit_identifier(self, node: A.Identifier) -> None:
        self._use(node)

    def visit_concat(self, node: A.Concat) -> None:
        A.dispatch_expr(node.left, self)
        A.dispatch_expr(node.right, self)

    def visit_encrypt(self, node: A.Encrypt) -> None:
        self._use_key(node.key, "Enc")
        A.dispatch_expr(node.message, self)

    def visit_mac(self, node: A.Mac) -> None:
        self._use_key(node.key, "Mac")
        A.dispatch_expr(node.message, self)

    def visit_hash(self, node: A.Hash) -> None:
        A.dispatch_expr(node.inner, self)

    def visit_sign(self, node: A.Sign) -> None:
        self._use_key(node.key, "Sign")
        A.dispatch_expr(node.message, self)

    def visit_verify(self, node: A.Verify) -> None:
        self._use_key(node.key, "Verify")
        A.dispatch_expr(node.message, self)
        A.dispatch_expr(node.signature, self)

    def visit_assign(self, node: A.Assign) -> None:
        A.dispatch_expr(node.value, self)
        target = node.target
        existing = self.scope.lookup(target.name)
        if existing is not None:
            raise SemanticError(
                f"cannot assign to '{target.name}': already bound as "
                f"{existing.kind.value} (line {existing.line})",
                target.line)
        self.scope._bind(Binding(target.name, NameKind.ASSIGNED, target.line,
                                 origin=self.sender, step=self.step))


def collect_scope(protocol: A.Protocol) -> Scope:
    """Resolve every name in *protocol* and return the symbol table.

    Raises:
        SemanticError: on the first undeclared or conflicting name.
    """
    scope = Scope()

    for role in protocol.roles.roles:
        existing = scope.lookup(role.name)
        if existing is not None:
            raise SemanticError(
                f"duplicate role '{role.name}' (first declared on line "
                f"{existing.line})", role.line)
        scope._bind(Binding(role.name, NameKind.ROLE, role.line))

    for kd in protocol.key_decls:
        existing = scope.lookup(kd.name.name)
        if existing is not None:
            raise SemanticError(
                f"key '{kd.name.name}' conflicts with {existing.kind.value} "
                f"declared on line {existing.line}", kd.name.line)
        for owner in kd.owners:
            if owner.name not in scope.roles:
                raise SemanticError(
                    f"owner '{owner.name}' of key '{kd.name.name}' is not a "
                    f"declared role", owner.line)
        scope._bind(Binding(kd.name.name, NameKind.KEY, kd.name.line))

    roles = set(scope.roles)
    for step, msg in enumerate(protocol.messages):
        for end, who in (("sender", msg.sender), ("receiver", msg.receiver)):
            if who.name not in roles:
                raise SemanticError(
                    f"{end} '{who.name}' is not a declared role", who.line)
        A.dispatch_expr(msg.body, _BodyResolver(scope, msg.sender.name, step))

    for assertion in protocol.assertions:
        if scope.lookup(assertion.term.name) is None:
            raise SemanticError(
                f"secrecy assertion on undeclared identifier "
                f"'{assertion.term.name}'", assertion.term.line)
        for allowed in assertion.restricted_to or ():
            if allowed.name not in roles:
                raise SemanticError(
                    f"'{allowed.name}' in 'for' list is not a declared role",
                    allowed.line)

    logger.debug("scope: %d role(s), %d key(s), %d assigned, %d fresh",
                 len(scope.roles), len(scope.keys), len(scope.assigned),
                 len(scope.fresh))
    return scope


def check_protocol(protocol: A.Protocol) -> None:
    """Validate *protocol*; raises ``SemanticError`` on the first problem."""
    collect_scope(protocol)
