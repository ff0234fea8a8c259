"""protoknow/ast.py – AST definitions for the protocol notation.

The parser produces, and every later stage consumes, a tree of frozen
dataclasses.  A protocol text such as::

    roles: Alice, Bob
    shared K for Alice, Bob
    Alice -> Bob: c = Enc(K, M)
    assert secret(M)

becomes a :class:`Protocol` whose ``messages`` hold one
:class:`MessageSend` with an :class:`Assign` body wrapping an
:class:`Encrypt` expression.

Design invariants
-----------------
* Every node is a frozen dataclass (immutable after construction).
* Child sequences are tuples, never lists.
* Every node records the source ``line`` it started on.  The line is
  excluded from equality and ``repr`` so structurally identical trees
  compare equal regardless of layout.
* Expression variants form a closed union (``Expr``).  Behaviour that
  depends on the variant goes through :class:`ExprVisitor`, whose
  methods are all abstract: a visitor that forgets a variant cannot be
  instantiated, and :func:`dispatch_expr` raises ``TypeError`` on a node
  type it does not know.

Module layout
-------------
§1  Expression nodes
§2  Declarations, steps and the protocol root
§3  Visitor protocol and dispatch
§4  Built-in visitors (labels, identifier collection, sexp / dict)
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar, Union

import sexpdata
from sexpdata import Symbol

__all__ = [
    "Identifier", "Concat", "Encrypt", "Mac", "Hash", "Sign", "Verify",
    "Assign", "Expr", "Body",
    "RoleSet", "KeyKind", "KeyDecl", "MessageSend", "SecrecyAssertion",
    "Protocol",
    "ExprVisitor", "dispatch_expr", "render_label", "collect_identifiers",
]

T = TypeVar("T")


class _Node(abc.ABC):
    """Shared tree helpers; subclasses supply ``children``/``tree_label``."""

    __slots__ = ()

    def children(self) -> Tuple["_Node", ...]:
        return ()

    @abc.abstractmethod
    def tree_label(self) -> str:
        ...

    def pretty(self) -> str:
        """Render the subtree as an indented tree."""
        lines: List[str] = []
        self._build_pretty(lines, "", True)
        return "\n".join(lines) + "\n"

    def _build_pretty(self, lines: List[str], indent: str, last: bool) -> None:
        lines.append(f"{indent}{'└─ ' if last else '├─ '}{self.tree_label()}")
        kids = self.children()
        child_indent = indent + ("   " if last else "│  ")
        for i, kid in enumerate(kids):
            kid._build_pretty(lines, child_indent, i == len(kids) - 1)


class _ExprNode(_Node):
    __slots__ = ()

    def label(self) -> str:
        """Compact textual rendering, e.g. ``Enc(K, M)``."""
        return render_label(self)  # type: ignore[arg-type]

    def tree_label(self) -> str:
        return self.label()


# ════════════════════════════════════════════════════════════════════════
# §1  Expression nodes
# ════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Identifier(_ExprNode):
    """An atomic symbolic name: a role, key, nonce or message variable."""

    name: str
    line: int = field(default=0, compare=False, repr=False)

    def tree_label(self) -> str:
        return f"Id({self.name})"

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class Concat(_ExprNode):
    """``left || right``; an opaque pairing, not self-describing."""

    left: Expr
    right: Expr
    line: int = field(default=0, compare=False, repr=False)

    def children(self) -> Tuple[_Node, ...]:
        return (self.left, self.right)

    def tree_label(self) -> str:
        return "Concat"


@dataclass(frozen=True, slots=True)
class Encrypt(_ExprNode):
    """``Enc(key, message)``."""

    key: Identifier
    message: Expr
    line: int = field(default=0, compare=False, repr=False)

    def children(self) -> Tuple[_Node, ...]:
        return (self.key, self.message)


@dataclass(frozen=True, slots=True)
class Mac(_ExprNode):
    """``Mac(key, message)``."""

    key: Identifier
    message: Expr
    line: int = field(default=0, compare=False, repr=False)

    def children(self) -> Tuple[_Node, ...]:
        return (self.key, self.message)


@dataclass(frozen=True, slots=True)
class Hash(_ExprNode):
    """``H(inner)``."""

    inner: Expr
    line: int = field(default=0, compare=False, repr=False)

    def children(self) -> Tuple[_Node, ...]:
        return (self.inner,)


@dataclass(frozen=True, slots=True)
class Sign(_ExprNode):
    """``Sign(signing_key, message)``."""

    key: Identifier
    message: Expr
    line: int = field(default=0, compare=False, repr=False)

    def children(self) -> Tuple[_Node, ...]:
        return (self.key, self.message)


@dataclass(frozen=True, slots=True)
class Verify(_ExprNode):
    """``Verify(public_key, message, signature)``."""

    key: Identifier
    message: Expr
    signature: Expr
    line: int = field(default=0, compare=False, repr=False)

    def children(self) -> Tuple[_Node, ...]:
        return (self.key, self.message, self.signature)


@dataclass(frozen=True, slots=True)
class Assign(_ExprNode):
    """``target = value``; the target travels in the clear."""

    target: Identifier
    value: Expr
    line: int = field(default=0, compare=False, repr=False)

    def children(self) -> Tuple[_Node, ...]:
        return (self.target, self.value)

    def tree_label(self) -> str:
        return f"Assign({self.target.name} = ...)"


Expr = Union[Identifier, Concat, Encrypt, Mac, Hash, Sign, Verify]
Body = Union[Expr, Assign]


# ════════════════════════════════════════════════════════════════════════
# §2  Declarations, steps and the protocol root
# ════════════════════════════════════════════════════════════════════════


class KeyKind(Enum):
    """Kind of a declared key."""

    SHARED = "shared"
    PUBLIC = "public"
    PRIVATE = "private"


@dataclass(frozen=True, slots=True)
class RoleSet(_Node):
    """``roles: A, B, ...`` in declaration order."""

    roles: Tuple[Identifier, ...]
    line: int = field(default=0, compare=False, repr=False)

    def names(self) -> Tuple[str, ...]:
        return tuple(r.name for r in self.roles)

    def tree_label(self) -> str:
        return f"Roles: [{', '.join(self.names())}]"


@dataclass(frozen=True, slots=True)
class KeyDecl(_Node):
    """``shared K for A, B`` / ``public pk for A`` / ``private sk for A``."""

    kind: KeyKind
    name: Identifier
    owners: Tuple[Identifier, ...]
    line: int = field(default=0, compare=False, repr=False)

    def owner_names(self) -> Tuple[str, ...]:
        return tuple(o.name for o in self.owners)

    def tree_label(self) -> str:
        return (f"Key({self.kind.value} {self.name.name} "
                f"for {', '.join(self.owner_names())})")


@dataclass(frozen=True, slots=True)
class MessageSend(_Node):
    """One protocol step: ``sender -> receiver : body``."""

    sender: Identifier
    receiver: Identifier
    body: Body
    line: int = field(default=0, compare=False, repr=False)

    def children(self) -> Tuple[_Node, ...]:
        return (self.body,)

    def tree_label(self) -> str:
        return f"MessageSend({self.sender.name} -> {self.receiver.name})"


@dataclass(frozen=True, slots=True)
class SecrecyAssertion(_Node):
    """``assert secret(term)`` optionally restricted ``for A, B``."""

    term: Identifier
    restricted_to: Optional[Tuple[Identifier, ...]] = None
    line: int = field(default=0, compare=False, repr=False)

    def allowed_names(self) -> Optional[Tuple[str, ...]]:
        if self.restricted_to is None:
            return None
        return tuple(r.name for r in self.restricted_to)

    def label(self) -> str:
        text = f"secret({self.term.name})"
        if self.restricted_to is not None:
            text += " for " + ", ".join(self.allowed_names() or ())
        return text

    def tree_label(self) -> str:
        return f"Assert {self.label()}"


@dataclass(frozen=True, slots=True)
class Protocol(_Node):
    """Root of the AST."""

    roles: RoleSet
    key_decls: Tuple[KeyDecl, ...] = ()
    messages: Tuple[MessageSend, ...] = ()
    assertions: Tuple[SecrecyAssertion, ...] = ()

    def children(self) -> Tuple[_Node, ...]:
        return (self.roles, *self.key_decls, *self.messages, *self.assertions)

    def tree_label(self) -> str:
        return "Protocol"

    def role_names(self) -> Tuple[str, ...]:
        return self.roles.names()

    def key_names(self) -> Tuple[str, ...]:
        return tuple(k.name.name for k in self.key_decls)

    def identifiers(self) -> Tuple[str, ...]:
        """Every distinct identifier name, in first-mention order."""
        seen: Dict[str, None] = {}
        for name in self.role_names():
            seen.setdefault(name, None)
        for kd in self.key_decls:
            seen.setdefault(kd.name.name, None)
        for msg in self.messages:
            for name in collect_identifiers(msg.body):
                seen.setdefault(name, None)
        for a in self.assertions:
            seen.setdefault(a.term.name, None)
        return tuple(seen)

    # ---- serialisation -------------------------------------------------

    def to_sexp(self) -> str:
        """Serialise as an S-expression (via ``sexpdata``)."""
        form: List[Any] = [Symbol("protocol")]
        form.append([Symbol("roles"), *[Symbol(n) for n in self.role_names()]])
        for kd in self.key_decls:
            form.append([Symbol(kd.kind.value), Symbol(kd.name.name),
                         [Symbol("for"), *[Symbol(o) for o in kd.owner_names()]]])
        builder = _SexpBuilder()
        for msg in self.messages:
            form.append([Symbol("send"), Symbol(msg.sender.name),
                         Symbol(msg.receiver.name),
                         dispatch_expr(msg.body, builder)])
        for a in self.assertions:
            entry: List[Any] = [Symbol("secret"), Symbol(a.term.name)]
            if a.restricted_to is not None:
                entry.append([Symbol("for"),
                              *[Symbol(n) for n in a.allowed_names() or ()]])
            form.append(entry)
        return sexpdata.dumps(form)

    def to_dict(self) -> Dict[str, Any]:
        """Plain ``dict`` form, suitable for ``json.dumps``."""
        builder = _DictBuilder()
        return {
            "roles": list(self.role_names()),
            "keys": [
                {"kind": kd.kind.value, "name": kd.name.name,
                 "owners": list(kd.owner_names()), "line": kd.line}
                for kd in self.key_decls
            ],
            "messages": [
                {"sender": m.sender.name, "receiver": m.receiver.name,
                 "body": dispatch_expr(m.body, builder),
                 "label": render_label(m.body), "line": m.line}
                for m in self.messages
            ],
            "assertions": [
                {"term": a.term.name,
                 "for": (list(a.allowed_names())
                         if a.restricted_to is not None else None),
                 "line": a.line}
                for a in self.assertions
            ],
        }


# ════════════════════════════════════════════════════════════════════════
# §3  Visitor protocol and dispatch
# ════════════════════════════════════════════════════════════════════════


class ExprVisitor(abc.ABC, Generic[T]):
    """One abstract method per message-body variant."""

    @abc.abstractmethod
    def visit_identifier(self, node: Identifier) -> T: ...

    @abc.abstractmethod
    def visit_concat(self, node: Concat) -> T: ...

    @abc.abstractmethod
    def visit_encrypt(self, node: Encrypt) -> T: ...

    @abc.abstractmethod
    def visit_mac(self, node: Mac) -> T: ...

    @abc.abstractmethod
    def visit_hash(self, node: Hash) -> T: ...

    @abc.abstractmethod
    def visit_sign(self, node: Sign) -> T: ...

    @abc.abstractmethod
    def visit_verify(self, node: Verify) -> T: ...

    @abc.abstractmethod
    def visit_assign(self, node: Assign) -> T: ...


_EXPR_DISPATCH: Dict[type, str] = {
    Identifier: "visit_identifier",
    Concat: "visit_concat",
    Encrypt: "visit_encrypt",
    Mac: "visit_mac",
    Hash: "visit_hash",
    Sign: "visit_sign",
    Verify: "visit_verify",
    Assign: "visit_assign",
}


def dispatch_expr(node: Body, visitor: ExprVisitor[T]) -> T:
    """Dispatch a message-body node to the matching visitor method."""
    method_name = _EXPR_DISPATCH.get(type(node))
    if method_name is None:
        raise TypeError(f"Unknown expression node type: {type(node).__name__}")
    return getattr(visitor, method_name)(node)


# ════════════════════════════════════════════════════════════════════════
# §4  Built-in visitors
# ════════════════════════════════════════════════════════════════════════


class _LabelRenderer(ExprVisitor[str]):

    def visit_identifier(self, node: Identifier) -> str:
        return node.name

    def visit_concat(self, node: Concat) -> str:
        right = dispatch_expr(node.right, self)
        if isinstance(node.right, Concat):
            right = f"({right})"
        return f"{dispatch_expr(node.left, self)} || {right}"

    def visit_encrypt(self, node: Encrypt) -> str:
        return f"Enc({node.key.name}, {dispatch_expr(node.message, self)})"

    def visit_mac(self, node: Mac) -> str:
        return f"Mac({node.key.name}, {dispatch_expr(node.message, self)})"

    def visit_hash(self, node: Hash) -> str:
        return f"H({dispatch_expr(node.inner, self)})"

    def visit_sign(self, node: Sign) -> str:
        return f"Sign({node.key.name}, {dispatch_expr(node.message, self)})"

    def visit_verify(self, node: Verify) -> str:
        return (f"Verify({node.key.name}, {dispatch_expr(node.message, self)}, "
                f"{dispatch_expr(node.signature, self)})")

    def visit_assign(self, node: Assign) -> str:
        return f"{node.target.name} = {dispatch_expr(node.value, self)}"


_LABELS = _LabelRenderer()


def render_label(node: Body) -> str:
    """Textual rendering of any message body, e.g. ``c = Enc(K, M)``."""
    return dispatch_expr(node, _LABELS)


class _IdentifierCollector(ExprVisitor[None]):
    """Collects every identifier under a node, crypto included."""

    def __init__(self) -> None:
        self.names: Dict[str, None] = {}

    def visit_identifier(self, node: Identifier) -> None:
        self.names.setdefault(node.name, None)

    def visit_concat(self, node: Concat) -> None:
        dispatch_expr(node.left, self)
        dispatch_expr(node.right, self)

    def visit_encrypt(self, node: Encrypt) -> None:
        self.visit_identifier(node.key)
        dispatch_expr(node.message, self)

    def visit_mac(self, node: Mac) -> None:
        self.visit_identifier(node.key)
        dispatch_expr(node.message, self)

    def visit_hash(self, node: Hash) -> None:
        dispatch_expr(node.inner, self)

    def visit_sign(self, node: Sign) -> None:
        self.visit_identifier(node.key)
        dispatch_expr(node.message, self)

    def visit_verify(self, node: Verify) -> None:
        self.visit_identifier(node.key)
        dispatch_expr(node.message, self)
        dispatch_expr(node.signature, self)

    def visit_assign(self, node: Assign) -> None:
        self.visit_identifier(node.target)
        dispatch_expr(node.value, self)


def collect_identifiers(node: Body) -> Tuple[str, ...]:
    """All identifier names appearing anywhere under *node*, in order."""
    collector = _IdentifierCollector()
    dispatch_expr(node, collector)
    return tuple(collector.names)


class _SexpBuilder(ExprVisitor[Any]):

    def visit_identifier(self, node: Identifier) -> Any:
        return Symbol(node.name)

    def visit_concat(self, node: Concat) -> Any:
        return [Symbol("concat"), dispatch_expr(node.left, self),
                dispatch_expr(node.right, self)]

    def visit_encrypt(self, node: Encrypt) -> Any:
        return [Symbol("enc"), Symbol(node.key.name),
                dispatch_expr(node.message, self)]

    def visit_mac(self, node: Mac) -> Any:
        return [Symbol("mac"), Symbol(node.key.name),
                dispatch_expr(node.message, self)]

    def visit_hash(self, node: Hash) -> Any:
        return [Symbol("hash"), dispatch_expr(node.inner, self)]

    def visit_sign(self, node: Sign) -> Any:
        return [Symbol("sign"), Symbol(node.key.name),
                dispatch_expr(node.message, self)]

    def visit_verify(self, node: Verify) -> Any:
        return [Symbol("verify"), Symbol(node.key.name),
                dispatch_expr(node.message, self),
                dispatch_expr(node.signature, self)]

    def visit_assign(self, node: Assign) -> Any:
        return [Symbol("="), Symbol(node.target.name),
                dispatch_expr(node.value, self)]


class _DictBuilder(ExprVisitor[Dict[str, Any]]):

    def visit_identifier(self, node: Identifier) -> Dict[str, Any]:
        return {"type": "identifier", "name": node.name}

    def visit_concat(self, node: Concat) -> Dict[str, Any]:
        return {"type": "concat", "left": dispatch_expr(node.left, self),
                "right": dispatch_expr(node.right, self)}

    def visit_encrypt(self, node: Encrypt) -> Dict[str, Any]:
        return {"type": "enc", "key": node.key.name,
                "message": dispatch_expr(node.message, self)}

    def visit_mac(self, node: Mac) -> Dict[str, Any]:
        return {"type": "mac", "key": node.key.name,
                "message": dispatch_expr(node.message, self)}

    def visit_hash(self, node: Hash) -> Dict[str, Any]:
        return {"type": "hash", "inner": dispatch_expr(node.inner, self)}

    def visit_sign(self, node: Sign) -> Dict[str, Any]:
        return {"type": "sign", "key": node.key.name,
                "message": dispatch_expr(node.message, self)}

    def visit_verify(self, node: Verify) -> Dict[str, Any]:
        return {"type": "verify", "key": node.key.name,
                "message": dispatch_expr(node.message, self),
                "signature": dispatch_expr(node.signature, self)}

    def visit_assign(self, node: Assign) -> Dict[str, Any]:
        return {"type": "assign", "target": node.target.name,
                "value": dispatch_expr(node.value, self)}
