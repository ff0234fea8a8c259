"""
protoknow/knowledge.py
======================

Dolev-Yao style knowledge propagation over a checked :class:`Protocol`.

The analysis runs in three phases:

1. **Observation pass** - a single scan over the messages in order.  The
   sender, the receiver and the adversary each gain what is *visible* in
   the message body; the sender additionally gains every identifier
   inside the body (it had to know them to build the message).
2. **Decryption closure** - repeated passes over every principal.  An
   ``Enc(k, m)`` term held opaquely opens when ``k`` is known in the
   clear and ``m`` is a bare identifier.  No other constructor opens.
3. **Assertion evaluation** - each ``assert secret(X)`` is checked
   against the adversary and, when a ``for`` list is given, against
   every role outside the list.

Visibility (the observer walk)::

    Identifier(n)        ->  atom n
    Assign(t, v)         ->  atom t, then walk v
    Enc / Mac / H /
    Sign / Verify / ||   ->  one OpaqueTerm, no recursion

Atomic knowledge is kept in two halves: *authored* (what a sender put
into its own messages) and *learned* (what was observed on the wire,
derived by decryption or seeded from key ownership).  Restricted
secrecy checks look at *learned* only, unless
``AnalyzerConfig.count_authored_knowledge`` is set.

Usage::

    from protoknow.parser import parse_protocol
    from protoknow.knowledge import analyze

    report = analyze(parse_protocol(text))
    print(report.summary())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Dict,
    FrozenSet,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

from protoknow import ast as A

logger = logging.getLogger(__name__)

__all__ = [
    "Principal",
    "PrincipalId",
    "principal_name",
    "Constructor",
    "OpaqueTerm",
    "AnalyzerConfig",
    "PrincipalKnowledge",
    "AssertionVerdict",
    "KnowledgeReport",
    "KnowledgeAnalyzer",
    "analyze",
    "observe",
]


class Principal(Enum):
    """Principals that are not user-declared roles."""
    ADVERSARY = "Adversary"


# A declared role (by name) or the adversary.
PrincipalId = Union[str, Principal]


def principal_name(principal: PrincipalId) -> str:
    """Display name of a principal."""
    if isinstance(principal, Principal):
        return principal.value
    return principal


class Constructor(Enum):
    """Tag of an opaque term."""
    ENC = "Enc"
    MAC = "Mac"
    HASH = "H"
    SIGN = "Sign"
    VERIFY = "Verify"
    CONCAT = "||"


@dataclass(frozen=True, slots=True)
class OpaqueTerm:
    """A structured term whose arguments an observer cannot see.

    Attributes:
        constructor: What built the term
        key: Key / identifier argument by name, ``None`` for ``H`` and ``||``
        inner: Labels of the sub-expressions, in argument order
        inner_atomic: Whether each ``inner`` entry is a bare identifier
    """
    constructor: Constructor
    key: Optional[str]
    inner: Tuple[str, ...]
    inner_atomic: Tuple[bool, ...]

    def label(self) -> str:
        if self.constructor is Constructor.CONCAT:
            left, right = self.inner
            if not self.inner_atomic[1] and " || " in right:
                right = f"({right})"
            return f"{left} || {right}"
        args = list(self.inner)
        if self.key is not None:
            args.insert(0, self.key)
        return f"{self.constructor.value}({', '.join(args)})"

    def __str__(self) -> str:
        return self.label()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AnalyzerConfig:
    """Knobs for :class:`KnowledgeAnalyzer`.

    Attributes:
        seed_key_owners: Start owners off knowing their declared keys
            (shared: every owner; private: the owner; public: every
            role and the adversary)
        count_authored_knowledge: Let sender-authored knowledge violate
            restricted secrecy assertions
        leak_prefixes: Adversary atoms with one of these prefixes are
            reported as catastrophic
        record_history: Keep a snapshot of every principal's atomic set
            after the observation pass and after each closure pass
    """
    seed_key_owners: bool = False
    count_authored_knowledge: bool = False
    leak_prefixes: Tuple[str, ...] = ("K_", "M_")
    record_history: bool = False

    def validate(self) -> List[str]:
        """Return a list of problems; empty when the config is usable."""
        errors: List[str] = []
        if isinstance(self.leak_prefixes, str):
            errors.append("leak_prefixes must be a sequence of strings, "
                          "not a single string")
            return errors
        for prefix in self.leak_prefixes:
            if not isinstance(prefix, str) or not prefix:
                errors.append(f"invalid leak prefix {prefix!r}")
        return errors


# ---------------------------------------------------------------------------
# Report types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PrincipalKnowledge:
    """Final knowledge of one principal; every field is sorted."""
    principal: PrincipalId
    atomic: Tuple[str, ...]
    opaque: Tuple[OpaqueTerm, ...]
    authored: Tuple[str, ...]
    learned: Tuple[str, ...]

    @property
    def name(self) -> str:
        return principal_name(self.principal)

    @property
    def is_adversary(self) -> bool:
        return self.principal is Principal.ADVERSARY

    def knows(self, term: str) -> bool:
        return term in self.atomic

    def to_dict(self) -> Dict[str, Any]:
        return {
            "principal": self.name,
            "adversary": self.is_adversary,
            "atomic": list(self.atomic),
            "opaque": [t.label() for t in self.opaque],
            "authored": list(self.authored),
            "learned": list(self.learned),
        }


@dataclass(frozen=True)
class AssertionVerdict:
    """Outcome of one secrecy assertion."""
    assertion: A.SecrecyAssertion
    passed: bool
    leaked_to: Tuple[PrincipalId, ...] = ()
    reason: str = ""

    @property
    def term(self) -> str:
        return self.assertion.term.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assertion": self.assertion.label(),
            "term": self.term,
            "passed": self.passed,
            "leaked_to": [principal_name(p) for p in self.leaked_to],
            "reason": self.reason,
            "line": self.assertion.line,
        }


@dataclass(frozen=True)
class KnowledgeReport:
    """Everything the analyzer found about one protocol run.

    Attributes
    ----------
    principals : tuple of PrincipalKnowledge
        Declared roles in declaration order, then the adversary.
    verdicts : tuple of AssertionVerdict
        One per assertion, in source order.
    catastrophic : tuple of str
        Adversary atoms that are declared keys or carry a leak prefix.
    iterations : int
        Number of closure passes that changed some principal's knowledge.
    history : tuple of dict
        Per-pass ``principal -> atomic set`` snapshots; empty unless
        ``AnalyzerConfig.record_history`` was set.
    """
    principals: Tuple[PrincipalKnowledge, ...]
    verdicts: Tuple[AssertionVerdict, ...]
    catastrophic: Tuple[str, ...]
    iterations: int = 0
    history: Tuple[Dict[PrincipalId, FrozenSet[str]], ...] = ()

    @property
    def passed(self) -> bool:
        """True when every assertion passed."""
        return all(v.passed for v in self.verdicts)

    @property
    def adversary(self) -> PrincipalKnowledge:
        return self.knowledge_of(Principal.ADVERSARY)

    def knowledge_of(self, principal: PrincipalId) -> PrincipalKnowledge:
        for pk in self.principals:
            if pk.principal == principal:
                return pk
        raise KeyError(principal_name(principal))

    def verdict_for(self, term: str) -> AssertionVerdict:
        """First verdict whose assertion is about *term*."""
        for v in self.verdicts:
            if v.term == term:
                return v
        raise KeyError(term)

    @property
    def failures(self) -> Tuple[AssertionVerdict, ...]:
        return tuple(v for v in self.verdicts if not v.passed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "principals": [pk.to_dict() for pk in self.principals],
            "verdicts": [v.to_dict() for v in self.verdicts],
            "catastrophic": list(self.catastrophic),
            "iterations": self.iterations,
            "passed": self.passed,
        }

    def summary(self) -> str:
        """Plain-text knowledge summary."""
        lines = ["=== Knowledge Summary ==="]
        for pk in self.principals:
            lines.append(f"{pk.name} knows: [{', '.join(pk.atomic)}]")
        if self.catastrophic:
            lines.append("*** Catastrophic for protocol: adversary learned "
                         f"[{', '.join(self.catastrophic)}] ***")
        else:
            lines.append("No catastrophic leaks under this simple model.")
        return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Term walks
# ---------------------------------------------------------------------------

class _ObserverWalk(A.ExprVisitor[None]):
    """Collects what an observer of a message body can see."""

    def __init__(self) -> None:
        self.atoms: List[str] = []
        self.opaque: List[OpaqueTerm] = []

    @staticmethod
    def _parts(*nodes: A.Expr) -> Tuple[Tuple[str, ...], Tuple[bool, ...]]:
        return (tuple(n.label() for n in nodes),
                tuple(isinstance(n, A.Identifier) for n in nodes))

    def _add(self, ctor: Constructor, key: Optional[A.Identifier],
             *inner: A.Expr) -> None:
        labels, atomic = self._parts(*inner)
        self.opaque.append(OpaqueTerm(
            ctor, key.name if key is not None else None, labels, atomic))

    def visit_identifier(self, node: A.Identifier) -> None:
        self.atoms.append(node.name)

    def visit_concat(self, node: A.Concat) -> None:
        self._add(Constructor.CONCAT, None, node.left, node.right)

    def visit_encrypt(self, node: A.Encrypt) -> None:
        self._add(Constructor.ENC, node.key, node.message)

    def visit_mac(self, node: A.Mac) -> None:
        self._add(Constructor.MAC, node.key, node.message)

    def visit_hash(self, node: A.Hash) -> None:
        self._add(Constructor.HASH, None, node.inner)

    def visit_sign(self, node: A.Sign) -> None:
        self._add(Constructor.SIGN, node.key, node.message)

    def visit_verify(self, node: A.Verify) -> None:
        self._add(Constructor.VERIFY, node.key, node.message, node.signature)

    def visit_assign(self, node: A.Assign) -> None:
        self.atoms.append(node.target.name)
        A.dispatch_expr(node.value, self)


def observe(body: A.Body) -> Tuple[Tuple[str, ...], Tuple[OpaqueTerm, ...]]:
    """Visible atoms and opaque terms of a message body."""
    walk = _ObserverWalk()
    A.dispatch_expr(body, walk)
    return tuple(walk.atoms), tuple(walk.opaque)


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------

@dataclass
class _State:
    authored: Set[str] = field(default_factory=set)
    learned: Set[str] = field(default_factory=set)
    opaque: Set[OpaqueTerm] = field(default_factory=set)

    @property
    def atomic(self) -> Set[str]:
        return self.authored | self.learned


class KnowledgeAnalyzer:
    """Computes per-principal knowledge and assertion verdicts.

    The analyzer is a total function over a protocol that passed
    :func:`protoknow.semantic.check_protocol`; it never raises on one.
    """

    def __init__(self, config: Optional[AnalyzerConfig] = None):
        self.config = config or AnalyzerConfig()
        problems = self.config.validate()
        if problems:
            raise ValueError("invalid analyzer config: " + "; ".join(problems))

    def analyze(self, protocol: A.Protocol) -> KnowledgeReport:
        order: List[PrincipalId] = [*protocol.role_names(), Principal.ADVERSARY]
        states: Dict[PrincipalId, _State] = {p: _State() for p in order}
        history: List[Dict[PrincipalId, FrozenSet[str]]] = []

        if self.config.seed_key_owners:
            self._seed(protocol, states)

        self._observe(protocol, states)
        if self.config.record_history:
            history.append(self._snapshot(order, states))

        iterations = 0
        while self._closure_pass(order, states):
            iterations += 1
            logger.debug("closure pass %d changed knowledge", iterations)
            if self.config.record_history:
                history.append(self._snapshot(order, states))
        logger.debug("closure converged after %d productive pass(es)", iterations)

        verdicts = tuple(self._evaluate(a, protocol, states)
                         for a in protocol.assertions)
        return KnowledgeReport(
            principals=tuple(self._freeze(p, states[p]) for p in order),
            verdicts=verdicts,
            catastrophic=self._catastrophic(protocol, states[Principal.ADVERSARY]),
            iterations=iterations,
            history=tuple(history),
        )

    # ---- phases ----------------------------------------------------------

    @staticmethod
    def _seed(protocol: A.Protocol, states: Dict[PrincipalId, _State]) -> None:
        for kd in protocol.key_decls:
            if kd.kind is A.KeyKind.PUBLIC:
                holders: Sequence[PrincipalId] = list(states)
            else:
                holders = kd.owner_names()
            for holder in holders:
                states[holder].learned.add(kd.name.name)
            logger.debug("seeded %s key %s to %d principal(s)",
                         kd.kind.value, kd.name.name, len(holders))

    @staticmethod
    def _observe(protocol: A.Protocol, states: Dict[PrincipalId, _State]) -> None:
        for step, msg in enumerate(protocol.messages):
            atoms, opaque = observe(msg.body)
            sender = states[msg.sender.name]
            sender.authored.update(atoms)
            sender.authored.update(A.collect_identifiers(msg.body))
            sender.opaque.update(opaque)
            for observer in (msg.receiver.name, Principal.ADVERSARY):
                states[observer].learned.update(atoms)
                states[observer].opaque.update(opaque)
            logger.debug("step %d %s -> %s: %d atom(s), %d opaque term(s)",
                         step, msg.sender.name, msg.receiver.name,
                         len(atoms), len(opaque))

    @staticmethod
    def _closure_pass(order: Sequence[PrincipalId],
                      states: Dict[PrincipalId, _State]) -> bool:
        changed = False
        for principal in order:
            state = states[principal]
            for term in sorted(state.opaque, key=OpaqueTerm.label):
                if term.constructor is not Constructor.ENC:
                    continue
                if term.key is None or len(term.inner) != 1 or len(term.inner_atomic) != 1:
                    logger.debug("skipping malformed opaque term %r", term)
                    continue
                plain = term.inner[0]
                atomic = state.atomic
                if term.key in atomic and term.inner_atomic[0] and plain not in atomic:
                    state.learned.add(plain)
                    changed = True
                    logger.debug("%s decrypts %s", principal_name(principal),
                                 term.label())
        return changed

    def _evaluate(self, assertion: A.SecrecyAssertion, protocol: A.Protocol,
                  states: Dict[PrincipalId, _State]) -> AssertionVerdict:
        term = assertion.term.name
        leaked: List[PrincipalId] = []
        reasons: List[str] = []

        allowed = assertion.allowed_names()
        if allowed is not None:
            outsiders = [r for r in protocol.role_names() if r not in allowed]
            for role in outsiders:
                state = states[role]
                held = (state.atomic if self.config.count_authored_knowledge
                        else state.learned)
                if term in held:
                    leaked.append(role)
            if leaked:
                reasons.append(f"{term} known to non-permitted role(s): "
                               + ", ".join(principal_name(p) for p in leaked))

        if term in states[Principal.ADVERSARY].atomic:
            leaked.append(Principal.ADVERSARY)
            reasons.insert(0, f"adversary learned {term}")

        if leaked:
            return AssertionVerdict(assertion, False, tuple(leaked),
                                    "; ".join(reasons))
        reason = ("known only to permitted roles" if allowed is not None
                  else "not known to the adversary")
        return AssertionVerdict(assertion, True, (), reason)

    def _catastrophic(self, protocol: A.Protocol, adversary: _State) -> Tuple[str, ...]:
        public = {kd.name.name for kd in protocol.key_decls
                  if kd.kind is A.KeyKind.PUBLIC}
        keys = set(protocol.key_names()) - public
        prefixes = tuple(self.config.leak_prefixes)
        return tuple(sorted(
            t for t in adversary.atomic
            if t not in public and
            (t in keys or (prefixes and t.startswith(prefixes)))
        ))

    # ---- helpers ---------------------------------------------------------

    @staticmethod
    def _snapshot(order: Sequence[PrincipalId],
                  states: Dict[PrincipalId, _State]) -> Dict[PrincipalId, FrozenSet[str]]:
        return {p: frozenset(states[p].atomic) for p in order}

    @staticmethod
    def _freeze(principal: PrincipalId, state: _State) -> PrincipalKnowledge:
        return PrincipalKnowledge(
            principal=principal,
            atomic=tuple(sorted(state.atomic)),
            opaque=tuple(sorted(state.opaque, key=OpaqueTerm.label)),
            authored=tuple(sorted(state.authored)),
            learned=tuple(sorted(state.learned)),
        )


def analyze(protocol: A.Protocol,
            config: Optional[AnalyzerConfig] = None) -> KnowledgeReport:
    """Run :class:`KnowledgeAnalyzer` over *protocol*."""
    return KnowledgeAnalyzer(config).analyze(protocol)
