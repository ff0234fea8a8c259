"""
protoknow - symbolic knowledge analysis for cryptographic protocols
===================================================================

Reads a small protocol notation (roles, keys, message steps and
secrecy assertions) and computes, Dolev-Yao style, which names every
principal and a passive adversary end up knowing.

Core modules
------------
lexer
    Tokeniser; never raises.
parser
    Recursive-descent parser producing an immutable AST.
ast
    Frozen dataclass nodes, visitor dispatch, label / sexp / dict forms.
semantic
    Post-parse name resolution and checks.
knowledge
    Observation pass, decryption closure and assertion verdicts.
render
    Sequence-diagram rows and Graphviz DOT text.
report
    Terminal and JSON renderings of a knowledge report.

Quick start
-----------
>>> from protoknow import parse_protocol, analyze
>>> proto = parse_protocol('''
... roles: Alice, Bob
... shared K for Alice, Bob
... Alice -> Bob: c = Enc(K, M)
... assert secret(M)
... ''')
>>> analyze(proto).passed
True
"""

from __future__ import annotations

__version__ = "0.1.0"

from protoknow.errors import ParseError, ProtoError, SemanticError
from protoknow.knowledge import AnalyzerConfig, KnowledgeReport, Principal, analyze
from protoknow.parser import parse_protocol, try_parse

__all__ = [
    "__version__",
    "ProtoError",
    "ParseError",
    "SemanticError",
    "parse_protocol",
    "try_parse",
    "analyze",
    "AnalyzerConfig",
    "KnowledgeReport",
    "Principal",
]
