"""
protoknow/report.py
═══════════════════

Human- and machine-readable renderings of analysis results.

  • :func:`format_report`      - terminal report, optionally coloured
  • :func:`format_parse_error` - ``line N: message`` with the source line
  • :func:`report_to_json`     - JSON document of a ``KnowledgeReport``

Colour goes through ``termcolor``; with ``color=False`` (the default)
the output is plain text and safe to diff.
"""

from __future__ import annotations

import json
from typing import List, Optional, Sequence

from termcolor import colored

from protoknow.errors import ParseError
from protoknow.knowledge import KnowledgeReport

__all__ = ["format_report", "format_parse_error", "report_to_json"]


def _paint(text: str, color: Optional[str], enabled: bool,
           attrs: Optional[Sequence[str]] = None) -> str:
    if not enabled:
        return text
    return colored(text, color, attrs=list(attrs) if attrs else None,
                   force_color=True)


def format_report(report: KnowledgeReport, *, color: bool = False) -> str:
    """Render *report* for a terminal.

    Layout::

        === Knowledge Summary ===
        Alice knows: [K, M, c]
          opaque: Enc(K, M)
        ...
        === Assertions ===
        PASS  secret(M)
        FAIL  secret(K): adversary learned K
        ...
        No catastrophic leaks under this simple model.
    """
    lines: List[str] = [_paint("=== Knowledge Summary ===", None, color, ["bold"])]
    for pk in report.principals:
        who = _paint(pk.name, "red" if pk.is_adversary else "cyan", color, ["bold"])
        lines.append(f"{who} knows: [{', '.join(pk.atomic)}]")
        if pk.opaque:
            lines.append("  opaque: " + ", ".join(t.label() for t in pk.opaque))

    if report.verdicts:
        lines.append("")
        lines.append(_paint("=== Assertions ===", None, color, ["bold"]))
        for v in report.verdicts:
            if v.passed:
                tag = _paint("PASS", "green", color, ["bold"])
                lines.append(f"{tag}  {v.assertion.label()}")
            else:
                tag = _paint("FAIL", "red", color, ["bold"])
                lines.append(f"{tag}  {v.assertion.label()}: {v.reason}")

    lines.append("")
    if report.catastrophic:
        lines.append(_paint(
            "*** Catastrophic for protocol: adversary learned "
            f"[{', '.join(report.catastrophic)}] ***",
            "yellow", color, ["bold"]))
    else:
        lines.append("No catastrophic leaks under this simple model.")
    lines.append(f"Closure passes: {report.iterations}")
    return "\n".join(lines) + "\n"


def format_parse_error(error: ParseError, source: Optional[str] = None, *,
                       color: bool = False) -> str:
    """Render a parse/semantic error, quoting the offending line when
    *source* is given and the line exists."""
    head = _paint(f"{error.phase.value} error", "red", color, ["bold"])
    lines = [f"{head}: line {error.line}: {error.message}"]
    if source is not None:
        src_lines = source.splitlines()
        if 1 <= error.line <= len(src_lines):
            gutter = str(error.line)
            pipe = _paint("|", "blue", color, ["bold"])
            lines.append(f"{' ' * len(gutter)} {pipe}")
            lines.append(f"{_paint(gutter, 'blue', color, ['bold'])} {pipe} "
                         f"{src_lines[error.line - 1]}")
    return "\n".join(lines) + "\n"


def report_to_json(report: KnowledgeReport, *, indent: Optional[int] = 2) -> str:
    return json.dumps(report.to_dict(), indent=indent)
