"""
protoknow/render.py
───────────────────

Text-level helpers for drawing a protocol as a sequence diagram.

Nothing here interprets cryptography: arrow labels come straight from
the expression ``label()`` rendering, and :func:`to_dot` only lays out
roles (columns) and messages (rows) as Graphviz DOT text.  Turning the
DOT into an image is left to whoever consumes it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from protoknow import ast as A

logger = logging.getLogger(__name__)

__all__ = ["SequenceRow", "message_label", "sequence_rows", "to_dot"]


@dataclass(frozen=True)
class SequenceRow:
    """One arrow of the sequence diagram (``index`` is 0-based)."""
    index: int
    sender: str
    receiver: str
    label: str


def message_label(body: A.Body) -> str:
    """Arrow label for a message body, e.g. ``c = Enc(K, M)``."""
    return A.render_label(body)


def sequence_rows(protocol: A.Protocol) -> List[SequenceRow]:
    return [
        SequenceRow(i, m.sender.name, m.receiver.name, message_label(m.body))
        for i, m in enumerate(protocol.messages)
    ]


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def to_dot(protocol: A.Protocol, title: Optional[str] = None) -> str:
    """Return a Graphviz DOT sequence diagram for *protocol*.

    Roles become rounded boxes across the top.  Every message gets its
    own rank holding one invisible point per role, and a horizontal
    arrow joins the sender's point to the receiver's.
    """
    roles = list(protocol.role_names())
    column = {name: i for i, name in enumerate(roles)}
    rows = sequence_rows(protocol)

    def hdr(role: str) -> str:
        return f"hdr_{column[role]}"

    def pt(role: str, row: int) -> str:
        return f"pt_{column[role]}_{row}"

    lines = ["digraph Protocol {"]
    lines.append("  rankdir=TB;")
    lines.append("  splines=polyline;")
    if title:
        lines.append(f'  label="{_escape(title)}";')
        lines.append("  labelloc=t;")
    lines.append("  node [fontsize=12];")
    lines.append("  graph [nodesep=0.8, ranksep=0.8];")

    for role in roles:
        lines.append(f'  {hdr(role)} [label="{_escape(role)}", shape=box, style=rounded];')

    for r in range(len(rows)):
        for role in roles:
            lines.append(f'  {pt(role, r)} [label="", shape=point, width=0.02, height=0.02];')

    lines.append("  { rank=same; " + " ".join(hdr(role) for role in roles) + " }")
    for r in range(len(rows)):
        lines.append("  { rank=same; " + " ".join(pt(role, r) for role in roles) + " }")

    # column alignment: header above each row point of its role
    for role in roles:
        prev = hdr(role)
        for r in range(len(rows)):
            lines.append(f"  {prev} -> {pt(role, r)} [style=invis];")
            prev = pt(role, r)

    for row in rows:
        lines.append(
            f"  {pt(row.sender, row.index)} -> {pt(row.receiver, row.index)} "
            f'[label="{_escape(row.label)}", constraint=false];'
        )
    lines.append("}")

    logger.debug("dot: %d role(s), %d row(s)", len(roles), len(rows))
    return "\n".join(lines) + "\n"
