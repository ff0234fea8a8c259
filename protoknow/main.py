#!/usr/bin/env python3
"""protoknow/main.py - CLI entry-point for the protocol knowledge analyzer.

Usage examples
--------------
    # Show the token stream of a protocol file
    python -m protoknow tokens handshake.proto

    # Parse and pretty-print the AST (tree, sexp or json)
    python -m protoknow parse handshake.proto --format sexp

    # Syntax and name checks only
    python -m protoknow check handshake.proto

    # Full knowledge analysis
    python -m protoknow analyze handshake.proto --color

    # Graphviz sequence diagram
    python -m protoknow dot handshake.proto -o handshake.dot

    # Show version and exit
    python -m protoknow --version

Exit codes
----------
    0   Success (all secrecy assertions hold).
    1   Parse or semantic error in the protocol text.
    2   Infrastructure failure (missing file, bad option, etc.).
    3   At least one secrecy assertion failed.

A ``FILE`` of ``-`` reads the protocol from standard input.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from pathlib import Path
from typing import List, Optional, Sequence, TextIO

from protoknow import __version__
from protoknow.errors import ParseError
from protoknow.knowledge import AnalyzerConfig, KnowledgeAnalyzer
from protoknow.lexer import tokenise
from protoknow.parser import parse_protocol
from protoknow.render import to_dot
from protoknow.report import format_parse_error, format_report, report_to_json

_log = logging.getLogger("protoknow")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_ERROR: int = 1
EXIT_INFRA: int = 2
EXIT_VIOLATION: int = 3


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the ``protoknow`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    root = logging.getLogger("protoknow")
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )
        root.addHandler(handler)


def _resolve_path(raw: str, label: str = "file") -> Path:
    """Resolve *raw* to an absolute ``Path``, raising on missing files."""
    p = Path(raw).expanduser().resolve()
    if not p.is_file():
        _log.error("%s not found: %s", label, p)
        raise SystemExit(EXIT_INFRA)
    return p


def _read_source(raw: str) -> str:
    if raw == "-":
        return sys.stdin.read()
    path = _resolve_path(raw, "protocol file")
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        _log.error("cannot read %s: %s", path, exc)
        raise SystemExit(EXIT_INFRA)


def _open_output(dest: Optional[str]) -> TextIO:
    """Return a writable text stream.

    *dest* ``None`` or ``"-"`` → ``sys.stdout``; otherwise open the path
    for writing (creating parent directories as needed).
    """
    if dest is None or dest == "-":
        return sys.stdout
    p = Path(dest).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)
    return open(p, "w", encoding="utf-8")


def _write(args: argparse.Namespace, text: str) -> None:
    out = _open_output(args.output)
    try:
        out.write(text)
        if not text.endswith("\n"):
            out.write("\n")
    finally:
        if out is not sys.stdout:
            out.close()


def _load(args: argparse.Namespace, *, check: bool = True):
    """Read and parse ``args.file``; ``None`` after reporting an error."""
    source = _read_source(args.file)
    try:
        return parse_protocol(source, check=check)
    except ParseError as exc:
        _log.info("rejected %s: %s", args.file, exc)
        sys.stderr.write(format_parse_error(
            exc, source, color=getattr(args, "color", False)))
        return None


# ===========================================================================
# Sub-commands
# ===========================================================================

def cmd_tokens(args: argparse.Namespace) -> int:
    tokens = tokenise(_read_source(args.file))
    lines: List[str] = [
        f"{tok.line:>4}  {tok.type.name:<8} {tok.text}" for tok in tokens
    ]
    _write(args, "\n".join(lines))
    return EXIT_OK


def cmd_parse(args: argparse.Namespace) -> int:
    protocol = _load(args, check=not args.no_check)
    if protocol is None:
        return EXIT_ERROR
    if args.format == "sexp":
        text = protocol.to_sexp()
    elif args.format == "json":
        text = json.dumps(protocol.to_dict(), indent=2)
    else:
        text = protocol.pretty()
    _write(args, text)
    return EXIT_OK


def cmd_check(args: argparse.Namespace) -> int:
    protocol = _load(args)
    if protocol is None:
        return EXIT_ERROR
    _write(args, f"{args.file}: ok ({len(protocol.role_names())} role(s), "
                 f"{len(protocol.messages)} message(s), "
                 f"{len(protocol.assertions)} assertion(s))")
    return EXIT_OK


def cmd_analyze(args: argparse.Namespace) -> int:
    config = AnalyzerConfig(
        seed_key_owners=args.seed_key_owners,
        count_authored_knowledge=args.count_authored,
        leak_prefixes=tuple(args.leak_prefix) if args.leak_prefix else ("K_", "M_"),
        record_history=False,
    )
    problems = config.validate()
    if problems:
        for problem in problems:
            _log.error("config: %s", problem)
        return EXIT_INFRA

    protocol = _load(args)
    if protocol is None:
        return EXIT_ERROR

    report = KnowledgeAnalyzer(config).analyze(protocol)
    if args.format == "json":
        _write(args, report_to_json(report))
    else:
        color = args.color and args.output in (None, "-")
        _write(args, format_report(report, color=color))

    if not report.passed:
        _log.info("%d assertion(s) failed", len(report.failures))
        return EXIT_VIOLATION
    return EXIT_OK


def cmd_dot(args: argparse.Namespace) -> int:
    protocol = _load(args)
    if protocol is None:
        return EXIT_ERROR
    _write(args, to_dot(protocol, title=args.title))
    return EXIT_OK


# ===========================================================================
# Argument parser
# ===========================================================================

def _build_parser() -> argparse.ArgumentParser:
    """Construct the full CLI argument parser with subcommands."""

    parser = argparse.ArgumentParser(
        prog="protoknow",
        description=(
            "Parse a cryptographic protocol description and compute what\n"
            "every principal, including a passive adversary, can learn."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              protoknow check   handshake.proto
              protoknow analyze handshake.proto --color
              protoknow dot     handshake.proto -o handshake.dot
        """),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        metavar="<command>",
    )

    def _add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("file", metavar="FILE",
                       help='Protocol source file ("-" for stdin).')
        p.add_argument(
            "-o", "--output",
            default=None,
            metavar="FILE",
            help='Output file ("-" or omit for stdout).',
        )

    p_tokens = subparsers.add_parser("tokens", help="Print the token stream.")
    _add_common(p_tokens)
    p_tokens.set_defaults(func=cmd_tokens)

    p_parse = subparsers.add_parser("parse", help="Parse and print the AST.")
    _add_common(p_parse)
    p_parse.add_argument(
        "-f", "--format",
        choices=["tree", "sexp", "json"],
        default="tree",
        help="AST rendering (default: tree).",
    )
    p_parse.add_argument(
        "--no-check",
        action="store_true",
        help="Skip the semantic checks after parsing.",
    )
    p_parse.set_defaults(func=cmd_parse)

    p_check = subparsers.add_parser(
        "check", help="Run the parser and semantic checks only.")
    _add_common(p_check)
    p_check.set_defaults(func=cmd_check)

    p_analyze = subparsers.add_parser(
        "analyze",
        aliases=["analyse"],
        help="Run the knowledge analysis and evaluate secrecy assertions.",
    )
    _add_common(p_analyze)
    p_analyze.add_argument(
        "-f", "--format",
        choices=["text", "json"],
        default="text",
        help="Report format (default: text).",
    )
    p_analyze.add_argument(
        "--color", "--colour",
        action="store_true",
        help="Colour the text report (stdout only).",
    )
    g = p_analyze.add_argument_group("analysis tuning")
    g.add_argument(
        "--seed-key-owners",
        action="store_true",
        help="Key owners start out knowing their declared keys.",
    )
    g.add_argument(
        "--count-authored",
        action="store_true",
        help="Let sender-authored knowledge violate restricted assertions.",
    )
    g.add_argument(
        "--leak-prefix",
        action="append",
        default=None,
        metavar="PREFIX",
        help="Catastrophic-leak name prefix (repeatable; default: K_ and M_).",
    )
    p_analyze.set_defaults(func=cmd_analyze)

    p_dot = subparsers.add_parser(
        "dot", help="Emit a Graphviz DOT sequence diagram.")
    _add_common(p_dot)
    p_dot.add_argument("--title", default=None, help="Graph title.")
    p_dot.set_defaults(func=cmd_dot)

    return parser


# ===========================================================================
# Main
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the protoknow CLI.

    Parameters
    ----------
    argv:
        Command-line arguments.  ``None`` → ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code (see module docstring for semantics).
    """
    parser = _build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else EXIT_INFRA

    _configure_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help(sys.stderr)
        return EXIT_INFRA

    try:
        return args.func(args)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else EXIT_INFRA
    except OSError as exc:
        _log.error("I/O error: %s", exc)
        return EXIT_INFRA


if __name__ == "__main__":
    sys.exit(main())
