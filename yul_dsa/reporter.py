#!/usr/bin/env python3
"""
yul_dsa/reporter.py
═══════════════════

Rust-style colourful rendering of analysis results.

Output formats
──────────────
  • Terminal : colourful Rust-style rendering (when the stream is a TTY)
  • Plain    : one GCC-style line per violation
  • JSON     : one document with the status, every violation and the
               size of the flow graph

Usage
─────
    from yul_dsa.reporter import Reporter

    Reporter(sys.stdout).report(result)

renders::

    warning[dynamicStateAccess]: storage address 'ret_0' in '!!main' depends on untrusted input
      --> contract.yul:6:1
      = note: taint path: foo_1 -> vloc__4 -> ret_0
      = note: declared in !!main

    1 violation
"""

from __future__ import annotations

import json
import sys
from typing import Any, Dict, List, Optional, Sequence, TextIO, TYPE_CHECKING

from termcolor import colored

from yul_dsa.checker import ERROR_ID, Violation
from yul_dsa.errors import DsaError

if TYPE_CHECKING:
    from yul_dsa.analyzer import AnalysisResult

__all__ = ["Reporter", "render_text", "render_json", "summary_line"]


# ═════════════════════════════════════════════════════════════════════════
#  PLAIN HELPERS
# ═════════════════════════════════════════════════════════════════════════

def summary_line(violations: Sequence[Violation], error: Optional[DsaError] = None) -> str:
    """One-line outcome of a run."""
    if error is not None:
        return f"analysis aborted: {error.code}"
    if not violations:
        return "no dynamic state access found"
    n = len(violations)
    return f"{n} violation{'s' if n != 1 else ''}"


def render_json(result: "AnalysisResult", indent: Optional[int] = 2) -> str:
    document: Dict[str, Any] = {
        "status": result.status.value,
        "violations": [v.to_dict() for v in result.violations],
    }
    if result.error is not None:
        document["error"] = {
            "code": str(result.error.code),
            "kind": result.error.kind.value,
            "message": result.error.message,
        }
    if result.graph is not None:
        document["statistics"] = result.graph.statistics()
    return json.dumps(document, indent=indent)


# ═════════════════════════════════════════════════════════════════════════
#  TERMINAL RENDERER
# ═════════════════════════════════════════════════════════════════════════

def _render_violation(v: Violation, colour: bool) -> List[str]:
    def paint(text: str, color: Optional[str] = None, attrs: Optional[list] = None) -> str:
        return colored(text, color, attrs=attrs) if colour else text

    lines: List[str] = []
    head = paint(f"warning[{ERROR_ID}]", "yellow", attrs=["bold"])
    lines.append(f"{head}: {paint(v.message, 'white', attrs=['bold'])}")
    if v.loc is not None and v.loc.line:
        arrow = paint("-->", "blue", attrs=["bold"])
        lines.append(f"  {arrow} {v.loc}")
    note = paint("note", "cyan", attrs=["bold"])
    if v.taint_path:
        lines.append(f"  = {note}: taint path: {' -> '.join(v.taint_path)}")
    lines.append(f"  = {note}: declared in {v.function}")
    if v.embedded_name != v.variable_name:
        lines.append(f"  = {note}: embedded as {v.embedded_name}")
    lines.append("")
    return lines


def _render_error(error: DsaError, colour: bool) -> List[str]:
    head = f"error[{error.code}]"
    if colour:
        head = colored(head, "red", attrs=["bold"])
    lines = [f"{head}: {error.message}"]
    if error.loc is not None and error.loc.line:
        arrow = colored("-->", "blue", attrs=["bold"]) if colour else "-->"
        lines.append(f"  {arrow} {error.loc}")
    lines.append("")
    return lines


def render_text(result: "AnalysisResult", colour: bool = False) -> str:
    lines: List[str] = []
    if result.error is not None:
        lines.extend(_render_error(result.error, colour))
    for v in result.violations:
        lines.extend(_render_violation(v, colour))
    lines.append(summary_line(result.violations, result.error))
    return "\n".join(lines) + "\n"


class Reporter:
    """
    Writes analysis results to a stream.

    *stream* defaults to the ``sys.stderr`` of the time the reporter is
    created.  Colour is used when *colour* is true, or when it is ``None``
    and the stream is a TTY.  With ``fmt="json"`` the JSON document is written
    instead.
    """

    def __init__(
        self,
        stream: Optional[TextIO] = None,
        colour: Optional[bool] = None,
        fmt: str = "text",
    ) -> None:
        if fmt not in ("text", "plain", "json"):
            raise ValueError(f"unknown report format {fmt!r}")
        if stream is None:
            stream = sys.stderr
        self._stream = stream
        self.fmt = fmt
        self.colour = (
            colour if colour is not None
            else hasattr(stream, "isatty") and stream.isatty()
        )

    def report(self, result: "AnalysisResult") -> None:
        if self.fmt == "json":
            text = render_json(result) + "\n"
        elif self.fmt == "plain":
            text = "".join(v.to_gcc_format() + "\n" for v in result.violations)
            if result.error is not None:
                text += result.error.to_gcc_format() + "\n"
        else:
            text = render_text(result, colour=self.colour)
        self._stream.write(text)
        self._stream.flush()
