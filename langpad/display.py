# langpad/display.py
"""Error, diagnostic and loading-state reporting for the playground."""

import logging
import sys
import traceback
from typing import List, Optional, TextIO, Tuple

from lsprotocol import types as lsp

logger = logging.getLogger(__name__)

_SEVERITY_NAMES = {
    lsp.DiagnosticSeverity.Error: "error",
    lsp.DiagnosticSeverity.Warning: "warning",
    lsp.DiagnosticSeverity.Information: "info",
    lsp.DiagnosticSeverity.Hint: "hint",
}


def diagnostic_to_text(diagnostic: lsp.Diagnostic) -> str:
    """Formats as ``line:col severity [code] message`` with 1-based positions."""
    start = diagnostic.range.start
    severity = _SEVERITY_NAMES.get(diagnostic.severity, "error")
    code = f" [{diagnostic.code}]" if diagnostic.code is not None else ""
    return f"{start.line + 1}:{start.character + 1} {severity}{code} {diagnostic.message}"


def serialize_error(exc: BaseException) -> Tuple[str, str]:
    """Splits an exception into a display name and a details text with its traceback."""
    details = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip()
    return type(exc).__name__, f"{exc}\n{details}" if str(exc) else details


class ConsoleDisplay:
    """
    Shows the playground's error area and loading indicator as text.

    At most one error is shown at a time; a new report replaces the old one
    and ``clear_error`` hides it. The current state is kept on the instance.
    """

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream if stream is not None else sys.stderr
        self.error: Optional[Tuple[str, str]] = None
        self.loading = False

    def report_diagnostics(self, diagnostics: List[lsp.Diagnostic]) -> None:
        details = "\n".join(diagnostic_to_text(d) for d in diagnostics)
        self.report_error("Diagnostic errors", details)

    def report_error(self, name: str, details: str) -> None:
        self.error = (name, details)
        self._write(f"[{name}]\n{details}")

    def report_exception(self, exc: BaseException) -> None:
        name, details = serialize_error(exc)
        self.report_error(name, details)

    def clear_error(self) -> None:
        self.error = None

    def set_loading(self, loading: bool) -> None:
        if loading != self.loading:
            logger.debug("Loading indicator %s", "shown" if loading else "hidden")
        self.loading = loading

    def _write(self, text: str) -> None:
        self.stream.write(text + "\n")
        self.stream.flush()
