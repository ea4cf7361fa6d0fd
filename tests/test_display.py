import io
import unittest

from lsprotocol import types as lsp

from langpad.display import ConsoleDisplay, diagnostic_to_text, serialize_error

from tests.fakes import make_diagnostic


class TestConsoleDisplay(unittest.TestCase):

    def setUp(self):
        self.stream = io.StringIO()
        self.display = ConsoleDisplay(self.stream)

    def test_report_and_clear(self):
        self.display.report_error("Oops", "details")
        self.assertEqual(self.display.error, ("Oops", "details"))
        self.assertIn("[Oops]", self.stream.getvalue())

        self.display.clear_error()
        self.assertIsNone(self.display.error)

    def test_report_diagnostics(self):
        self.display.report_diagnostics([make_diagnostic("first", line=2), make_diagnostic("second")])
        name, details = self.display.error
        self.assertEqual(name, "Diagnostic errors")
        self.assertEqual(details.splitlines(), ["3:1 error first", "1:1 error second"])

    def test_report_exception(self):
        try:
            raise RuntimeError("worker died")
        except RuntimeError as exc:
            self.display.report_exception(exc)
        name, details = self.display.error
        self.assertEqual(name, "RuntimeError")
        self.assertTrue(details.startswith("worker died"))
        self.assertIn("Traceback", details)

    def test_loading_flag(self):
        self.display.set_loading(True)
        self.assertTrue(self.display.loading)
        self.display.set_loading(False)
        self.assertFalse(self.display.loading)


class TestFormatting(unittest.TestCase):

    def test_diagnostic_with_code(self):
        diagnostic = make_diagnostic("unused", severity=lsp.DiagnosticSeverity.Warning, code="unused-rule")
        self.assertEqual(diagnostic_to_text(diagnostic), "1:1 warning [unused-rule] unused")

    def test_serialize_error_without_traceback(self):
        name, details = serialize_error(ValueError("bad"))
        self.assertEqual(name, "ValueError")
        self.assertIn("bad", details)


if __name__ == "__main__":
    unittest.main()
