import unittest

from langpad.data import DSL_INITIAL_CONTENT, HELLO_WORLD_GRAMMAR
from langpad.grammar import parse_grammar
from langpad.interpreter import SampleParser, parse_sample

FLAGS_GRAMMAR = r"""grammar Flags
entry Model: items+=Item*;
Item: 'item' name=ID (visible?='visible')? ('size' size=INT)?;
hidden terminal WS: /\s+/;
terminal ID: /[a-z]+/;
terminal INT returns number: /[0-9]+/;
"""

SHAPES_GRAMMAR = r"""grammar Shapes
entry Model: shapes+=Shape*;
Shape: Circle | Square;
Circle: 'circle' name=ID;
Square: 'square' name=ID;
hidden terminal WS: /\s+/;
terminal ID: /[a-z]+/;
"""


def compile_grammar(text):
    result = parse_grammar(text)
    assert not result.has_errors, [d.message for d in result.errors]
    return result.grammar


class TestHelloWorld(unittest.TestCase):

    def setUp(self):
        self.parser = SampleParser(compile_grammar(HELLO_WORLD_GRAMMAR))

    def test_initial_content(self):
        result = self.parser.parse(DSL_INITIAL_CONTENT)

        self.assertEqual(result.diagnostics, [])
        self.assertEqual(result.ast["$type"], "Model")
        self.assertEqual(result.ast["persons"], [{"$type": "Person", "name": "Langium"}])
        greeting = result.ast["greetings"][0]
        self.assertEqual(greeting["$type"], "Greeting")
        self.assertEqual(greeting["person"]["$refText"], "Langium")
        self.assertEqual(greeting["person"]["$ref"], "#/persons@0")

    def test_empty_document(self):
        result = self.parser.parse("")
        self.assertEqual(result.ast, {"$type": "Model"})
        self.assertEqual(result.diagnostics, [])

    def test_comments_are_skipped(self):
        result = self.parser.parse("// people\nperson A /* first */ person B\n")
        self.assertEqual(result.errors, [])
        self.assertEqual([p["name"] for p in result.ast["persons"]], ["A", "B"])

    def test_unresolved_reference(self):
        result = self.parser.parse("person Langium\nHello Bob!")

        self.assertEqual(len(result.errors), 1)
        error = result.errors[0]
        self.assertEqual(error.message, "Could not resolve reference to Person named 'Bob'.")
        self.assertEqual((error.range.start.line, error.range.start.character), (1, 6))
        self.assertNotIn("$ref", result.ast["greetings"][0]["person"])

    def test_syntax_error_reports_furthest_position(self):
        result = self.parser.parse("person Langium\nHelo Langium!")

        self.assertEqual(len(result.errors), 1)
        error = result.errors[0]
        self.assertEqual(error.message, "Expecting 'Hello', 'person' but found 'Helo'.")
        self.assertEqual(error.range.start.line, 1)
        self.assertEqual(result.ast["persons"][0]["name"], "Langium")

    def test_missing_token_at_end(self):
        result = self.parser.parse("Hello")
        self.assertEqual(len(result.errors), 1)
        self.assertIn("but found end of input", result.errors[0].message)

    def test_keywords_need_a_word_boundary(self):
        result = self.parser.parse("personA")
        self.assertEqual(len(result.errors), 1)
        self.assertNotIn("persons", result.ast)


class TestGrammarFeatures(unittest.TestCase):

    def test_boolean_and_number_assignments(self):
        result = parse_sample(compile_grammar(FLAGS_GRAMMAR), "item a visible size 3 item b")

        self.assertEqual(result.diagnostics, [])
        self.assertEqual(result.ast["items"], [
            {"$type": "Item", "name": "a", "visible": True, "size": 3},
            {"$type": "Item", "name": "b"},
        ])

    def test_unassigned_rule_call_returns_called_node(self):
        result = parse_sample(compile_grammar(SHAPES_GRAMMAR), "circle c square s")

        self.assertEqual(result.diagnostics, [])
        self.assertEqual([s["$type"] for s in result.ast["shapes"]], ["Circle", "Square"])
        self.assertEqual([s["name"] for s in result.ast["shapes"]], ["c", "s"])

    def test_grammar_without_entry_rule_is_rejected(self):
        grammar = parse_grammar("grammar X\nA: 'a';").grammar
        with self.assertRaises(ValueError):
            SampleParser(grammar)


if __name__ == "__main__":
    unittest.main()
