import asyncio
import io
import unittest

from lsprotocol import types as lsp

from langpad.data import DSL_INITIAL_CONTENT, HELLO_WORLD_GRAMMAR
from langpad.display import ConsoleDisplay
from langpad.editor import EditorView
from langpad.errors import PlaygroundSetupError
from langpad.orchestrator import DEFINITION_KEY, SAMPLE_KEY, Playground, PlaygroundParameters
from langpad.protocol import DOCUMENT_CHANGE
from langpad.session import SessionStatus
from langpad.share import encode_state
from langpad.tree import TreeRenderer

from tests.fakes import HANDSHAKE_REJECTED, ClientFactory, FakeSpawner, change_params, make_diagnostic

DELAY_MS = 20
SETTLE = 0.1

GRAMMAR_V2 = HELLO_WORLD_GRAMMAR.replace("'Hello'", "'Hi'")


class PlaygroundTestCase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.log = []
        self.spawner = FakeSpawner(log=self.log)
        self.definition_spawner = FakeSpawner("definition-worker", log=self.log)
        self.clients = ClientFactory(self.log)
        self.display = ConsoleDisplay(stream=io.StringIO())
        self.renderer = TreeRenderer(stream=io.StringIO())
        self.definition_view = EditorView("definition")
        self.sample_view = EditorView("sample")
        self.playground = Playground(
            self.definition_view, self.sample_view, self.display, self.renderer,
            {"playground": {"update_delay_ms": DELAY_MS, "handshake_timeout": 5}},
            spawn=self.spawner,
            spawn_definition=self.definition_spawner,
            client_factory=self.clients,
        )

    async def asyncTearDown(self):
        await self.playground.shutdown()

    async def settle(self):
        await asyncio.sleep(SETTLE)
        await self.playground.scheduler.wait_idle()
        await asyncio.sleep(0)

    def definition_client(self):
        return self.playground.definition.client


class TestSetup(PlaygroundTestCase):

    async def test_setup_starts_both_sessions(self):
        await self.playground.setup()

        self.assertIsNotNone(self.playground.definition)
        self.assertIsNotNone(self.playground.manager.live)
        self.assertEqual(self.playground.definition.session_id, 0)
        self.assertEqual(self.playground.manager.live.session_id, 1)
        self.assertEqual(self.definition_view.model.get_value(), HELLO_WORLD_GRAMMAR)
        self.assertEqual(self.sample_view.model.get_value(), DSL_INITIAL_CONTENT)
        self.assertFalse(self.display.loading)
        self.assertIsNone(self.display.error)

    async def test_handshake_timeout_and_command_are_passed_to_spawn(self):
        await self.playground.setup()
        call = self.spawner.calls[0]
        self.assertEqual(call["timeout"], 5.0)
        self.assertEqual(call["command"][1:], ["-m", "langpad.language_server"])

    async def test_encoded_parameters_override_defaults(self):
        await self.playground.setup(encoded_grammar=encode_state(GRAMMAR_V2),
                                    encoded_content=encode_state("person Bob"))

        state = self.playground.get_playground_state()
        self.assertEqual(state, PlaygroundParameters(grammar=GRAMMAR_V2, content="person Bob"))
        self.assertEqual(self.spawner.calls[0]["grammar"], GRAMMAR_V2)

    async def test_malformed_encoded_parameters_keep_defaults(self):
        await self.playground.setup(encoded_grammar="%%%not-lz%%%", encoded_content="!!!!")

        state = self.playground.get_playground_state()
        self.assertEqual(state.grammar, HELLO_WORLD_GRAMMAR)
        self.assertEqual(state.content, DSL_INITIAL_CONTENT)

    async def test_missing_definition_client_is_fatal(self):
        self.clients.missing = True

        with self.assertRaises(PlaygroundSetupError):
            await self.playground.setup()

        self.assertEqual(self.definition_spawner.alive, [])
        self.assertEqual(self.spawner.calls, [])
        self.assertFalse(self.display.loading)

    async def test_definition_handshake_failure_is_fatal(self):
        self.definition_spawner.fail_with = HANDSHAKE_REJECTED
        with self.assertRaises(PlaygroundSetupError):
            await self.playground.setup()

    async def test_first_sample_failure_is_tolerated(self):
        self.spawner.fail_with = HANDSHAKE_REJECTED

        await self.playground.setup()

        self.assertIsNotNone(self.playground.definition)
        self.assertIsNone(self.playground.manager.live)
        self.assertEqual(self.display.error[0], "WorkerStartError")
        self.assertFalse(self.display.loading)


class TestDefinitionUpdates(PlaygroundTestCase):

    async def asyncSetUp(self):
        await super().asyncSetUp()
        await self.playground.setup()
        await self.settle()

    async def test_burst_of_valid_edits_regenerates_once(self):
        original = self.playground.manager.live
        for suffix in ("a", "ab", "abc"):
            self.playground.edit_definition(HELLO_WORLD_GRAMMAR + f"// {suffix}\n")
            await asyncio.sleep(DELAY_MS / 4000)

        await self.settle()

        self.assertEqual(len(self.spawner.workers), 2)
        live = self.playground.manager.live
        self.assertIsNot(live, original)
        self.assertTrue(original.worker.terminated)
        self.assertTrue(self.spawner.calls[-1]["grammar"].endswith("// abc\n"))
        self.assertEqual(live.session_id, 2)
        self.assertFalse(self.display.loading)

    async def test_error_diagnostics_do_not_touch_sample_session(self):
        live = self.playground.manager.live
        broken = "grammar HelloWorld\nentry Model: persons+=Persn*;"
        self.definition_client().emit(DOCUMENT_CHANGE, change_params(broken, [make_diagnostic("Could not resolve")]))

        await self.settle()

        self.assertIs(self.playground.manager.live, live)
        self.assertFalse(live.worker.terminated)
        self.assertEqual(len(self.spawner.workers), 1)
        self.assertFalse(self.playground.scheduler.pending(DEFINITION_KEY))
        self.assertEqual(self.display.error[0], "Diagnostic errors")
        self.assertIn("Could not resolve", self.display.error[1])
        self.assertFalse(self.display.loading)
        self.assertEqual(self.playground.get_playground_state().grammar, HELLO_WORLD_GRAMMAR)

    async def test_error_during_pending_regeneration_keeps_live_session(self):
        live = self.playground.manager.live
        broken = GRAMMAR_V2.replace("persons+=Person ", "persons+=Persn ")
        self.spawner.reject = lambda grammar: grammar is not None and "Persn" in grammar

        self.playground.edit_definition(GRAMMAR_V2)
        self.assertTrue(self.playground.scheduler.pending(DEFINITION_KEY))
        self.definition_client().emit(DOCUMENT_CHANGE, change_params(broken, [make_diagnostic("Could not resolve")]))
        await self.settle()

        self.assertIs(self.playground.manager.live, live)
        self.assertFalse(live.worker.terminated)
        self.assertEqual(len(self.spawner.calls), 1)
        self.assertEqual(self.display.error[0], "Diagnostic errors")
        self.assertEqual(self.playground.get_playground_state().grammar, GRAMMAR_V2)

        self.playground.edit_definition(GRAMMAR_V2 + "// fixed\n")
        await self.settle()

        self.assertIsNot(self.playground.manager.live, live)
        self.assertTrue(self.spawner.calls[-1]["grammar"].endswith("// fixed\n"))
        self.assertIsNone(self.display.error)

    async def test_warnings_still_regenerate(self):
        warning = make_diagnostic("unused", severity=lsp.DiagnosticSeverity.Warning)
        self.definition_client().emit(DOCUMENT_CHANGE, change_params(GRAMMAR_V2, [warning]))

        await self.settle()

        self.assertEqual(len(self.spawner.workers), 2)
        self.assertEqual(self.spawner.calls[-1]["grammar"], GRAMMAR_V2)

    async def test_handshake_failure_leaves_no_live_session(self):
        old = self.playground.manager.live
        self.spawner.fail_with = HANDSHAKE_REJECTED

        self.playground.edit_definition(GRAMMAR_V2)
        await self.settle()

        self.assertIsNone(self.playground.manager.live)
        self.assertIs(self.playground.manager.status, SessionStatus.FAILED)
        self.assertTrue(old.worker.terminated)
        self.assertEqual(self.spawner.alive, [])
        self.assertEqual(self.display.error[0], "WorkerStartError")
        self.assertFalse(self.display.loading)

    async def test_next_valid_edit_clears_previous_error(self):
        self.spawner.fail_with = HANDSHAKE_REJECTED
        self.playground.edit_definition(GRAMMAR_V2)
        await self.settle()
        self.spawner.fail_with = None

        self.playground.edit_definition(HELLO_WORLD_GRAMMAR)
        await self.settle()

        self.assertIsNotNone(self.playground.manager.live)
        self.assertIsNone(self.display.error)

    async def test_notifications_after_definition_client_stopped_are_dropped(self):
        self.definition_client().running = False
        self.definition_client().emit(DOCUMENT_CHANGE, change_params(GRAMMAR_V2))

        self.assertFalse(self.playground.scheduler.pending(DEFINITION_KEY))
        self.assertEqual(self.playground.get_playground_state().grammar, HELLO_WORLD_GRAMMAR)


class TestSampleUpdates(PlaygroundTestCase):

    async def asyncSetUp(self):
        await super().asyncSetUp()
        await self.playground.setup()
        await self.settle()

    async def test_initial_program_is_rendered(self):
        self.assertEqual(self.renderer.render_count, 1)
        self.assertIn("Model [/]", self.renderer.last_output)

    async def test_rapid_sample_edits_render_once(self):
        for text in ("person A", "person AB", "person ABC"):
            self.playground.edit_sample(text)
            await asyncio.sleep(0)

        self.assertTrue(self.playground.scheduler.pending(SAMPLE_KEY))
        await self.settle()

        self.assertEqual(self.renderer.render_count, 2)
        self.assertIn("person ABC", self.renderer.last_output)
        self.assertEqual(self.playground.get_playground_state().content, "person ABC")

    async def test_sample_edit_without_live_session_only_updates_state(self):
        self.spawner.fail_with = HANDSHAKE_REJECTED
        self.playground.edit_definition(GRAMMAR_V2)
        await self.settle()

        self.playground.edit_sample("person Zed")

        self.assertEqual(self.playground.get_playground_state().content, "person Zed")
        self.assertFalse(self.playground.scheduler.pending(SAMPLE_KEY))

    async def test_regenerated_session_keeps_program_text(self):
        self.playground.edit_sample("person Kept")
        await self.settle()

        self.playground.edit_definition(GRAMMAR_V2)
        await self.settle()

        self.assertEqual(self.playground.manager.live.model.get_value(), "person Kept")

    async def test_definition_and_sample_keys_do_not_interfere(self):
        self.playground.edit_definition(GRAMMAR_V2)
        self.playground.edit_sample("person Both")
        self.assertTrue(self.playground.scheduler.pending(DEFINITION_KEY))
        self.assertTrue(self.playground.scheduler.pending(SAMPLE_KEY))

        await self.settle()

        self.assertEqual(len(self.spawner.workers), 2)
        self.assertGreaterEqual(self.renderer.render_count, 2)


class TestResizeAndShutdown(PlaygroundTestCase):

    async def test_resize_updates_every_session(self):
        await self.playground.setup()

        self.playground.on_resize((120, 40))

        self.assertEqual(self.definition_view.size, (120, 40))
        self.assertEqual(self.sample_view.size, (120, 40))
        self.assertEqual(self.definition_view.layout_updates, 1)
        self.assertEqual(self.sample_view.layout_updates, 1)

    async def test_resize_without_sessions_is_harmless(self):
        self.playground.on_resize()
        self.assertEqual(self.sample_view.layout_updates, 0)

    async def test_shutdown_cancels_pending_work_and_terminates_workers(self):
        await self.playground.setup()
        self.playground.edit_definition(GRAMMAR_V2)

        await self.playground.shutdown()
        await asyncio.sleep(SETTLE)

        self.assertEqual(len(self.spawner.workers), 1)
        self.assertEqual(self.spawner.alive, [])
        self.assertEqual(self.definition_spawner.alive, [])
        self.assertIsNone(self.playground.definition)


if __name__ == "__main__":
    unittest.main()
