import asyncio
import unittest

from langpad.scheduler import DebouncedScheduler

DELAY_MS = 20


class TestDebouncedScheduler(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.scheduler = DebouncedScheduler()
        self.calls = []

    async def asyncTearDown(self):
        await self.scheduler.aclose()

    def record(self, value):
        return lambda: self.calls.append(value)

    async def test_only_last_action_of_a_burst_runs(self):
        for i in range(5):
            self.scheduler.schedule(1, DELAY_MS, self.record(i))
            await asyncio.sleep(DELAY_MS / 4000)

        await asyncio.sleep(DELAY_MS * 3 / 1000)
        await self.scheduler.wait_idle()

        self.assertEqual(self.calls, [4])
        self.assertFalse(self.scheduler.pending(1))

    async def test_separated_requests_each_run(self):
        self.scheduler.schedule(1, DELAY_MS, self.record("a"))
        await asyncio.sleep(DELAY_MS * 3 / 1000)
        self.scheduler.schedule(1, DELAY_MS, self.record("b"))
        await asyncio.sleep(DELAY_MS * 3 / 1000)
        await self.scheduler.wait_idle()

        self.assertEqual(self.calls, ["a", "b"])

    async def test_keys_are_independent(self):
        self.scheduler.schedule(1, DELAY_MS, self.record("definition"))
        self.scheduler.schedule(2, DELAY_MS, self.record("sample"))
        self.scheduler.schedule(2, DELAY_MS, self.record("sample-2"))

        self.assertTrue(self.scheduler.pending(1))
        await asyncio.sleep(DELAY_MS * 3 / 1000)
        await self.scheduler.wait_idle()

        self.assertCountEqual(self.calls, ["definition", "sample-2"])

    async def test_coroutine_actions_are_awaited(self):
        async def body():
            await asyncio.sleep(0)
            self.calls.append("done")

        self.scheduler.schedule(1, DELAY_MS, body)
        await asyncio.sleep(DELAY_MS * 3 / 1000)
        await self.scheduler.wait_idle()

        self.assertEqual(self.calls, ["done"])

    async def test_started_body_is_not_cancelled_and_bodies_do_not_overlap(self):
        release = asyncio.Event()
        active = []

        async def slow(name):
            active.append(name)
            self.assertEqual(len(active), 1)
            await release.wait()
            self.calls.append(name)
            active.remove(name)

        self.scheduler.schedule(1, 0, lambda: slow("first"))
        await asyncio.sleep(0.01)
        self.assertTrue(self.scheduler.running(1))

        self.scheduler.schedule(1, 0, lambda: slow("second"))
        await asyncio.sleep(0.01)
        self.assertEqual(self.calls, [])

        release.set()
        await asyncio.sleep(0.01)
        await self.scheduler.wait_idle()
        self.assertEqual(self.calls, ["first", "second"])

    async def test_cancel_drops_pending_action(self):
        self.scheduler.schedule(1, DELAY_MS, self.record("x"))
        self.assertTrue(self.scheduler.cancel(1))
        self.assertFalse(self.scheduler.cancel(1))

        await asyncio.sleep(DELAY_MS * 3 / 1000)
        self.assertEqual(self.calls, [])

    async def test_nothing_fires_after_close(self):
        self.scheduler.schedule(1, DELAY_MS, self.record("x"))
        self.scheduler.close()
        self.scheduler.schedule(2, 0, self.record("y"))

        await asyncio.sleep(DELAY_MS * 3 / 1000)
        self.assertEqual(self.calls, [])
        self.assertFalse(self.scheduler.pending(2))

    async def test_failing_action_is_logged_not_raised(self):
        def boom():
            raise RuntimeError("boom")

        with self.assertLogs("langpad.scheduler", level="ERROR") as logs:
            self.scheduler.schedule(1, 0, boom)
            await asyncio.sleep(0.01)
            await self.scheduler.wait_idle()

        self.assertIn("failed", logs.output[0])

        self.scheduler.schedule(1, 0, self.record("after"))
        await asyncio.sleep(0.01)
        self.assertEqual(self.calls, ["after"])


if __name__ == "__main__":
    unittest.main()
