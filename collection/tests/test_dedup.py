import asyncio

from django.test import SimpleTestCase

from collection.dedup import RequestDeduplicator


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


class RequestDeduplicatorTests(SimpleTestCase):
    async def test_concurrent_calls_share_one_request(self):
        dedup = RequestDeduplicator(ttl=5)
        calls = []

        async def producer():
            calls.append(1)
            await asyncio.sleep(0.01)
            return {"A": "Paid"}

        results = await asyncio.gather(*(dedup.execute("k", producer) for _ in range(3)))

        self.assertEqual(len(calls), 1)
        self.assertEqual(results, [{"A": "Paid"}] * 3)

    async def test_failure_is_shared_by_all_waiters(self):
        dedup = RequestDeduplicator(ttl=5)
        calls = []

        async def producer():
            calls.append(1)
            await asyncio.sleep(0.01)
            raise ValueError("boom")

        results = await asyncio.gather(*(dedup.execute("k", producer) for _ in range(2)), return_exceptions=True)

        self.assertEqual(len(calls), 1)
        self.assertTrue(all(isinstance(result, ValueError) for result in results))

    async def test_settled_request_is_evicted(self):
        dedup = RequestDeduplicator(ttl=5)
        calls = []

        async def producer():
            calls.append(1)
            return len(calls)

        self.assertEqual(await dedup.execute("k", producer), 1)
        await asyncio.sleep(0)
        self.assertNotIn("k", dedup)
        self.assertEqual(await dedup.execute("k", producer), 2)

    async def test_different_keys_run_separately(self):
        dedup = RequestDeduplicator(ttl=5)

        async def producer(value):
            await asyncio.sleep(0.01)
            return value

        results = await asyncio.gather(
            dedup.execute("a", lambda: producer("a")),
            dedup.execute("b", lambda: producer("b")),
        )
        self.assertEqual(results, ["a", "b"])

    async def test_expired_entry_is_not_joined(self):
        clock = FakeClock()
        dedup = RequestDeduplicator(ttl=5, clock=clock)
        release = asyncio.Event()
        calls = []

        async def producer():
            calls.append(1)
            await release.wait()
            return len(calls)

        first = asyncio.ensure_future(dedup.execute("k", producer))
        await asyncio.sleep(0)
        clock.now += 6
        second = asyncio.ensure_future(dedup.execute("k", producer))
        await asyncio.sleep(0)
        release.set()

        await asyncio.gather(first, second)
        self.assertEqual(len(calls), 2)

    async def test_sweep_drops_stale_entries(self):
        clock = FakeClock()
        dedup = RequestDeduplicator(ttl=5, clock=clock)
        release = asyncio.Event()

        async def producer():
            await release.wait()
            return "done"

        task = asyncio.ensure_future(dedup.execute("k", producer))
        await asyncio.sleep(0)
        self.assertEqual(len(dedup), 1)

        clock.now += 10
        self.assertEqual(dedup.sweep(), 1)
        self.assertEqual(len(dedup), 0)

        release.set()
        self.assertEqual(await task, "done")

    async def test_cancelled_waiter_does_not_cancel_others(self):
        dedup = RequestDeduplicator(ttl=5)

        async def producer():
            await asyncio.sleep(0.02)
            return "ok"

        first = asyncio.ensure_future(dedup.execute("k", producer))
        second = asyncio.ensure_future(dedup.execute("k", producer))
        await asyncio.sleep(0)
        first.cancel()

        self.assertEqual(await second, "ok")
        with self.assertRaises(asyncio.CancelledError):
            await first
