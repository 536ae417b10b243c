import asyncio
import unittest
from collections import Counter

import httpx

from tr2b.app import create_app
from tr2b.config import Settings
from tr2b.storage import InMemoryAdapter, KeyValueAdapter
from tr2b.tests.fakes import FakeAsyncRedis


class ConcurrentSignupContract:
    """Racing signups for one username: exactly one 201, the rest 409."""

    def make_storage(self):
        raise NotImplementedError

    async def asyncSetUp(self):
        settings = Settings(_env_file=None, static_dir=None)
        app = create_app(settings, storage=self.make_storage())
        self.client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://testserver"
        )

    async def asyncTearDown(self):
        await self.client.aclose()

    async def test_duplicate_signups_race(self):
        responses = await asyncio.gather(
            *[
                self.client.post("/api/users", json={"username": "ada", "secret": str(n)})
                for n in range(20)
            ]
        )
        statuses = Counter(r.status_code for r in responses)
        self.assertEqual(statuses, Counter({201: 1, 409: 19}))

        listing = await self.client.get("/api/users")
        self.assertEqual(listing.json()["total"], 1)

    async def test_distinct_signups_all_succeed(self):
        responses = await asyncio.gather(
            *[
                self.client.post("/api/users", json={"username": f"user{n}", "secret": "x"})
                for n in range(10)
            ]
        )
        self.assertTrue(all(r.status_code == 201 for r in responses))


class InMemoryConcurrentSignupTests(ConcurrentSignupContract, unittest.IsolatedAsyncioTestCase):
    def make_storage(self):
        return InMemoryAdapter()


class KeyValueConcurrentSignupTests(ConcurrentSignupContract, unittest.IsolatedAsyncioTestCase):
    def make_storage(self):
        return KeyValueAdapter(FakeAsyncRedis(), use_scripts=False)


class KeyValueScriptConcurrentSignupTests(
    ConcurrentSignupContract, unittest.IsolatedAsyncioTestCase
):
    def make_storage(self):
        return KeyValueAdapter(FakeAsyncRedis(), use_scripts=True)


if __name__ == "__main__":
    unittest.main()
