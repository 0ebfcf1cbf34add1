import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from fastapi.testclient import TestClient

from quizboard.app import create_app
from quizboard.config import Settings
from quizboard.db import SqliteUserStore
from quizboard.dependencies import build_backend
from quizboard.errors import StorageError


class _UnreachableStore:
    async def initialize(self):
        raise OSError("connection refused")

    async def dispose(self):
        pass


class QuizboardApiTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        settings = Settings(data_dir=tmp.name, db_client="", db_url=None)
        self.backend = build_backend(store=SqliteUserStore(Path(tmp.name) / "app.db"))
        self.client = TestClient(create_app(settings, backend=self.backend))
        self.client.__enter__()
        self.addCleanup(self.client.__exit__, None, None, None)

    def _upsert(self, **payload):
        return self.client.post("/api/users/upsert", json=payload)

    def _score(self, user_id, delta):
        return self.client.post(f"/api/users/{user_id}/score", json={"delta": delta})

    def test_health(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": True})

    def test_upsert_creates_then_merges(self):
        response = self._upsert(name="Ana", email="ana@x.br")
        self.assertEqual(response.status_code, 201)
        created = response.json()
        self.assertTrue(created["id"])
        self.assertEqual(created["score"], 0)
        self.assertEqual(created["role"], "user")
        self.assertEqual(created["email"], "ana@x.br")

        again = self._upsert(name="Ana", email="ana@x.br")
        self.assertEqual(again.status_code, 200)
        self.assertEqual(again.json(), created)

    def test_upsert_merge_preserves_score(self):
        created = self._upsert(name="Ana", email="x@x.br", university="A").json()
        self._score(created["id"], 40)

        merged = self._upsert(email="x@x.br", name="Ana", university="B")
        self.assertEqual(merged.status_code, 200)
        body = merged.json()
        self.assertEqual(body["name"], "Ana")
        self.assertEqual(body["university"], "B")
        self.assertEqual(body["score"], 40)

    def test_upsert_requires_name_and_email(self):
        response = self._upsert(name="Ana")
        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.json())
        self.assertEqual(self._upsert(email="a@x.br").status_code, 400)
        self.assertEqual(
            self._upsert(name="Ana", email="a@x.br", role="owner").status_code, 400
        )

    def test_bulk_upsert_skips_invalid_entries(self):
        response = self.client.post(
            "/api/users/bulk-upsert",
            json=[
                {"name": "A", "email": "a@x.br"},
                {"name": "B", "email": "b@x.br"},
                {"name": "C", "email": "c@x.br"},
                {"name": "No email"},
            ],
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["count"], 3)
        self.assertEqual([u["email"] for u in payload["users"]], ["a@x.br", "b@x.br", "c@x.br"])

    def test_bulk_upsert_requires_array(self):
        response = self.client.post(
            "/api/users/bulk-upsert", json={"name": "A", "email": "a@x.br"}
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "array body required"})

    def test_score_by_id(self):
        user = self._upsert(id="u1", name="Ana", email="ana@x.br").json()
        self.assertEqual(self._score("u1", 50).json()["score"], 50)
        response = self._score("u1", -20)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["score"], user["score"] + 30)

    def test_score_errors(self):
        self._upsert(id="u1", name="Ana", email="ana@x.br")
        self.assertEqual(self._score("missing-id", 1).status_code, 404)
        self.assertEqual(self._score("u1", "lots").status_code, 400)
        self.assertEqual(self._score("u1", 1.5).status_code, 400)

    def test_out_of_range_numbers_are_rejected(self):
        self._upsert(id="u1", name="Ana", email="ana@x.br")
        response = self._score("u1", 10**20)
        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.json())
        self.assertEqual(self._score("u1", 2**63).status_code, 400)

        response = self._upsert(name="Big", email="big@x.br", score=10**20)
        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.json())

        bulk = self.client.post(
            "/api/users/bulk-upsert",
            json=[
                {"name": "Big", "email": "big@x.br", "score": 10**20},
                {"name": "B", "email": "b@x.br"},
            ],
        )
        self.assertEqual(bulk.status_code, 200)
        self.assertEqual([u["email"] for u in bulk.json()["users"]], ["b@x.br"])
        self.assertEqual(self.client.get("/api/users/u1").json()["score"], 0)

    def test_malformed_json_body_is_400(self):
        headers = {"Content-Type": "application/json"}
        response = self.client.post("/api/users/upsert", content="{bad", headers=headers)
        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.json())

        response = self.client.post(
            "/api/users/bulk-upsert", content="[bad", headers=headers
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.json())

    def test_bulk_upsert_storage_failure_reports_committed_count(self):
        real_create = self.backend.identity.create_or_upsert
        calls = []

        async def fail_on_second(record):
            calls.append(record.email)
            if len(calls) == 2:
                raise StorageError("disk full")
            return await real_create(record)

        with patch.object(
            self.backend.identity, "create_or_upsert", side_effect=fail_on_second
        ):
            response = self.client.post(
                "/api/users/bulk-upsert",
                json=[
                    {"name": "A", "email": "a@x.br"},
                    {"name": "B", "email": "b@x.br"},
                    {"name": "C", "email": "c@x.br"},
                ],
            )
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "disk full", "count": 1})
        self.assertEqual(calls, ["a@x.br", "b@x.br"])

    def test_score_by_email(self):
        self._upsert(id="u1", name="Ana", email="ana@x.br")
        response = self.client.post(
            "/api/users/by-email/ana%40x.br/score", json={"delta": 5}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["id"], "u1")
        self.assertEqual(response.json()["score"], 5)

        missing = self.client.post(
            "/api/users/by-email/nobody%40x.br/score", json={"delta": 5}
        )
        self.assertEqual(missing.status_code, 404)

    def test_score_by_email_with_slash(self):
        self._upsert(id="u1", name="Ana", email="a/b@x.br")
        response = self.client.post(
            "/api/users/by-email/a%2Fb%40x.br/score", json={"delta": 3}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["id"], "u1")
        self.assertEqual(response.json()["score"], 3)

    def test_get_user(self):
        self._upsert(id="u1", name="Ana", email="ana@x.br")
        response = self.client.get("/api/users/u1")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["name"], "Ana")
        self.assertEqual(self.client.get("/api/users/nope").status_code, 404)

    def test_leaderboard_ranks_and_clamps(self):
        for user_id, score in (("a", 10), ("b", 30), ("c", 30), ("d", 5)):
            self._upsert(id=user_id, name=user_id.upper(), email=f"{user_id}@x.br")
            self._score(user_id, score)

        response = self.client.get("/api/leaderboard", params={"limit": 3})
        self.assertEqual(response.status_code, 200)
        users = response.json()["users"]
        self.assertEqual([(u["id"], u["rank"]) for u in users], [("b", 1), ("c", 2), ("a", 3)])

        self.assertEqual(len(self.client.get("/api/leaderboard").json()["users"]), 4)
        self.assertEqual(
            len(self.client.get("/api/leaderboard", params={"limit": 0}).json()["users"]), 1
        )
        self.assertEqual(
            len(self.client.get("/api/leaderboard", params={"limit": 500}).json()["users"]), 4
        )

    def test_leaderboard_lenient_limit(self):
        for index in range(12):
            user_id = f"u{index}"
            self._upsert(id=user_id, name=user_id, email=f"{user_id}@x.br")
            self._score(user_id, index + 1)

        response = self.client.get("/api/leaderboard", params={"limit": "abc"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()["users"]), 10)

        response = self.client.get("/api/leaderboard", params={"limit": "2.5"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            [u["id"] for u in response.json()["users"]], ["u11", "u10"]
        )

    def test_university_leaderboard(self):
        for user_id, university, score in (("x1", "X", 10), ("x2", "X", 20), ("y1", "Y", 0)):
            self._upsert(id=user_id, name=user_id, email=f"{user_id}@x.br", university=university)
            if score:
                self._score(user_id, score)

        response = self.client.get("/api/leaderboard/universities")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {
                "universities": [
                    {
                        "university": "X",
                        "totalScore": 30,
                        "userCount": 2,
                        "averageScore": 15,
                        "rank": 1,
                    }
                ]
            },
        )


class UnavailableBackendApiTests(unittest.TestCase):
    def setUp(self):
        backend = build_backend(store=_UnreachableStore())
        self.client = TestClient(create_app(Settings(), backend=backend))
        self.client.__enter__()
        self.addCleanup(self.client.__exit__, None, None, None)

    def test_health_reports_not_ok(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": False})

    def test_operations_fail_with_500(self):
        response = self.client.post(
            "/api/users/upsert", json={"name": "Ana", "email": "ana@x.br"}
        )
        self.assertEqual(response.status_code, 500)
        self.assertIn("connection refused", response.json()["error"])


if __name__ == "__main__":
    unittest.main()
