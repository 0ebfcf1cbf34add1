import tempfile
import unittest
from pathlib import Path

from scripts.sync_users import load_users, main


class SyncUsersScriptTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.dir = Path(tmp.name)

    def _write(self, name, text):
        path = self.dir / name
        path.write_text(text, encoding="utf-8")
        return path

    def test_load_users_requires_array(self):
        path = self._write("users.json", '{"name": "Ana"}')
        with self.assertRaises(ValueError):
            load_users(path)
        self.assertEqual(load_users(self._write("ok.json", "[]")), [])

    def test_unreadable_input_exits_1(self):
        with self.assertLogs("scripts.sync_users", level="ERROR"):
            self.assertEqual(main([str(self.dir / "missing.json")]), 1)
        with self.assertLogs("scripts.sync_users", level="ERROR"):
            self.assertEqual(main([str(self._write("bad.json", "[not json"))]), 1)
        with self.assertLogs("scripts.sync_users", level="ERROR"):
            self.assertEqual(main([str(self._write("obj.json", "{}"))]), 1)


if __name__ == "__main__":
    unittest.main()
