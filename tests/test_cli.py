import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest import mock

from wikipublish import cli
from wikipublish.caching import CacheType


PLAN = {
    "actions": [
        {"type": "category", "id": "category-Bar", "category_name": "Bar", "status": "completed"},
        {
            "type": "wikidata",
            "id": "wikidata-Q1-p373",
            "entity_id": "Q1",
            "entity_type": "person",
            "entity_label": "Bar",
            "action": "update",
            "changes": [{"property": "P373", "new_value": "Bar"}],
            "depends_on": "category-Bar",
        },
        {"type": "category", "id": "category-Baz", "category_name": "Baz"},
        {
            "type": "wikidata",
            "id": "wikidata-Q2-p373",
            "entity_id": "Q2",
            "entity_type": "person",
            "entity_label": "Baz",
            "action": "update",
            "changes": [{"property": "P373", "new_value": "Baz"}],
            "depends_on": "category-Baz",
        },
    ]
}


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp = Path(tmp.name)
        self.cache_path = str(self.tmp / "cache.sqlite")
        self.plan_path = self.tmp / "plan.json"
        self.plan_path.write_text(json.dumps(PLAN), encoding="utf-8")

    def run_cli(self, *argv):
        out = io.StringIO()
        with redirect_stdout(out):
            code = cli.main(["--cache", self.cache_path, *argv])
        return code, out.getvalue()

    def test_parse_args_defaults(self) -> None:
        args = cli.parse_args(["publish", "plan.json"])
        self.assertEqual(args.command, "publish")
        self.assertEqual(args.policy, "confirm")
        self.assertIsNone(args.only)
        self.assertFalse(args.retry_failed)
        self.assertTrue(cli.parse_args(["publish", "plan.json", "--retry-failed"]).retry_failed)
        self.assertIs(args.handler, cli.cmd_publish)

    def test_invalid_policy_is_rejected(self) -> None:
        with redirect_stdout(io.StringIO()), mock.patch("sys.stderr", new_callable=io.StringIO):
            with self.assertRaises(SystemExit):
                cli.parse_args(["resolve-category", "Q1", "--policy", "always"])

    def test_show_lists_queue(self) -> None:
        code, output = self.run_cli("show", str(self.plan_path))
        self.assertEqual(code, 0)
        lines = output.splitlines()
        self.assertEqual(len(lines), 3)
        self.assertTrue(lines[0].startswith("ready"))
        self.assertIn("wikidata-Q1-p373", lines[0])
        self.assertTrue(lines[2].startswith("blocked"))
        self.assertIn("(after category-Baz)", lines[2])

    def test_invalid_plan_exit_code(self) -> None:
        self.plan_path.write_text("{broken", encoding="utf-8")
        with self.assertLogs("wikipublish.cli", level="ERROR"):
            code, _ = self.run_cli("show", str(self.plan_path))
        self.assertEqual(code, 2)

    def test_publish_without_credentials(self) -> None:
        with mock.patch.dict(os.environ, clear=True), mock.patch("wikipublish.cli.mwclient.Site") as site:
            with self.assertLogs("wikipublish.cli", level="ERROR") as logs:
                code, _ = self.run_cli("publish", str(self.plan_path))
        self.assertEqual(code, 1)
        self.assertTrue(site.called)
        self.assertIn("WIKIPUBLISH_USERNAME", "\n".join(logs.output))

    def test_cache_stats_and_clear(self) -> None:
        cache = cli.open_cache(self.cache_path)
        cache.set(CacheType.COMMONS_CATEGORY_EXISTS, "Bar", True)
        cache.store.close()

        code, output = self.run_cli("cache", "stats")
        self.assertEqual(code, 0)
        self.assertIn("Total entries: 1", output)
        self.assertIn("commons-category-exists: 1", output)

        with self.assertLogs("wikipublish.cli", level="INFO"):
            self.assertEqual(self.run_cli("cache", "clear")[0], 0)
        self.assertIn("Total entries: 0", self.run_cli("cache", "stats")[1])


if __name__ == "__main__":
    unittest.main()
