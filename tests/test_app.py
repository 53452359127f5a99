import contextlib
import io
import json
import os
import re
import tempfile
import unittest

from rule_anon import RuleAnonApp
from rule_anon.cli import build_run_options
from rule_anon.common.enums import AnonMode, ResultCode, RuleSetState, VerboseOptions
from rule_anon.common.errors import StoreUnavailable
from rule_anon.context import Context
from tests.sqlite_store import SqliteStore
from tests.test_orchestrator import EMAIL_PATTERN, USERS_SCHEMA

# kept for the whole run, the logger singleton keeps its file handler open
RUN_DIR = tempfile.mkdtemp(prefix="rule_anon_tests_")

DB_ARGS = ["--db-host", "127.0.0.1", "--db-name", "test_db", "--db-user", "anon_test_user"]

RULES_YAML = """
pools:
  names: names.txt
tables:
  - table: users
    primary_key: [id]
    columns:
      - column: email
        function: randomStringFromPattern
        parameters:
          pattern: "[a-z]{5}@test\\\\.com"
      - column: name
        function: randomStringFromPool
        parameters:
          name: names
"""


class AppTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp_dir.cleanup)
        self.rules_file = self._write("rules.yml", RULES_YAML)
        self._write("names.txt", "Ann\nBen\nCid\n")

        self.store = SqliteStore()
        self.store.run_script(USERS_SCHEMA)

    def _write(self, name: str, content: str) -> str:
        path = os.path.join(self.tmp_dir.name, name)
        with open(path, "w", encoding="utf-8") as file:
            file.write(content)
        return path

    def options(self, argv):
        options = build_run_options(argv)
        options.run_dir = RUN_DIR
        return options


class TestBuildRunOptions(AppTestCase):
    def test_anonymize_options(self):
        options = self.options(
            ["anonymize", *DB_ARGS, "--rules-file", "a.yml, b.py", "--limit", "500", "--jobs", "2",
             "--dialect", "postgres", "--seed", "7", "--debug"]
        )

        self.assertEqual(options.mode, AnonMode.ANONYMIZE)
        self.assertEqual(options.rules_files, ["a.yml", "b.py"])
        self.assertEqual(options.limit, 500)
        self.assertEqual(options.jobs, 2)
        self.assertEqual(options.dialect, "postgres")
        self.assertEqual(options.seed, 7)
        self.assertTrue(options.debug)
        self.assertEqual(options.verbose, VerboseOptions.DEBUG)
        self.assertNotIn("db_user_password", options.to_dict())

    def test_view_functions_needs_no_database(self):
        options = self.options(["view-functions", "--json"])
        self.assertEqual(options.mode, AnonMode.VIEW_FUNCTIONS)
        self.assertTrue(options.json)
        self.assertIsNone(options.db_host)

    def test_missing_required(self):
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                build_run_options(["anonymize", *DB_ARGS])
            with self.assertRaises(SystemExit):
                build_run_options(["scramble"])


class TestContext(AppTestCase):
    def test_config_and_overrides(self):
        config_file = self._write("config.yml", "dialect: mysql\nlimit: 100\njobs: 3\nseed: 5\nschema: crm\n")
        options = self.options(
            ["anonymize", *DB_ARGS, "--rules-file", self.rules_file, "--config", config_file, "--limit", "10"]
        )
        context = Context(options)

        self.assertEqual(context.limit, 10)
        self.assertEqual(context.jobs, 3)
        self.assertEqual(context.seed, 5)
        self.assertEqual(context.query_builder.dialect.name, "mysql")
        self.assertEqual(context.query_builder.qualify("users"), "crm.users")

    def test_password_from_environment(self):
        os.environ["PGPASSWORD"] = "secret"
        self.addCleanup(os.environ.pop, "PGPASSWORD")
        context = Context(self.options(["anonymize", *DB_ARGS, "--rules-file", self.rules_file]))
        self.assertEqual(context.connection_params.password, "secret")


class TestRuleAnonApp(AppTestCase):
    async def test_anonymize(self):
        options = self.options(["anonymize", *DB_ARGS, "--rules-file", self.rules_file, "--limit", "2", "--seed", "1"])
        result = await RuleAnonApp(options, store=self.store).run()

        self.assertEqual(result.result_code, ResultCode.DONE, result.error_message)
        self.assertEqual(len(result.result_data), 1)
        self.assertEqual(result.result_data[0].state, RuleSetState.IDLE)
        self.assertEqual(result.result_data[0].pages_fetched, 2)

        rows = self.store.rows("users")
        self.assertTrue(all(re.fullmatch(EMAIL_PATTERN, row["email"]) for row in rows))
        self.assertEqual(sorted(row["name"] for row in rows), ["Ann", "Ben", "Cid"])

    async def test_anonymize_fails_on_rejected_rule(self):
        rules_file = self._write(
            "bad_rules.yml",
            "tables:\n  - table: users\n    columns:\n      - column: name\n        function: doesNotExist\n"
            "      - column: email\n        function: randomFirstName\n",
        )
        options = self.options(["anonymize", *DB_ARGS, "--rules-file", rules_file])
        result = await RuleAnonApp(options, store=self.store).run()

        self.assertEqual(result.result_code, ResultCode.FAIL)
        self.assertEqual(result.result_data[0].rejected_rules, ["name"])

    async def test_unreadable_pool_skips_only_its_rules(self):
        rules_file = self._write(
            "missing_pool_rules.yml",
            "pools:\n  names: missing_names.txt\n"
            "tables:\n  - table: users\n    primary_key: [id]\n    columns:\n"
            "      - column: email\n        function: randomStringFromPattern\n"
            "        parameters:\n          pattern: \"[a-z]{5}@test\\\\.com\"\n",
        )
        options = self.options(["anonymize", *DB_ARGS, "--rules-file", rules_file, "--seed", "1"])
        result = await RuleAnonApp(options, store=self.store).run()

        self.assertEqual(result.result_code, ResultCode.DONE, result.error_message)
        self.assertEqual(result.result_data[0].rows_written, 3)
        self.assertTrue(all(re.fullmatch(EMAIL_PATTERN, row["email"]) for row in self.store.rows("users")))

    async def test_unreadable_pool_rejects_rules_using_it(self):
        os.remove(os.path.join(self.tmp_dir.name, "names.txt"))
        options = self.options(["anonymize", *DB_ARGS, "--rules-file", self.rules_file, "--seed", "1"])
        result = await RuleAnonApp(options, store=self.store).run()

        self.assertEqual(result.result_code, ResultCode.FAIL)
        summary = result.result_data[0]
        self.assertEqual(summary.rejected_rules, ["name"])
        self.assertIn("NotLoaded", summary.first_errors)
        self.assertEqual(summary.rows_written, 3)
        rows = self.store.rows("users")
        self.assertEqual([row["name"] for row in rows], ["Alice", "Bob", "Carol"])
        self.assertTrue(all(re.fullmatch(EMAIL_PATTERN, row["email"]) for row in rows))

    async def test_lost_store_fails_only_its_rule_set(self):
        self.store.run_script(
            "CREATE TABLE orders (id INTEGER PRIMARY KEY, note TEXT);"
            "INSERT INTO orders VALUES (1, 'call me at home');"
            "INSERT INTO orders VALUES (2, 'leave at the door');"
        )
        rules_file = self._write(
            "two_tables.yml",
            "tables:\n"
            "  - table: users\n    primary_key: [id]\n    columns:\n"
            "      - column: name\n        function: randomFirstName\n"
            "  - table: orders\n    primary_key: [id]\n    columns:\n"
            "      - column: note\n        function: randomWords\n"
            "        parameters:\n          count: 3\n          maxLength: 30\n",
        )

        def lose_users_connection(sql):
            if sql.startswith("UPDATE users"):
                raise StoreUnavailable("connection reset")

        self.store.execute_hook = lose_users_connection
        options = self.options(["anonymize", *DB_ARGS, "--rules-file", rules_file, "--jobs", "2"])
        result = await RuleAnonApp(options, store=self.store).run()

        self.assertEqual(result.result_code, ResultCode.FAIL)
        summaries = {summary.table: summary for summary in result.result_data}
        self.assertEqual(summaries["users"].state, RuleSetState.FAILED)
        self.assertIn("StoreUnavailable", summaries["users"].first_errors)
        self.assertEqual(summaries["orders"].state, RuleSetState.IDLE)
        self.assertEqual(summaries["orders"].rows_written, 2)

        notes = [row["note"] for row in self.store.rows("orders")]
        self.assertNotIn("call me at home", notes)
        self.assertNotIn("leave at the door", notes)

    async def test_view_functions(self):
        output = io.StringIO()
        with contextlib.redirect_stdout(output):
            result = await RuleAnonApp(self.options(["view-functions", "--json"])).run()

        self.assertEqual(result.result_code, ResultCode.DONE)
        functions = {item["name"]: item for item in json.loads(output.getvalue().strip().splitlines()[-1])}
        self.assertIn("randomStringFromPattern", functions)
        self.assertEqual(
            [parameter["name"] for parameter in functions["randomWords"]["parameters"]],
            ["count", "maxLength"],
        )

    async def test_view_data_writes_nothing(self):
        options = self.options(
            ["view-data", *DB_ARGS, "--rules-file", self.rules_file, "--table-name", "users", "--limit", "2", "--offset", "1"]
        )
        output = io.StringIO()
        with contextlib.redirect_stdout(output):
            result = await RuleAnonApp(options, store=self.store).run()

        self.assertEqual(result.result_code, ResultCode.DONE, result.error_message)
        self.assertEqual(self.store.execute_queries, [])
        self.assertEqual(self.store.fetch_queries, ["SELECT * FROM users ORDER BY id LIMIT 2 OFFSET 1"])

        self.assertEqual(len(result.result_data), 2)
        bob = result.result_data[0]
        # id, email, * email, name, * name, birthday
        self.assertEqual(bob[0], 2)
        self.assertEqual(bob[1], "bob@example.org")
        self.assertIsNotNone(re.fullmatch(EMAIL_PATTERN, bob[2]))
        self.assertIn(bob[4], ("Ann", "Ben", "Cid"))
        self.assertIn("* email", output.getvalue())


if __name__ == "__main__":
    unittest.main()
