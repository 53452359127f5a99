import asyncio
import random
import re
import unittest

from rule_anon.common.dto import Rule, RuleSet
from rule_anon.common.enums import RuleSetState
from rule_anon.common.errors import QueryFailed, StoreUnavailable
from rule_anon.common.query_builder import QueryBuilder
from rule_anon.functions.registry import build_default_registry
from rule_anon.modes.anonymize import RuleSetOrchestrator
from tests.sqlite_store import SqliteStore

EMAIL_PATTERN = r"[a-z]{5}@test\.com"

USERS_SCHEMA = """
CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT, name TEXT, birthday TEXT);
INSERT INTO users VALUES (1, 'alice@example.org', 'Alice', '1990-01-01');
INSERT INTO users VALUES (2, 'bob@example.org', 'Bob', '1985-05-05');
INSERT INTO users VALUES (3, 'carol@example.org', 'Carol', '1979-09-09');
"""


def email_rule() -> Rule:
    return Rule(table="users", column="email", function="randomStringFromPattern", parameters={"pattern": EMAIL_PATTERN})


class OrchestratorTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = SqliteStore()
        self.store.run_script(USERS_SCHEMA)
        self.registry = build_default_registry(rng=random.Random(2024))
        self.query_builder = QueryBuilder()

    def orchestrator(self, rules, limit=0, primary_key=None, cancel_event=None) -> RuleSetOrchestrator:
        rule_set = RuleSet(table="users", rules=list(rules), primary_key=primary_key)
        return RuleSetOrchestrator(
            rule_set=rule_set,
            store=self.store,
            query_builder=self.query_builder,
            registry=self.registry,
            limit=limit,
            cancel_event=cancel_event,
        )

    def data_queries(self):
        return [query for query in self.store.fetch_queries if "information_schema" not in query]


class TestOrchestrator(OrchestratorTestCase):
    async def test_paged_anonymization(self):
        summary = await self.orchestrator([email_rule()], limit=2).run()

        self.assertEqual(summary.state, RuleSetState.IDLE)
        self.assertEqual(summary.pages_fetched, 2)
        self.assertEqual(summary.rows_processed, 3)
        self.assertEqual(summary.rows_written, 3)
        self.assertEqual(summary.rows_failed, 0)
        self.assertEqual(
            self.data_queries(),
            [
                "SELECT id, email FROM users ORDER BY id LIMIT 2",
                "SELECT id, email FROM users ORDER BY id LIMIT 2 OFFSET 2",
            ],
        )

        rows = self.store.rows("users")
        for row, original in zip(rows, ("alice@example.org", "bob@example.org", "carol@example.org")):
            self.assertIsNotNone(re.fullmatch(EMAIL_PATTERN, row["email"]))
            self.assertNotEqual(row["email"], original)
        self.assertEqual([row["name"] for row in rows], ["Alice", "Bob", "Carol"])

    async def test_exact_page_needs_empty_fetch(self):
        summary = await self.orchestrator([email_rule()], limit=3, primary_key=["id"]).run()

        self.assertEqual(summary.state, RuleSetState.IDLE)
        self.assertEqual(summary.pages_fetched, 2)
        self.assertEqual(summary.rows_written, 3)

    async def test_unbounded_limit(self):
        summary = await self.orchestrator([email_rule()], limit=0, primary_key=["id"]).run()

        self.assertEqual(summary.pages_fetched, 1)
        self.assertEqual(self.store.fetch_queries, ["SELECT id, email FROM users ORDER BY id"])
        self.assertEqual(len(self.store.execute_queries), 3)

    async def test_updates_follow_fetch_order(self):
        await self.orchestrator([email_rule()], limit=2, primary_key=["id"]).run()

        keys = [int(re.search(r"WHERE id = (\d+)$", query).group(1)) for query in self.store.execute_queries]
        self.assertEqual(keys, [1, 2, 3])

    async def test_condition(self):
        rule_set = RuleSet(table="users", rules=[email_rule()], primary_key=["id"], condition="name <> 'Bob'")
        orchestrator = RuleSetOrchestrator(rule_set, self.store, self.query_builder, self.registry, limit=10)
        summary = await orchestrator.run()

        self.assertEqual(summary.rows_written, 2)
        self.assertEqual(self.store.rows("users")[1]["email"], "bob@example.org")


class TestOrchestratorFailures(OrchestratorTestCase):
    async def test_write_failure_marks_only_row(self):
        def fail_second_row(sql):
            if sql.endswith("WHERE id = 2"):
                raise QueryFailed("constraint violation")

        self.store.execute_hook = fail_second_row
        summary = await self.orchestrator([email_rule()], limit=2).run()

        self.assertEqual(summary.state, RuleSetState.FAILED)
        self.assertEqual(summary.rows_processed, 3)
        self.assertEqual(summary.rows_written, 2)
        self.assertEqual(summary.rows_failed, 1)
        self.assertIn("QueryFailed", summary.first_errors)

        rows = self.store.rows("users")
        self.assertEqual(rows[1]["email"], "bob@example.org")
        self.assertIsNotNone(re.fullmatch(EMAIL_PATTERN, rows[2]["email"]))

    async def test_store_unavailable_aborts_rule_set(self):
        def lose_connection(sql):
            raise StoreUnavailable("connection reset")

        self.store.execute_hook = lose_connection
        summary = await self.orchestrator([email_rule()], limit=2, primary_key=["id"]).run()

        self.assertEqual(summary.state, RuleSetState.FAILED)
        self.assertEqual(len(self.store.execute_queries), 1)
        self.assertEqual(summary.pages_fetched, 1)
        self.assertIn("StoreUnavailable", summary.first_errors)

    async def test_fetch_failure_is_fatal(self):
        def fail_select(sql):
            if sql.startswith("SELECT id"):
                raise QueryFailed("relation does not exist")

        self.store.fetch_hook = fail_select
        summary = await self.orchestrator([email_rule()], limit=2, primary_key=["id"]).run()

        self.assertEqual(summary.state, RuleSetState.FAILED)
        self.assertEqual(summary.pages_fetched, 0)
        self.assertEqual(self.store.execute_queries, [])
        self.assertIn("QueryFailed", summary.first_errors)

    async def test_generation_error_skips_column(self):
        rules = [
            email_rule(),
            Rule(
                table="users",
                column="birthday",
                function="randomDate",
                parameters={"start": "2000-01-01", "end": "1999-01-01", "format": "%Y-%m-%d"},
            ),
        ]
        summary = await self.orchestrator(rules, limit=2).run()

        self.assertEqual(summary.state, RuleSetState.FAILED)
        self.assertEqual(summary.rows_failed, 3)
        self.assertEqual(summary.rows_written, 3)
        self.assertIn("InvalidRange", summary.first_errors)

        rows = self.store.rows("users")
        self.assertEqual([row["birthday"] for row in rows], ["1990-01-01", "1985-05-05", "1979-09-09"])
        self.assertTrue(all(re.fullmatch(EMAIL_PATTERN, row["email"]) for row in rows))

    async def test_registered_function_error_stays_in_row(self):
        calls = []

        def flaky_code():
            calls.append(len(calls))
            if len(calls) == 2:
                raise RuntimeError("code service timeout")
            return f"code_{len(calls)}"

        self.registry.register("flakyCode", flaky_code)
        rules = [email_rule(), Rule(table="users", column="name", function="flakyCode")]
        summary = await self.orchestrator(rules, limit=2).run()

        self.assertEqual(summary.state, RuleSetState.FAILED)
        self.assertEqual(summary.rows_processed, 3)
        self.assertEqual(summary.rows_written, 3)
        self.assertEqual(summary.rows_failed, 1)
        self.assertIn("RuntimeError", summary.first_errors)
        self.assertEqual([row["name"] for row in self.store.rows("users")], ["code_1", "Bob", "code_3"])

    async def test_datetime_overflow_stays_in_row(self):
        rules = [
            email_rule(),
            Rule(
                table="users",
                column="birthday",
                function="randomDateTime",
                parameters={
                    "start": "9999-12-31T20:00:00-0500",
                    "end": "9999-12-31T23:00:00-0500",
                    "format": "%Y-%m-%dT%H:%M:%S%z",
                },
            ),
        ]
        summary = await self.orchestrator(rules, limit=2).run()

        self.assertEqual(summary.state, RuleSetState.FAILED)
        self.assertEqual(summary.rows_written, 3)
        self.assertEqual(summary.rows_failed, 3)
        self.assertIn("InvalidRange", summary.first_errors)
        self.assertTrue(all(re.fullmatch(EMAIL_PATTERN, row["email"]) for row in self.store.rows("users")))

    async def test_unexpected_error_fails_only_rule_set(self):
        def broken_driver(sql):
            raise RuntimeError("driver bug")

        self.store.fetch_hook = broken_driver
        summary = await self.orchestrator([email_rule()], limit=2).run()

        self.assertEqual(summary.state, RuleSetState.FAILED)
        self.assertIn("RuntimeError", summary.first_errors)
        self.assertEqual(self.store.execute_queries, [])

    def test_declared_key_case(self):
        orchestrator = self.orchestrator([email_rule()], primary_key=["ID"])
        orchestrator.primary_key = ["ID"]
        orchestrator.rules = [email_rule()]

        result = orchestrator.generate_row({"id": 7, "email": "old@example.org"})

        self.assertEqual(result.primary_key, {"ID": 7})
        self.assertIsNotNone(re.fullmatch(EMAIL_PATTERN, result.values["email"]))

    async def test_unknown_function_rejects_rule(self):
        rules = [
            email_rule(),
            Rule(table="users", column="name", function="doesNotExist"),
            Rule(table="users", column="birthday", function="randomDate", parameters={"start": "2020-01-01"}),
        ]
        summary = await self.orchestrator(rules, limit=2).run()

        self.assertEqual(summary.state, RuleSetState.IDLE)
        self.assertEqual(summary.rejected_rules, ["name", "birthday"])
        self.assertIn("UnknownFunction", summary.first_errors)
        self.assertIn("ParameterMismatch", summary.first_errors)
        self.assertEqual(summary.rows_written, 3)
        self.assertEqual(self.store.rows("users")[0]["name"], "Alice")

    async def test_no_valid_rules(self):
        summary = await self.orchestrator([Rule(table="users", column="name", function="doesNotExist")]).run()

        self.assertEqual(summary.state, RuleSetState.FAILED)
        self.assertEqual(self.data_queries(), [])
        self.assertEqual(self.store.execute_queries, [])

    async def test_primary_key_column_rejected(self):
        rules = [email_rule(), Rule(table="users", column="id", function="randomStringFromPattern", parameters={"pattern": r"\d{3}"})]
        summary = await self.orchestrator(rules, limit=2).run()

        self.assertEqual(summary.rejected_rules, ["id"])
        self.assertEqual([row["id"] for row in self.store.rows("users")], [1, 2, 3])

    async def test_unloaded_pool_rejects_rule_at_generation(self):
        rules = [email_rule(), Rule(table="users", column="name", function="randomStringFromPool", parameters={"name": "nope"})]
        summary = await self.orchestrator(rules, limit=2).run()

        self.assertEqual(summary.state, RuleSetState.FAILED)
        self.assertEqual(summary.rejected_rules, ["name"])
        self.assertIn("NotLoaded", summary.first_errors)
        # only the first row saw the rule
        self.assertEqual(summary.rows_failed, 1)
        self.assertEqual(summary.rows_written, 3)

    async def test_table_without_primary_key(self):
        self.store.run_script("CREATE TABLE logs (message TEXT); INSERT INTO logs VALUES ('hello');")
        rule_set = RuleSet(table="logs", rules=[Rule(table="logs", column="message", function="randomWords", parameters={"count": 2, "maxLength": 20})])
        summary = await RuleSetOrchestrator(rule_set, self.store, self.query_builder, self.registry).run()

        self.assertEqual(summary.state, RuleSetState.FAILED)
        self.assertIn("ConfigurationError", summary.first_errors)


class TestOrchestratorCancellation(OrchestratorTestCase):
    async def test_cancel_at_page_boundary(self):
        cancel_event = asyncio.Event()

        def cancel_after_first_update(sql):
            cancel_event.set()

        self.store.execute_hook = cancel_after_first_update
        summary = await self.orchestrator([email_rule()], limit=2, primary_key=["id"], cancel_event=cancel_event).run()

        self.assertEqual(summary.state, RuleSetState.CANCELLED)
        self.assertEqual(summary.pages_fetched, 1)
        # the started page is completed
        self.assertEqual(summary.rows_written, 2)
        self.assertEqual(self.store.rows("users")[2]["email"], "carol@example.org")

    async def test_cancel_before_start(self):
        cancel_event = asyncio.Event()
        cancel_event.set()
        summary = await self.orchestrator([email_rule()], limit=2, primary_key=["id"], cancel_event=cancel_event).run()

        self.assertEqual(summary.state, RuleSetState.CANCELLED)
        self.assertEqual(self.store.fetch_queries, [])


if __name__ == "__main__":
    unittest.main()
