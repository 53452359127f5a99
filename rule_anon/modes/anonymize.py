import asyncio
import logging
from typing import Any, List, Mapping, Optional

from prettytable import PrettyTable, SINGLE_BORDER

from rule_anon.common.db_utils import AsyncpgStore
from rule_anon.common.dto import PageSummary, Rule, RowResult, RuleSet, RuleSetSummary
from rule_anon.common.enums import RuleSetState
from rule_anon.common.errors import ConfigurationError, IOFailure, QueryFailed, StoreError
from rule_anon.common.query_builder import QueryBuilder
from rule_anon.common.utils import exception_helper, to_json
from rule_anon.context import Context
from rule_anon.functions.registry import FunctionRegistry
from rule_anon.logger import get_logger


class RuleSetFailed(Exception):
    """Stops processing of the current rule set"""


class RuleSetOrchestrator:
    """
    Applies the rules of one table: pages through the rows, generates new
    values and writes them back row by row.

    States: idle -> fetching -> generating -> writing -> (fetching | idle),
    failed when any row failed or the rule set was aborted, cancelled when
    the cancel event is set. The event is checked before each fetch, so a
    page is always written completely.
    """

    def __init__(
            self,
            rule_set: RuleSet,
            store,
            query_builder: QueryBuilder,
            registry: FunctionRegistry,
            limit: int = 0,
            cancel_event: Optional[asyncio.Event] = None,
            logger: Optional[logging.Logger] = None,
    ):
        self.rule_set = rule_set
        self.store = store
        self.query_builder = query_builder
        self.registry = registry
        self.limit = limit or 0
        self.cancel_event = cancel_event
        self.logger = logger or get_logger()

        self.summary = RuleSetSummary(table=rule_set.full_name)
        self.primary_key: List[str] = []
        self.rules: List[Rule] = []

    @property
    def state(self) -> RuleSetState:
        return self.summary.state

    def _set_state(self, state: RuleSetState):
        self.summary.state = state

    def _reject(self, rule: Rule, exc: Exception):
        self.logger.error(f"Rule for {rule.full_name} ({rule.function}) rejected: {exc}")
        if rule.column not in self.summary.rejected_rules:
            self.summary.rejected_rules.append(rule.column)
        self.summary.record_error(exc, rule.full_name)
        if rule in self.rules:
            self.rules.remove(rule)

    def _validate_rules(self):
        self.rules = []
        for rule in self.rule_set.rules:
            try:
                self.registry.validate(rule.function, rule.parameters)
            except ConfigurationError as exc:
                self._reject(rule, exc)
                continue
            self.rules.append(rule)

    async def _resolve_primary_key(self) -> List[str]:
        if self.rule_set.primary_key:
            return list(self.rule_set.primary_key)

        query = self.query_builder.build_primary_key_query(self.rule_set.table, schema=self.rule_set.schema)
        rows = await self.store.fetch(query)
        primary_key = [row["column_name"] for row in rows]
        if not primary_key:
            raise ConfigurationError(f"Table {self.rule_set.full_name} has no primary key, declare one in rules")

        self.logger.debug(f"Primary key of {self.rule_set.full_name}: {', '.join(primary_key)}")
        return primary_key

    def _key_value(self, row: Mapping[str, Any], column: str) -> Any:
        if column in row:
            return row[column]
        for name, value in row.items():
            if name.lower() == column.lower():
                return value
        raise ConfigurationError(f"Primary key column {column} not found in rows of {self.rule_set.full_name}")

    def generate_row(self, row: Mapping[str, Any]) -> RowResult:
        result = RowResult(primary_key={column: self._key_value(row, column) for column in self.primary_key})

        for rule in list(self.rules):
            try:
                result.values[rule.column] = self.registry.invoke(rule.function, rule.parameters)
            except (ConfigurationError, IOFailure) as exc:
                # the rule can't work for any row
                self._reject(rule, exc)
                result.fail(rule.column, exc)
            except Exception as exc:
                self.logger.warning(f"{rule.full_name} {result.primary_key}: {type(exc).__name__}: {exc}")
                self.summary.record_error(exc, rule.full_name)
                result.fail(rule.column, exc)

        return result

    async def write_row(self, result: RowResult) -> bool:
        if not result.values:
            return False

        query = self.query_builder.build_update(
            self.rule_set.table,
            result.values,
            result.primary_key,
            schema=self.rule_set.schema,
        )
        try:
            await self.store.execute(query)
        except QueryFailed as exc:
            self.logger.warning(f"Update of {self.rule_set.full_name} {result.primary_key} failed: {exc}")
            self.summary.record_error(exc, self.rule_set.full_name)
            result.fail(None, exc)
            return False

        return True

    async def _process_page(self, rows: List[Mapping[str, Any]], page: PageSummary):
        self._set_state(RuleSetState.GENERATING)
        results = [self.generate_row(row) for row in rows]

        self._set_state(RuleSetState.WRITING)
        for result in results:
            if await self.write_row(result):
                page.rows_written += 1
            if result.failed:
                page.rows_failed += 1

        self.summary.add_page(page)

    async def _run_pages(self):
        table_query = self.query_builder.build_table_query(
            self.rule_set.table,
            columns=[rule.column for rule in self.rules],
            primary_key=self.primary_key,
            schema=self.rule_set.schema,
            condition=self.rule_set.condition,
        )

        offset = 0
        while True:
            if self.cancel_event is not None and self.cancel_event.is_set():
                self.logger.info(f"Rule set {self.rule_set.full_name} cancelled at offset {offset}")
                self._set_state(RuleSetState.CANCELLED)
                return

            self._set_state(RuleSetState.FETCHING)
            query = self.query_builder.build_select(table_query, self.limit, offset)
            rows = await self.store.fetch(query)
            self.summary.pages_fetched += 1
            if not rows:
                break

            page = PageSummary(number=self.summary.pages_fetched, offset=offset, rows=len(rows))
            await self._process_page(rows, page)
            self.logger.info(
                f"{self.rule_set.full_name}: page {page.number} done, "
                f"rows: {page.rows}, written: {page.rows_written}, failed: {page.rows_failed}"
            )

            if not self.rules:
                raise RuleSetFailed(f"No usable rules left for {self.rule_set.full_name}")

            if self.limit == 0 or len(rows) < self.limit:
                break
            offset += self.limit

        self._set_state(RuleSetState.FAILED if self.summary.rows_failed else RuleSetState.IDLE)

    async def run(self) -> RuleSetSummary:
        self.logger.info(f"-------------> Started rule set: {self.rule_set.full_name}")
        try:
            self._validate_rules()
            self.primary_key = await self._resolve_primary_key()

            for rule in list(self.rules):
                if rule.column in self.primary_key:
                    self._reject(rule, ConfigurationError(f"Column {rule.column} is part of the primary key"))

            if not self.rules:
                raise RuleSetFailed(f"No valid rules for {self.rule_set.full_name}")

            await self._run_pages()
        except (RuleSetFailed, ConfigurationError, StoreError) as exc:
            if not isinstance(exc, RuleSetFailed):
                self.summary.record_error(exc, self.rule_set.full_name)
            self.logger.error(f"Rule set {self.rule_set.full_name} failed: {exc}")
            self._set_state(RuleSetState.FAILED)
        except Exception as exc:
            self.summary.record_error(exc, self.rule_set.full_name)
            self.logger.error(f"Rule set {self.rule_set.full_name} failed:\n" + exception_helper())
            self._set_state(RuleSetState.FAILED)

        self.logger.info(
            f"<------------- Finished rule set: {self.rule_set.full_name}, state: {self.state.value}"
        )
        return self.summary


class AnonymizeMode:
    context: Context
    summaries: List[RuleSetSummary]

    def __init__(self, context: Context, store=None, registry: Optional[FunctionRegistry] = None):
        self.context = context
        self.store = store
        self.registry = registry if registry is not None else context.registry
        self.cancel_event = asyncio.Event()
        self.summaries = []
        self._own_store = store is None

    def cancel(self):
        self.cancel_event.set()

    @property
    def failed(self) -> bool:
        return any(summary.failed or summary.rejected_rules for summary in self.summaries)

    async def _run_rule_set(self, rule_set: RuleSet, semaphore: asyncio.Semaphore) -> RuleSetSummary:
        async with semaphore:
            orchestrator = RuleSetOrchestrator(
                rule_set=rule_set,
                store=self.store,
                query_builder=self.context.query_builder,
                registry=self.registry,
                limit=self.context.limit,
                cancel_event=self.cancel_event,
                logger=self.context.logger,
            )
            return await orchestrator.run()

    def _summary_table(self) -> PrettyTable:
        table = PrettyTable(["Table", "State", "Pages", "Rows", "Written", "Failed", "Rejected rules"])
        table.set_style(SINGLE_BORDER)
        for summary in self.summaries:
            table.add_row([
                summary.table,
                summary.state.value,
                summary.pages_fetched,
                summary.rows_processed,
                summary.rows_written,
                summary.rows_failed,
                ", ".join(summary.rejected_rules),
            ])
        return table

    def _log_summary(self):
        self.context.logger.info("Anonymization summary:\n" + str(self._summary_table()))
        for summary in self.summaries:
            for error_class, message in summary.first_errors.items():
                self.context.logger.info(f"{summary.table}: first {error_class}: {message}")
        self.context.logger.debug("Summaries:\n" + to_json([summary.to_dict() for summary in self.summaries], formatted=True))

    async def run(self) -> List[RuleSetSummary]:
        self.context.logger.info("-------------> Started anonymize mode")

        try:
            rule_sets = self.context.read_rules()
            if not rule_sets:
                raise ValueError("No rules to apply. Check --rules-file")

            if self.store is None:
                self.store = AsyncpgStore(
                    self.context.connection_params,
                    server_settings=self.context.server_settings,
                    max_size=self.context.jobs,
                )

            semaphore = asyncio.Semaphore(self.context.jobs)
            self.summaries = list(await asyncio.gather(
                *[self._run_rule_set(rule_set, semaphore) for rule_set in rule_sets]
            ))
            self._log_summary()
            self.context.logger.info("<------------- Finished anonymize mode")
            return self.summaries
        except Exception:
            self.context.logger.error("<------------- anonymize failed\n" + exception_helper())
            raise
        finally:
            if self._own_store and self.store is not None:
                await self.store.close()
