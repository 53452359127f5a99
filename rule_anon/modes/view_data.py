from typing import Any, Dict, List, Optional

from prettytable import PrettyTable, SINGLE_BORDER

from rule_anon.common.db_utils import AsyncpgStore
from rule_anon.common.dto import RuleSet
from rule_anon.common.errors import AnonError
from rule_anon.common.utils import exception_helper, to_json
from rule_anon.context import Context


class ViewDataMode:
    """
    Shows rows of one table next to the values the rules would write.
    Nothing is written to the store.
    """
    context: Context
    _limit: int
    _offset: int
    _schema_name: Optional[str]
    _table_name: str
    rule_set: RuleSet = None
    raw_field_names: List[str] = None
    field_names: List[str] = None
    query: str
    data: List[List[Any]] = None
    table: PrettyTable = None
    json: str = None

    def __init__(self, context: Context, store=None):
        self.context = context
        self.store = store
        self._own_store = store is None
        self._limit = context.options.limit
        self._offset = context.options.offset
        self._schema_name = context.options.schema_name or context.schema
        self._table_name = context.options.table_name
        self.raw_field_names = []
        self.field_names = []
        self.data = []

    def _find_rule_set(self) -> RuleSet:
        for rule_set in self.context.read_rules():
            if rule_set.table == self._table_name and (rule_set.schema or None) == (self._schema_name or None):
                return rule_set
        raise ValueError(f"No rules for table {self._table_name}")

    def _prepare_query(self):
        table_query = f"SELECT * FROM {self.context.query_builder.qualify(self._table_name, self._schema_name)}"
        if self.rule_set.primary_key:
            quote = self.context.query_builder.quote
            table_query += " ORDER BY " + ", ".join(quote(column) for column in self.rule_set.primary_key)
        self.query = self.context.query_builder.build_select(table_query, self._limit, self._offset)

    def _generate(self, function: str, parameters: Dict[str, Any]) -> Any:
        try:
            return self.context.registry.invoke(function, parameters)
        except AnonError as exc:
            return f"<{type(exc).__name__}: {exc}>"

    def _prepare_data(self, rows: List[Dict[str, Any]]):
        rules = {rule.column: rule for rule in self.rule_set.rules}
        self.raw_field_names = list(rows[0].keys())

        for field_name in self.raw_field_names:
            self.field_names.append(field_name)
            if field_name in rules:
                self.field_names.append('* ' + field_name)

        for row in rows:
            values = []
            for field_name in self.raw_field_names:
                values.append(row[field_name])
                if field_name in rules:
                    rule = rules[field_name]
                    values.append(self._generate(rule.function, rule.parameters))
            self.data.append(values)

    def _prepare_table(self) -> None:
        self.table = PrettyTable(self.field_names)
        self.table.set_style(SINGLE_BORDER)
        for row in self.data:
            self.table.add_row(row)

    def _prepare_json(self) -> None:
        result = {field: [] for field in self.field_names}

        for field_values in self.data:
            for field, value in zip(self.field_names, field_values):
                result[field].append(value)

        self.json = to_json(result)

    async def run(self) -> List[List[Any]]:
        self.context.logger.info("-------------> Started view_data mode")

        try:
            if self._limit is None or self._limit < 1:
                raise ValueError("Processing rows limit must be greater than zero!")
            if self._offset < 0:
                raise ValueError("Processing rows offset must be greater than zero or equals to zero!")

            self.rule_set = self._find_rule_set()
            self._prepare_query()

            if self.store is None:
                self.store = AsyncpgStore(self.context.connection_params, server_settings=self.context.server_settings, max_size=1)

            rows = await self.store.fetch(self.query)
            if not rows:
                raise ValueError("Not found rows for view!")

            self._prepare_data(rows)

            if self.context.options.json:
                self._prepare_json()
                print(self.json)
            else:
                self._prepare_table()
                print(self.table)

            self.context.logger.info("<------------- Finished view_data mode")
            return self.data
        except Exception as ex:
            self.context.logger.error("<------------- view_data failed\n" + exception_helper())
            raise ex
        finally:
            if self._own_store and self.store is not None:
                await self.store.close()
