from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from rule_anon.common.dto import Rule, RuleSet
from rule_anon.common.errors import ConfigurationError
from rule_anon.common.utils import read_dict_data_from_file, read_yaml
from rule_anon.logger import get_logger

logger = get_logger()


class ColumnRule(BaseModel):
    model_config = ConfigDict(extra="forbid")

    column: str
    function: str
    parameters: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("parameters", mode="before")
    @classmethod
    def empty_parameters(cls, value):
        return value if value is not None else {}


class TableRule(BaseModel):
    model_config = ConfigDict(extra="forbid")

    table: str
    schema_name: Optional[str] = Field(default=None, alias="schema")
    primary_key: Optional[List[str]] = None
    condition: Optional[str] = None
    columns: List[ColumnRule]

    @field_validator("primary_key", mode="before")
    @classmethod
    def single_primary_key(cls, value):
        if isinstance(value, str):
            return [value]
        return value


class RulesFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    pools: Dict[str, str] = Field(default_factory=dict)
    tables: List[TableRule] = Field(default_factory=list)


def parse_rules(data: Optional[Dict[str, Any]], source: str = "<memory>") -> RulesFile:
    try:
        return RulesFile.model_validate(data or {})
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid rules in {source}:\n{exc}") from exc


def read_rules_file(file_path: Union[str, Path]) -> RulesFile:
    """
    Read rules from YAML (.yml, .yaml) or from a file with a python dictionary literal
    """
    path = Path(file_path)
    try:
        if path.suffix in (".yml", ".yaml"):
            data = read_yaml(path)
        else:
            data = read_dict_data_from_file(path)
    except OSError as exc:
        raise ConfigurationError(f"Can't read rules file {path}: {exc}") from exc
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc

    rules = parse_rules(data, source=str(path))

    # pool files are relative to the rules file that declares them
    rules.pools = {
        name: str(pool_path if Path(pool_path).is_absolute() else path.parent / pool_path)
        for name, pool_path in rules.pools.items()
    }
    return rules


def build_rule_sets(table_rules: List[TableRule], default_schema: Optional[str] = None) -> List[RuleSet]:
    """
    Group column rules by table. Repeated declarations of one table are merged,
    a repeated column keeps its last rule.
    """
    rule_sets: Dict[Tuple[Optional[str], str], RuleSet] = {}

    for table_rule in table_rules:
        schema = table_rule.schema_name or default_schema
        key = (schema, table_rule.table)
        rule_set = rule_sets.get(key)
        if rule_set is None:
            rule_set = RuleSet(table=table_rule.table, rules=[], schema=schema)
            rule_sets[key] = rule_set

        if table_rule.primary_key:
            rule_set.primary_key = list(table_rule.primary_key)
        if table_rule.condition:
            rule_set.condition = table_rule.condition

        for column_rule in table_rule.columns:
            rule = Rule(
                table=table_rule.table,
                column=column_rule.column,
                function=column_rule.function,
                parameters=column_rule.parameters,
                schema=schema,
            )
            existing = [r for r in rule_set.rules if r.column == rule.column]
            if existing:
                logger.warning(f"Rule for {rule.full_name} is declared more than once, the last one is used")
                rule_set.rules.remove(existing[0])
            rule_set.rules.append(rule)

    return list(rule_sets.values())


def load_rules(rules_files: List[str], default_schema: Optional[str] = None) -> Tuple[List[RuleSet], Dict[str, str]]:
    """
    Load every rules file
    :param rules_files: paths, relative paths are resolved from the working directory
    :param default_schema: schema for tables without one
    :return: rule sets and declared pools (name -> file)
    """
    table_rules: List[TableRule] = []
    pools: Dict[str, str] = {}

    for rules_file in rules_files:
        rules = read_rules_file(Path.cwd() / rules_file)
        logger.debug(f"Rules file {rules_file}: {len(rules.tables)} table(s), {len(rules.pools)} pool(s)")
        table_rules.extend(rules.tables)
        pools.update(rules.pools)

    return build_rule_sets(table_rules, default_schema=default_schema), pools
