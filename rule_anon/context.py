import logging
import os
import random
from pathlib import Path
from typing import Dict, List, Optional

from rule_anon.common.constants import SERVER_SETTINGS, LOGS_FILE_NAME, LOGS_DIR_NAME, DEFAULT_JOBS
from rule_anon.common.dto import ConnectionParams, RunOptions, RuleSet
from rule_anon.common.enums import VerboseOptions, AnonMode
from rule_anon.common.errors import ConfigurationError, IOFailure
from rule_anon.common.query_builder import QueryBuilder, get_dialect
from rule_anon.common.rules import load_rules
from rule_anon.common.utils import exception_handler, read_yaml
from rule_anon.functions.pools import ValuePoolCache
from rule_anon.functions.registry import FunctionRegistry, build_default_registry
from rule_anon.logger import logger_add_file_handler, logger_set_log_level, get_logger

CONFIG_KEYS = ("dialect", "schema", "limit", "jobs", "seed", "pools")


class Context:
    @exception_handler
    def __init__(self, options: RunOptions):
        self.options = options
        self.config: Dict = read_yaml(options.config) if options.config else {}
        self.logger = None
        self.rule_sets: List[RuleSet] = []
        self.setup_logger()

        unknown_keys = set(self.config) - set(CONFIG_KEYS)
        if unknown_keys:
            self.logger.warning(f"Unknown config keys are ignored: {', '.join(sorted(unknown_keys))}")

        self.dialect_name: Optional[str] = self._setting("dialect")
        self.schema: Optional[str] = self._setting("schema")
        self.limit: int = int(self._setting("limit") or 0)
        self.jobs: int = int(self._setting("jobs") or DEFAULT_JOBS)
        seed = self._setting("seed")
        self.seed: Optional[int] = int(seed) if seed is not None else None

        if self.limit < 0:
            raise ValueError("Limit must be greater than or equal to zero")
        if self.jobs < 1:
            raise ValueError("Jobs count must be greater than zero")

        config_dir = Path(options.config).parent if options.config else Path.cwd()
        self.pools: Dict[str, str] = {
            name: str(path if Path(path).is_absolute() else config_dir / path)
            for name, path in (self.config.get("pools") or {}).items()
        }

        if not options.db_user_password:
            options.db_user_password = os.environ.get("PGPASSWORD")

        self.server_settings = SERVER_SETTINGS.copy()
        if self.options.application_name_suffix:
            self.server_settings['application_name'] += '_' + self.options.application_name_suffix

        self.connection_params = ConnectionParams(
            host=options.db_host,
            database=options.db_name,
            port=options.db_port,
            user=options.db_user,
            passfile=options.db_passfile,
            password=options.db_user_password,
            ssl_cert_file=options.db_ssl_cert_file,
            ssl_key_file=options.db_ssl_key_file,
            ssl_ca_file=options.db_ssl_ca_file,
        )

        self.rng = random.Random(self.seed)
        self.pool_cache = ValuePoolCache(self.rng)
        self.registry: FunctionRegistry = build_default_registry(pool_cache=self.pool_cache, rng=self.rng)
        self.query_builder = QueryBuilder(get_dialect(self.dialect_name), schema=self.schema)

    def _setting(self, name: str):
        """
        Value from command line, otherwise from config file
        """
        value = getattr(self.options, name, None)
        if value is None:
            value = self.config.get(name)
        return value

    def setup_logger(self):
        log_level = logging.NOTSET

        if self.options.mode not in (AnonMode.VIEW_FUNCTIONS, AnonMode.VIEW_DATA):
            if self.options.verbose == VerboseOptions.DEBUG:
                log_level = logging.DEBUG
            elif self.options.verbose == VerboseOptions.ERROR:
                log_level = logging.ERROR
            elif self.options.verbose == VerboseOptions.INFO:
                log_level = logging.INFO

        log_dir = Path(self.options.run_dir) / LOGS_DIR_NAME

        logger_add_file_handler(
            log_dir=log_dir,
            log_file_name=LOGS_FILE_NAME
        )
        logger_set_log_level(log_level=log_level)
        self.logger = get_logger()

    def load_pools(self, pools: Dict[str, str]):
        for name, path in pools.items():
            try:
                self.pool_cache.load(name, path)
            except IOFailure as exc:
                # rules using this pool are rejected with NotLoaded
                self.logger.error(f"Pool {name} skipped: {exc}")

    def read_rules(self) -> List[RuleSet]:
        """
        Read rules files and preload every declared pool
        """
        if not self.options.rules_files:
            raise ConfigurationError("No rules files specified")

        self.rule_sets, rules_pools = load_rules(self.options.rules_files, default_schema=self.schema)
        self.load_pools({**self.pools, **rules_pools})

        self.logger.info(
            f"Rules loaded: {len(self.rule_sets)} table(s), "
            f"{sum(len(rule_set.rules) for rule_set in self.rule_sets)} column(s), "
            f"{len(self.pool_cache.names)} pool(s)"
        )
        return self.rule_sets
