import ssl as ssl_lib
import time
from dataclasses import dataclass, asdict, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from rule_anon.common.constants import SECRET_RUN_OPTIONS
from rule_anon.common.enums import ResultCode, AnonMode, VerboseOptions, RuleSetState, RowStatus
from rule_anon.common.utils import exception_to_str, to_json


@dataclass
class RunOptions:
    rule_anon_version: str
    internal_operation_id: str
    run_dir: str
    debug: bool
    config: Optional[str]
    mode: AnonMode
    verbose: VerboseOptions
    db_host: Optional[str] = None
    db_port: int = 5432
    db_name: Optional[str] = None
    db_user: Optional[str] = None
    db_user_password: Optional[str] = None
    db_passfile: Optional[str] = None
    db_ssl_key_file: Optional[str] = None
    db_ssl_cert_file: Optional[str] = None
    db_ssl_ca_file: Optional[str] = None
    rules_files: Optional[List[str]] = None
    dialect: Optional[str] = None
    schema: Optional[str] = None
    limit: Optional[int] = None
    jobs: Optional[int] = None
    seed: Optional[int] = None
    schema_name: Optional[str] = None
    table_name: Optional[str] = None
    offset: int = 0
    application_name_suffix: Optional[str] = None
    version: bool = False
    json: bool = False

    def to_dict(self):
        return {
            k: v.value if isinstance(v, Enum) else v
            for k, v in asdict(self).items()
            if k not in SECRET_RUN_OPTIONS
        }

    def to_json(self) -> str:
        return to_json(self.to_dict(), formatted=True)


class AnonResult:
    run_options = None
    result_code = ResultCode.UNKNOWN
    result_data = None
    start_time = None
    end_time = None
    _elapsed = None
    _exception = None
    _traceback = None

    def start(self, run_options: RunOptions):
        self.run_options = run_options
        self.start_time = time.time()

    def fail(self, exception: Exception = None):
        self.end_time = time.time()
        self.result_code = ResultCode.FAIL
        self._exception = exception
        if exception is not None:
            self._traceback = exception_to_str(exception)

    def complete(self):
        self.end_time = time.time()
        self.result_code = ResultCode.DONE

    @property
    def elapsed(self):
        if not self._elapsed:
            if self.start_time is None or self.end_time is None:
                return None

            self._elapsed = round(self.end_time - self.start_time, 2)
        return self._elapsed

    @property
    def error_message(self) -> Optional[str]:
        return self._traceback


class ConnectionParams:
    host: str
    database: str
    port: int
    user: str

    password: Optional[str] = None
    passfile: Optional[str] = None

    ssl_cert_file: Optional[str] = None
    ssl_key_file: Optional[str] = None
    ssl_ca_file: Optional[str] = None

    ssl: bool = False

    def __init__(self, host: str, port: int, database: str, user: str,
                 password: Optional[str] = None, passfile: Optional[str] = None,
                 ssl_cert_file: Optional[str] = None, ssl_key_file: Optional[str] = None,
                 ssl_ca_file: Optional[str] = None):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password or None
        self.passfile = passfile or None

        if ssl_cert_file or ssl_key_file or ssl_ca_file:
            self.ssl = True
            self.ssl_cert_file = ssl_cert_file
            self.ssl_key_file = ssl_key_file
            self.ssl_ca_file = ssl_ca_file

    def ssl_context(self) -> Optional[ssl_lib.SSLContext]:
        if not self.ssl:
            return None

        context = ssl_lib.create_default_context(cafile=self.ssl_ca_file or None)
        context.minimum_version = ssl_lib.TLSVersion.TLSv1_2
        if self.ssl_cert_file:
            context.load_cert_chain(self.ssl_cert_file, keyfile=self.ssl_key_file or None)
        return context

    def as_dict(self) -> dict:
        params = {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
            "passfile": self.passfile,
        }
        if self.ssl:
            params["ssl"] = self.ssl_context()
        return params


@dataclass(frozen=True)
class Rule:
    table: str
    column: str
    function: str
    parameters: Mapping[str, Any] = field(default_factory=dict, hash=False)
    schema: Optional[str] = None

    def __post_init__(self):
        # rules are read-only after load
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))

    @property
    def full_name(self) -> str:
        table = f"{self.schema}.{self.table}" if self.schema else self.table
        return f"{table}.{self.column}"


@dataclass
class RuleSet:
    table: str
    rules: List[Rule]
    schema: Optional[str] = None
    primary_key: Optional[List[str]] = None
    condition: Optional[str] = None

    @property
    def key(self) -> Tuple[Optional[str], str]:
        return self.schema, self.table

    @property
    def full_name(self) -> str:
        return f"{self.schema}.{self.table}" if self.schema else self.table


@dataclass
class RowResult:
    primary_key: Dict[str, Any]
    values: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, Exception] = field(default_factory=dict)
    status: RowStatus = RowStatus.SUCCESS

    def fail(self, column: Optional[str], exc: Exception):
        self.errors[column or "*"] = exc
        self.status = RowStatus.FAILED

    @property
    def failed(self) -> bool:
        return self.status == RowStatus.FAILED


@dataclass
class PageSummary:
    number: int
    offset: int
    rows: int = 0
    rows_written: int = 0
    rows_failed: int = 0


@dataclass
class RuleSetSummary:
    table: str
    state: RuleSetState = RuleSetState.IDLE
    pages_fetched: int = 0
    rows_processed: int = 0
    rows_written: int = 0
    rows_failed: int = 0
    rejected_rules: List[str] = field(default_factory=list)
    first_errors: Dict[str, str] = field(default_factory=dict)
    pages: List[PageSummary] = field(default_factory=list)

    def record_error(self, exc: Exception, context: str = ""):
        error_class = type(exc).__name__
        if error_class not in self.first_errors:
            message = str(exc)
            self.first_errors[error_class] = f"{context}: {message}" if context else message

    def add_page(self, page: PageSummary):
        self.pages.append(page)
        self.rows_processed += page.rows
        self.rows_written += page.rows_written
        self.rows_failed += page.rows_failed

    @property
    def failed(self) -> bool:
        return self.state == RuleSetState.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "state": self.state.value,
            "pages_fetched": self.pages_fetched,
            "rows_processed": self.rows_processed,
            "rows_written": self.rows_written,
            "rows_failed": self.rows_failed,
            "rejected_rules": list(self.rejected_rules),
            "first_errors": dict(self.first_errors),
        }
