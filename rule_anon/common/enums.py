from enum import Enum


class ResultCode(Enum):
    DONE = "done"
    FAIL = "fail"
    UNKNOWN = "unknown"


class VerboseOptions(Enum):
    INFO = "info"
    DEBUG = "debug"
    ERROR = "error"


class AnonMode(Enum):
    ANONYMIZE = "anonymize"  # rewrite ruled columns in place
    VIEW_DATA = "view-data"  # show generated values for one table without writing
    VIEW_FUNCTIONS = "view-functions"  # list registered generator functions


class RuleSetState(Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    GENERATING = "generating"
    WRITING = "writing"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RowStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"
