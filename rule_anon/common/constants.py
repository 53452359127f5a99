from pathlib import Path

SERVER_SETTINGS = {
    "application_name": "rule_anon",
    "statement_timeout": "0",
    "lock_timeout": "0",
}

RUNS_BASE_DIR = Path.cwd() / "runs"
LOGS_DIR_NAME = "logs"
LOGS_FILE_NAME = "rule_anon.log"
LOGGER_NAME = "rule_anon"
LOG_FORMAT = "%(asctime)s,%(msecs)03d - %(levelname)8s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 10

TRACEBACK_LINES_COUNT = 100
SECRET_RUN_OPTIONS = ("db_user_password", "db_passfile")

DEFAULT_DIALECT = "default"
DEFAULT_JOBS = 4

# Extra repetitions allowed for "*", "+" and "{n,}" when sampling a pattern
MAX_REPEAT = 10

# Samples tried before a pattern whose back-references keep missing their group is rejected
MAX_PATTERN_ATTEMPTS = 100

# Printable ASCII, used for ".", negated classes and negated escapes
PRINTABLE_CHARS = "".join(chr(code) for code in range(32, 127))
# Latin-1 and Latin Extended-A letters, for negated classes that exclude all of ASCII
EXTENDED_CHARS = "".join(chr(code) for code in range(0xC0, 0x180) if chr(code).isalpha())
DIGIT_CHARS = "0123456789"
WORD_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789_"
SPACE_CHARS = " \t\n\r\f\v"

RESOURCES_PACKAGE = "rule_anon.resources"
DICTIONARY_RESOURCE = "dictionary.txt"
FIRST_NAMES_RESOURCE = "first_names.txt"
LAST_NAMES_RESOURCE = "last_names.txt"
