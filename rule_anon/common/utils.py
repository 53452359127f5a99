import ast
import decimal
import functools
import json
import traceback
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from rule_anon.common.constants import TRACEBACK_LINES_COUNT


def exception_helper() -> str:
    """Traceback of the exception being handled"""
    return traceback.format_exc()


def exception_handler(func):
    """Prints the traceback before re-raising, the logger may not be set up yet"""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception:
            print(exception_helper())
            raise

    return wrapper


def exception_to_str(exc: Exception) -> str:
    lines = list(traceback.TracebackException.from_exception(exc).format())
    return "".join(lines[-TRACEBACK_LINES_COUNT:])


def _json_default(value: Any) -> Any:
    if isinstance(value, decimal.Decimal):
        return float(value)
    return str(value)


def to_json(obj, formatted: bool = False) -> str:
    if formatted:
        return json.dumps(obj, default=_json_default, ensure_ascii=False, indent=4, sort_keys=True)
    return json.dumps(obj, default=_json_default, ensure_ascii=False)


def parse_comma_separated_list(value: str = None) -> Optional[List[str]]:
    if not value:
        return None

    return [item.strip() for item in value.split(',') if item.strip()]


def read_yaml(file_path: Union[str, Path]) -> Dict:
    path = Path(file_path)
    if path.suffix not in ('.yml', '.yaml'):
        raise ValueError("File must be .yml or .yaml")

    with open(path.absolute(), "r", encoding="utf-8") as file:
        data = yaml.safe_load(file)

    return data or {}


def read_dict_data_from_file(dictionary_file_path: Path) -> Optional[Dict[str, Any]]:
    with open(dictionary_file_path, "r", encoding="utf-8") as dictionary_file:
        data = dictionary_file.read().strip()

    if not data:
        return

    try:
        dict_data = ast.literal_eval(data)
    except (ValueError, SyntaxError) as exc:
        raise ValueError(f"Can't read data from file: {dictionary_file_path}") from exc

    if not dict_data:
        return

    if not isinstance(dict_data, dict):
        raise ValueError(f"Received non-dictionary structure from file: {dictionary_file_path}")

    return dict_data
