import random
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from rule_anon.common.errors import InvalidFormat, InvalidRange

EPOCH = datetime(1970, 1, 1)


def _parse(value: str, date_format: str, field: str) -> datetime:
    if not isinstance(value, str) or not isinstance(date_format, str):
        raise InvalidFormat(f"Parameter '{field}' and format must be strings")
    try:
        return datetime.strptime(value, date_format)
    except ValueError as exc:
        raise InvalidFormat(f"Can't parse {field} '{value}' with format '{date_format}': {exc}") from exc


def _check_range(start: int, end: int, start_text: str, end_text: str):
    if end <= start:
        raise InvalidRange(f"End '{end_text}' must be strictly after start '{start_text}'")


def random_date(start: str, end: str, date_format: str, rng: Optional[random.Random] = None) -> str:
    """
    Random date in [start, end) with day granularity
    :param start: first possible date, formatted with date_format
    :param end: exclusive upper bound, formatted with date_format
    :param date_format: strftime/strptime format used for parsing and for the result
    :param rng: random source
    :return: formatted date
    """
    rng = rng or random
    start_day = _parse(start, date_format, "start").date().toordinal()
    end_day = _parse(end, date_format, "end").date().toordinal()
    _check_range(start_day, end_day, start, end)

    day = rng.randrange(start_day, end_day)
    return date.fromordinal(day).strftime(date_format)


def random_datetime(start: str, end: str, date_format: str, rng: Optional[random.Random] = None) -> str:
    """
    Random date-time in [start, end) with second granularity. Naive values are treated as UTC.
    :param start: first possible moment, formatted with date_format
    :param end: exclusive upper bound, formatted with date_format
    :param date_format: strftime/strptime format used for parsing and for the result
    :param rng: random source
    :return: formatted date-time
    """
    rng = rng or random
    start_dt = _parse(start, date_format, "start")
    end_dt = _parse(end, date_format, "end")

    tz = start_dt.tzinfo
    start_second = _epoch_second(start_dt, start)
    end_second = _epoch_second(end_dt, end)
    _check_range(start_second, end_second, start, end)

    second = rng.randrange(start_second, end_second)
    result = EPOCH + timedelta(seconds=second)
    if tz is not None:
        try:
            result = result.replace(tzinfo=timezone.utc).astimezone(tz)
        except OverflowError as exc:
            raise InvalidRange(f"Value between '{start}' and '{end}' can't be represented: {exc}") from exc
    return result.strftime(date_format)


def _epoch_second(value: datetime, text: str) -> int:
    if value.tzinfo is not None:
        try:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        except OverflowError as exc:
            raise InvalidRange(f"'{text}' is out of the supported range: {exc}") from exc
    return (value - EPOCH) // timedelta(seconds=1)
