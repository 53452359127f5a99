import io
import random
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Union

from rule_anon.common.errors import IOFailure, NotLoaded
from rule_anon.logger import get_logger

logger = get_logger()

PoolSource = Union[str, Path, Callable[[], io.IOBase], Iterable[str]]


def _read_lines(stream) -> List[str]:
    values = []
    for line in stream:
        if isinstance(line, bytes):
            line = line.decode("utf-8")
        value = line.rstrip("\r\n")
        if value.strip():
            values.append(value)
    return values


def read_pool_source(name: str, source: PoolSource) -> List[str]:
    """
    Read newline-delimited values from a pool source
    :param name: pool name, used for error messages
    :param source: file path, zero-argument callable returning a text or binary stream, or iterable of strings
    :return: non-blank values in source order
    """
    try:
        if isinstance(source, (str, Path)):
            with open(source, "r", encoding="utf-8") as source_file:
                values = _read_lines(source_file)
        elif callable(source):
            with source() as stream:
                values = _read_lines(stream)
        else:
            values = [str(value) for value in source if str(value).strip()]
    except (OSError, UnicodeDecodeError) as exc:
        raise IOFailure(f"Can't read values for pool '{name}': {exc}") from exc

    if not values:
        raise IOFailure(f"Pool '{name}' source contains no values")

    return values


class ValuePoolCache:
    """
    Named collections of candidate values with shuffled cursors.

    Every value of a pool is returned once before any value repeats: the
    cursor walks a shuffled copy of the pool and a new permutation is made
    only after the current one is exhausted. Calls for one pool name are
    serialized, different pools don't block each other.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()
        self._values: Dict[str, List[str]] = {}
        self._cursors: Dict[str, Iterator[str]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, name: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.Lock()
            return lock

    def _load(self, name: str, source: PoolSource):
        if name in self._values:
            return

        logger.info(f"Loading values for pool: {name}")
        self._values[name] = read_pool_source(name, source)
        logger.debug(f"Pool {name} loaded with {len(self._values[name])} value(s)")

    def _shuffle(self, name: str) -> Iterator[str]:
        permutation = list(self._values[name])
        self._rng.shuffle(permutation)
        cursor = iter(permutation)
        self._cursors[name] = cursor
        return cursor

    def load(self, name: str, source: PoolSource):
        with self._lock_for(name):
            self._load(name, source)

    def is_loaded(self, name: str) -> bool:
        return name in self._values

    def size(self, name: str) -> int:
        if name not in self._values:
            raise NotLoaded(f"Pool '{name}' is not loaded")
        return len(self._values[name])

    def next(self, name: str, source: Optional[PoolSource] = None) -> str:
        with self._lock_for(name):
            if name not in self._values:
                if source is None:
                    raise NotLoaded(f"Pool '{name}' is not loaded")
                self._load(name, source)

            cursor = self._cursors.get(name)
            if cursor is not None:
                value = next(cursor, None)
                if value is not None:
                    return value

            return next(self._shuffle(name))

    @property
    def names(self) -> List[str]:
        return list(self._values)
