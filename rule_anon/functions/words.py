import random
from functools import lru_cache
from importlib import resources
from typing import List, Optional, Sequence, Tuple

from rule_anon.common.constants import RESOURCES_PACKAGE, DICTIONARY_RESOURCE
from rule_anon.common.errors import IOFailure
from rule_anon.logger import get_logger

logger = get_logger()


def open_resource(resource_name: str):
    """
    Open a bundled newline-delimited resource as a text stream
    """
    return resources.files(RESOURCES_PACKAGE).joinpath(resource_name).open("r", encoding="utf-8")


@lru_cache(maxsize=None)
def load_dictionary(resource_name: str = DICTIONARY_RESOURCE) -> Tuple[str, ...]:
    try:
        with open_resource(resource_name) as stream:
            words = tuple(word for line in stream for word in line.split())
    except (OSError, ModuleNotFoundError) as exc:
        raise IOFailure(f"Can't load dictionary resource '{resource_name}': {exc}") from exc

    if not words:
        raise IOFailure(f"Dictionary resource '{resource_name}' is empty")

    logger.debug(f"Dictionary {resource_name} loaded: {len(words)} word(s)")
    return words


def random_words(
        words: Sequence[str],
        count: int,
        max_length: int,
        rng: Optional[random.Random] = None,
) -> str:
    """
    Sample words with replacement into one space separated string
    :param words: dictionary to sample from
    :param count: number of words wanted
    :param max_length: maximum length of the result, longer results are cut
    :param rng: random source
    :return: string of at most max_length characters without surrounding whitespace
    """
    rng = rng or random
    parts: List[str] = []
    length = 0
    for _ in range(count):
        if length >= max_length:
            break
        word = rng.choice(words)
        parts.append(word)
        length += len(word) + 1

    result = " ".join(parts)
    return result[:max(max_length, 0)].strip()
