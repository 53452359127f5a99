import random
import re
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from rule_anon.common.constants import (
    MAX_REPEAT, MAX_PATTERN_ATTEMPTS, PRINTABLE_CHARS, EXTENDED_CHARS, DIGIT_CHARS, WORD_CHARS, SPACE_CHARS
)
from rule_anon.common.errors import InvalidPattern

QUANTIFIER_PATTERN = re.compile(r"\{(\d*)(,?)(\d*)\}")
OCTAL_CHARS = "01234567"

CATEGORY_ESCAPES = {
    "d": DIGIT_CHARS,
    "w": WORD_CHARS,
    "s": SPACE_CHARS,
    "D": "".join(c for c in PRINTABLE_CHARS if c not in DIGIT_CHARS),
    "W": "".join(c for c in PRINTABLE_CHARS if c not in WORD_CHARS),
    "S": "".join(c for c in PRINTABLE_CHARS if c not in SPACE_CHARS),
}

CHAR_ESCAPES = {
    "a": "\a",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
}

HEX_ESCAPES = {"x": 2, "u": 4, "U": 8}
ANCHOR_ESCAPES = "AZbB"
SUPPORTED_FLAGS = "aiLmsu"


class _SampleState:
    def __init__(self, rng: random.Random):
        self.rng = rng
        self.captures: Dict[int, str] = {}


class Node:
    def sample(self, state: _SampleState) -> str:
        raise NotImplementedError


class Empty(Node):
    def sample(self, state: _SampleState) -> str:
        return ""


class Literal(Node):
    def __init__(self, text: str):
        self.text = text

    def sample(self, state: _SampleState) -> str:
        return self.text


class CharClass(Node):
    def __init__(self, chars: str):
        self.chars = chars

    def sample(self, state: _SampleState) -> str:
        return state.rng.choice(self.chars)


class Sequence(Node):
    def __init__(self, items: List[Node]):
        self.items = items

    def sample(self, state: _SampleState) -> str:
        return "".join(item.sample(state) for item in self.items)


class Alternation(Node):
    def __init__(self, branches: List[Node]):
        self.branches = branches

    def sample(self, state: _SampleState) -> str:
        return state.rng.choice(self.branches).sample(state)


class Repeat(Node):
    def __init__(self, node: Node, min_count: int, max_count: int):
        self.node = node
        self.min_count = min_count
        self.max_count = max_count

    def sample(self, state: _SampleState) -> str:
        count = state.rng.randint(self.min_count, self.max_count)
        return "".join(self.node.sample(state) for _ in range(count))


class Group(Node):
    def __init__(self, node: Node, index: Optional[int] = None):
        self.node = node
        self.index = index

    def sample(self, state: _SampleState) -> str:
        text = self.node.sample(state)
        if self.index is not None:
            state.captures[self.index] = text
        return text


class _UnsetGroup(Exception):
    """A back-reference was sampled before its group took part"""


class Backref(Node):
    def __init__(self, index: int):
        self.index = index

    def sample(self, state: _SampleState) -> str:
        if self.index not in state.captures:
            raise _UnsetGroup(self.index)
        return state.captures[self.index]


class PatternParser:
    """
    Recursive descent parser for the subset of Python regular expressions
    that can be expanded into sample strings.

    Lookaround assertions and the verbose flag are rejected. Unbounded
    repetition is limited to ``max_repeat`` repetitions over its lower bound.
    """

    def __init__(self, pattern: str, max_repeat: int = MAX_REPEAT):
        self.pattern = pattern
        self.max_repeat = max_repeat
        self.pos = 0
        self.group_count = 0
        self.group_names: Dict[str, int] = {}
        self.open_groups: List[int] = []
        self.ignore_case = False

    def error(self, message: str) -> InvalidPattern:
        return InvalidPattern(f"{message} at position {self.pos} in pattern: {self.pattern!r}")

    def peek(self, offset: int = 0) -> Optional[str]:
        index = self.pos + offset
        if index < len(self.pattern):
            return self.pattern[index]
        return None

    def advance(self) -> str:
        char = self.pattern[self.pos]
        self.pos += 1
        return char

    def parse(self) -> Node:
        node = self._parse_alternation()
        if self.pos < len(self.pattern):
            raise self.error("unbalanced parenthesis")
        return node

    def _parse_alternation(self) -> Node:
        branches = [self._parse_sequence()]
        while self.peek() == "|":
            self.advance()
            branches.append(self._parse_sequence())

        if len(branches) == 1:
            return branches[0]
        return Alternation(branches)

    def _parse_sequence(self) -> Node:
        items = []
        while self.peek() is not None and self.peek() not in "|)":
            atom = self._parse_atom()
            items.append(self._parse_quantifier(atom))

        if len(items) == 1:
            return items[0]
        return Sequence(items)

    def _match_quantifier(self) -> Optional[Tuple[int, Optional[int], int]]:
        """
        Returns (min, max, length) of a quantifier at the current position, max is None for unbounded
        """
        char = self.peek()
        if char == "*":
            return 0, None, 1
        if char == "+":
            return 1, None, 1
        if char == "?":
            return 0, 1, 1
        if char == "{":
            match = QUANTIFIER_PATTERN.match(self.pattern, self.pos)
            if not match:
                return None
            low, comma, high = match.groups()
            if not low and not comma:
                return None
            min_count = int(low) if low else 0
            if comma:
                max_count = int(high) if high else None
            else:
                max_count = min_count
            return min_count, max_count, match.end() - match.start()
        return None

    def _parse_quantifier(self, atom: Node) -> Node:
        quantifier = self._match_quantifier()
        if quantifier is None:
            return atom

        min_count, max_count, length = quantifier
        if isinstance(atom, Empty):
            raise self.error("nothing to repeat")
        if max_count is not None and max_count < min_count:
            raise self.error("min repeat greater than max repeat")
        self.pos += length

        # lazy and possessive suffixes don't change what can match
        if self.peek() in ("?", "+"):
            self.advance()
        if self._match_quantifier() is not None:
            raise self.error("multiple repeat")

        if max_count is None:
            max_count = min_count + self.max_repeat
        return Repeat(atom, min_count, max_count)

    def _parse_atom(self) -> Node:
        char = self.peek()

        if char == "(":
            return self._parse_group()
        if char == "[":
            return self._parse_class()
        if char in ("^", "$"):
            self.advance()
            return Empty()
        if char == ".":
            self.advance()
            return CharClass(PRINTABLE_CHARS)
        if char == "\\":
            return self._parse_escape()
        if char in "*+?" or (char == "{" and self._match_quantifier() is not None):
            raise self.error("nothing to repeat")

        self.advance()
        return Literal(char)

    def _read_name(self, terminator: str) -> str:
        end = self.pattern.find(terminator, self.pos)
        if end == -1:
            raise self.error("missing group name terminator")
        name = self.pattern[self.pos:end]
        if not name.isidentifier():
            raise self.error(f"bad character in group name {name!r}")
        self.pos = end + 1
        return name

    def _parse_group_body(self, index: Optional[int]) -> Node:
        if index is not None:
            self.open_groups.append(index)
        node = self._parse_alternation()
        if self.peek() != ")":
            raise self.error("missing ), unterminated subpattern")
        self.advance()
        if index is not None:
            self.open_groups.remove(index)
        return Group(node, index)

    def _new_group_index(self) -> int:
        self.group_count += 1
        return self.group_count

    def _parse_group(self) -> Node:
        self.advance()
        if self.peek() != "?":
            return self._parse_group_body(self._new_group_index())

        self.advance()
        char = self.peek()

        if char == ":":
            self.advance()
            return self._parse_group_body(None)

        if char == "P":
            self.advance()
            if self.peek() == "<":
                self.advance()
                name = self._read_name(">")
                if name in self.group_names:
                    raise self.error(f"redefinition of group name {name!r}")
                index = self._new_group_index()
                self.group_names[name] = index
                return self._parse_group_body(index)
            if self.peek() == "=":
                self.advance()
                name = self._read_name(")")
                if name not in self.group_names:
                    raise self.error(f"unknown group name {name!r}")
                return self._backref(self.group_names[name])
            raise self.error("unknown extension ?P")

        if char == "#":
            end = self.pattern.find(")", self.pos)
            if end == -1:
                raise self.error("missing ), unterminated comment")
            self.pos = end + 1
            return Empty()

        if char in ("=", "!", "<"):
            raise self.error("lookaround assertions are not supported")

        if char is not None and (char in SUPPORTED_FLAGS or char == "-"):
            while self.peek() is not None and (self.peek() in SUPPORTED_FLAGS or self.peek() == "-"):
                if self.advance() == "i":
                    self.ignore_case = True
            if self.peek() == ")":
                self.advance()
                return Empty()
            if self.peek() == ":":
                self.advance()
                return self._parse_group_body(None)

        if char == "x" or self.peek() == "x":
            raise self.error("verbose flag is not supported")

        raise self.error("unknown extension")

    def _backref(self, index: int) -> Node:
        if index > self.group_count:
            raise self.error("invalid group reference")
        if index in self.open_groups:
            raise self.error("cannot refer to an open group")
        return Backref(index)

    def _read_hex(self, size: int) -> str:
        digits = self.pattern[self.pos:self.pos + size]
        if len(digits) != size or any(c not in "0123456789abcdefABCDEF" for c in digits):
            raise self.error("incomplete escape")
        self.pos += size
        try:
            return chr(int(digits, 16))
        except (ValueError, OverflowError):
            raise self.error("bad escape")

    def _read_octal(self) -> str:
        digits = ""
        while len(digits) < 3 and self.peek() is not None and self.peek() in OCTAL_CHARS:
            digits += self.advance()
        code = int(digits, 8)
        if code > 0o377:
            raise self.error("octal escape value outside of range 0-0o377")
        return chr(code)

    def _parse_escape(self) -> Node:
        self.advance()
        char = self.peek()
        if char is None:
            raise self.error("bad escape (end of pattern)")

        if char in CATEGORY_ESCAPES:
            self.advance()
            return CharClass(CATEGORY_ESCAPES[char])
        if char in ANCHOR_ESCAPES:
            self.advance()
            return Empty()
        if char == "0":
            return Literal(self._read_octal())
        if char in DIGIT_CHARS:
            digits = self.advance()
            if self.peek() is not None and self.peek() in DIGIT_CHARS:
                digits += self.advance()
                if digits[0] in OCTAL_CHARS and digits[1] in OCTAL_CHARS \
                        and self.peek() is not None and self.peek() in OCTAL_CHARS:
                    digits += self.advance()
                    code = int(digits, 8)
                    if code > 0o377:
                        raise self.error("octal escape value outside of range 0-0o377")
                    return Literal(chr(code))
            return self._backref(int(digits))

        return Literal(self._read_char_escape())

    def _read_char_escape(self) -> str:
        char = self.advance()
        if char in CHAR_ESCAPES:
            return CHAR_ESCAPES[char]
        if char in HEX_ESCAPES:
            return self._read_hex(HEX_ESCAPES[char])
        if char.isascii() and char.isalnum():
            raise self.error(f"bad escape \\{char}")
        return char

    def _parse_class_item(self) -> Tuple[Optional[str], Optional[str]]:
        """
        Returns (single_char, category_chars) for one class member
        """
        char = self.advance()
        if char != "\\":
            return char, None

        escaped = self.peek()
        if escaped is None:
            raise self.error("unterminated character set")
        if escaped in CATEGORY_ESCAPES:
            self.advance()
            return None, CATEGORY_ESCAPES[escaped]
        if escaped == "b":
            self.advance()
            return "\b", None
        if escaped in OCTAL_CHARS:
            return self._read_octal(), None
        if escaped in DIGIT_CHARS:
            raise self.error(f"bad escape \\{escaped}")
        return self._read_char_escape(), None

    def _parse_class(self) -> Node:
        self.advance()
        negate = False
        if self.peek() == "^":
            self.advance()
            negate = True

        members = set()
        first = True
        while True:
            char = self.peek()
            if char is None:
                raise self.error("unterminated character set")
            if char == "]" and not first:
                self.advance()
                break
            first = False

            single, category = self._parse_class_item()
            if category is not None:
                if self.peek() == "-" and self.peek(1) not in (None, "]"):
                    raise self.error("bad character range")
                members.update(category)
                continue

            if self.peek() == "-" and self.peek(1) is not None and self.peek(1) != "]":
                self.advance()
                high, high_category = self._parse_class_item()
                if high_category is not None:
                    raise self.error("bad character range")
                if ord(high) < ord(single):
                    raise self.error(f"bad character range {single}-{high}")
                members.update(chr(code) for code in range(ord(single), ord(high) + 1))
            else:
                members.add(single)

        if negate:
            excluded = set(members)
            if self.ignore_case:
                excluded.update(c.swapcase() for c in members)
            chars = "".join(c for c in PRINTABLE_CHARS if c not in excluded)
            if not chars:
                chars = "".join(c for c in EXTENDED_CHARS if not self._excluded(c, excluded))
            if not chars:
                raise self.error("negated character set leaves no character to sample")
        else:
            chars = "".join(sorted(members))
        return CharClass(chars)

    def _excluded(self, char: str, excluded: set) -> bool:
        if char in excluded:
            return True
        if not self.ignore_case:
            return False
        # full case mappings can be longer than one character, e.g. "\u0130".lower()
        return any(c in excluded for variant in (char.lower(), char.upper(), char.casefold()) for c in variant)


@lru_cache(maxsize=512)
def _parse_cached(pattern: str, max_repeat: int) -> Node:
    return PatternParser(pattern, max_repeat=max_repeat).parse()


def parse_pattern(pattern: str, max_repeat: int = MAX_REPEAT) -> Node:
    if not isinstance(pattern, str):
        raise InvalidPattern(f"Pattern must be a string, got {type(pattern).__name__}")
    return _parse_cached(pattern, max_repeat)


class PatternStringGenerator:
    """
    Generates strings guaranteed to be matched by a regular expression
    """

    def __init__(self, rng: Optional[random.Random] = None, max_repeat: int = MAX_REPEAT):
        self.rng = rng or random.Random()
        self.max_repeat = max_repeat

    def generate(self, pattern: str) -> str:
        node = parse_pattern(pattern, self.max_repeat)
        for _ in range(MAX_PATTERN_ATTEMPTS):
            try:
                return node.sample(_SampleState(self.rng))
            except _UnsetGroup:
                # a back-reference to a group that didn't take part can't match, sample again
                continue
        raise InvalidPattern(f"No sample of '{pattern}' sets every referenced group")


def random_string_from_pattern(pattern: str, rng: Optional[random.Random] = None) -> str:
    return PatternStringGenerator(rng).generate(pattern)
