import hashlib
import json
import random
import re
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from rule_anon.common.constants import FIRST_NAMES_RESOURCE, LAST_NAMES_RESOURCE
from rule_anon.common.errors import ParameterMismatch, UnknownFunction
from rule_anon.functions.pattern import PatternStringGenerator
from rule_anon.functions.pools import ValuePoolCache
from rule_anon.functions.temporal import random_date, random_datetime
from rule_anon.functions.words import load_dictionary, open_resource, random_words

INTEGER_PATTERN = re.compile(r"^[+-]?\d+$")


class ParameterType(Enum):
    STRING = "string"
    INTEGER = "integer"
    STRUCTURED = "structured"


@dataclass(frozen=True)
class Parameter:
    name: str
    type: ParameterType = ParameterType.STRING
    required: bool = True
    default: Any = None
    argument: Optional[str] = None  # keyword argument name of the python callable, defaults to name

    @property
    def argument_name(self) -> str:
        return self.argument or self.name

    def coerce(self, function_name: str, value: Any) -> Any:
        if self.type == ParameterType.STRING and isinstance(value, str):
            return value

        if self.type == ParameterType.INTEGER and not isinstance(value, bool):
            if isinstance(value, int):
                return value
            if isinstance(value, str) and INTEGER_PATTERN.match(value.strip()):
                return int(value)

        if self.type == ParameterType.STRUCTURED and isinstance(value, (list, tuple, dict)):
            return value

        raise ParameterMismatch(
            f"Parameter '{self.name}' of function '{function_name}' expects {self.type.value}, "
            f"got {type(value).__name__}: {value!r}"
        )


@dataclass(frozen=True)
class FunctionSignature:
    name: str
    function: Callable[..., Any]
    parameters: Tuple[Parameter, ...] = ()
    description: str = ""

    def bind(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Check named parameters against the declared contract
        :param params: rule parameters, names are case-sensitive
        :return: keyword arguments for the python callable
        """
        declared = {parameter.name: parameter for parameter in self.parameters}

        unexpected = sorted(set(params) - set(declared))
        if unexpected:
            raise ParameterMismatch(
                f"Function '{self.name}' got unexpected parameter(s): {', '.join(unexpected)}"
            )

        missing = [p.name for p in self.parameters if p.required and p.name not in params]
        if missing:
            raise ParameterMismatch(
                f"Function '{self.name}' is missing required parameter(s): {', '.join(missing)}"
            )

        kwargs = {}
        for parameter in self.parameters:
            if parameter.name in params:
                kwargs[parameter.argument_name] = parameter.coerce(self.name, params[parameter.name])
            elif parameter.default is not None:
                kwargs[parameter.argument_name] = parameter.default
        return kwargs

    def describe(self) -> str:
        parts = []
        for parameter in self.parameters:
            part = f"{parameter.name}: {parameter.type.value}"
            if not parameter.required:
                part += f" = {parameter.default!r}"
            parts.append(part)
        return ", ".join(parts)


class FunctionRegistry:
    """
    Name based dispatch of generator functions.

    Every function declares its parameters explicitly, ``invoke`` checks the
    named parameters of a rule against that declaration before calling it.
    """

    def __init__(self):
        self._functions: Dict[str, FunctionSignature] = {}

    def register(
            self,
            name: str,
            function: Callable[..., Any],
            parameters: Iterable[Parameter] = (),
            description: str = "",
    ) -> FunctionSignature:
        if name in self._functions:
            raise ValueError(f"Function '{name}' is already registered")

        signature = FunctionSignature(
            name=name,
            function=function,
            parameters=tuple(parameters),
            description=description,
        )
        self._functions[name] = signature
        return signature

    def function(self, name: str, *parameters: Parameter, description: str = ""):
        def decorator(func):
            self.register(name, func, parameters, description=description or (func.__doc__ or "").strip())
            return func

        return decorator

    def get(self, name: str) -> FunctionSignature:
        signature = self._functions.get(name)
        if signature is None:
            raise UnknownFunction(f"Unknown function: {name}")
        return signature

    def validate(self, name: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return self.get(name).bind(params or {})

    def invoke(self, name: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        signature = self.get(name)
        kwargs = signature.bind(params or {})
        return signature.function(**kwargs)

    def __contains__(self, name: str) -> bool:
        return name in self._functions

    def __len__(self) -> int:
        return len(self._functions)

    @property
    def names(self) -> List[str]:
        return sorted(self._functions)

    @property
    def signatures(self) -> List[FunctionSignature]:
        return [self._functions[name] for name in self.names]


def _list_pool_name(values: Sequence[Any]) -> str:
    digest = hashlib.sha1(json.dumps(values, sort_keys=True, default=str).encode("utf-8")).hexdigest()
    return f"list:{digest}"


def build_default_registry(
        pool_cache: Optional[ValuePoolCache] = None,
        rng: Optional[random.Random] = None,
        dictionary: Optional[Sequence[str]] = None,
) -> FunctionRegistry:
    """
    Registry with the built-in generator functions
    :param pool_cache: cache for pooled functions, a new one is created when omitted
    :param rng: random source shared by every generator
    :param dictionary: words for randomWords, the bundled dictionary is loaded when omitted
    :return: registry ready for rules
    """
    rng = rng or random.Random()
    pool_cache = pool_cache or ValuePoolCache(rng)
    words = tuple(dictionary) if dictionary is not None else load_dictionary()
    pattern_generator = PatternStringGenerator(rng)

    registry = FunctionRegistry()
    text = partial(Parameter, type=ParameterType.STRING)
    integer = partial(Parameter, type=ParameterType.INTEGER)

    registry.register(
        "randomStringFromPattern",
        pattern_generator.generate,
        [text("pattern")],
        description="String matched by the regular expression",
    )
    registry.register(
        "randomDate",
        partial(random_date, rng=rng),
        [text("start"), text("end"), text("format", argument="date_format")],
        description="Date in [start, end) formatted with strftime format",
    )
    registry.register(
        "randomDateTime",
        partial(random_datetime, rng=rng),
        [text("start"), text("end"), text("format", argument="date_format")],
        description="Date-time in [start, end) formatted with strftime format",
    )
    registry.register(
        "randomWords",
        partial(random_words, words, rng=rng),
        [integer("count"), integer("maxLength", argument="max_length")],
        description="Dictionary words, at most maxLength characters",
    )
    registry.register(
        "randomString",
        partial(random_words, words, rng=rng),
        [integer("num", argument="count"), integer("length", argument="max_length")],
        description="Same as randomWords with num/length parameter names",
    )

    def random_string_from_file(file: str) -> str:
        return pool_cache.next(file, source=file)

    def random_string_from_pool(name: str) -> str:
        return pool_cache.next(name)

    def random_string_from_list(values) -> str:
        if isinstance(values, dict):
            values = list(values.values())
        return pool_cache.next(_list_pool_name(values), source=values)

    def resource_pool(resource_name: str) -> Callable[[], str]:
        return lambda: pool_cache.next(
            f"resource:{resource_name}",
            source=partial(open_resource, resource_name),
        )

    registry.register(
        "randomStringFromFile",
        random_string_from_file,
        [text("file")],
        description="Line of a newline-delimited file, all lines used before any repeats",
    )
    registry.register(
        "randomStringFromPool",
        random_string_from_pool,
        [text("name")],
        description="Value of a pool declared in configuration, all values used before any repeats",
    )
    registry.register(
        "randomStringFromList",
        random_string_from_list,
        [Parameter("values", type=ParameterType.STRUCTURED)],
        description="Item of the given list, all items used before any repeats",
    )
    registry.register(
        "randomFirstName",
        resource_pool(FIRST_NAMES_RESOURCE),
        description="First name from the bundled corpus",
    )
    registry.register(
        "randomLastName",
        resource_pool(LAST_NAMES_RESOURCE),
        description="Last name from the bundled corpus",
    )

    return registry
