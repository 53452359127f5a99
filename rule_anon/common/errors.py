class AnonError(Exception):
    """Base class for every error raised by rule_anon"""


class IOFailure(AnonError):
    """A pool source, dictionary or bundled resource can't be read"""


class ConfigurationError(AnonError):
    pass


class NotLoaded(ConfigurationError):
    pass


class UnknownFunction(ConfigurationError):
    pass


class ParameterMismatch(ConfigurationError):
    pass


class GenerationError(AnonError, ValueError):
    """Bad rule parameters detected while generating a value"""


class InvalidPattern(GenerationError):
    pass


class InvalidFormat(GenerationError):
    pass


class InvalidRange(GenerationError):
    pass


class StoreError(AnonError):
    pass


class StoreUnavailable(StoreError):
    pass


class QueryFailed(StoreError):
    pass
