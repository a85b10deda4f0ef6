class UsageError(Exception):
    """
    UsageError is the root of every error raised by the
    usage pipeline.
    """


class ConfigurationError(UsageError):
    """
    raised synchronously when the pipeline is set up with
    invalid parameters. Never retried.
    """


class InvalidTimeRangeError(ConfigurationError):
    pass


class WindowTooShortError(ConfigurationError):
    pass


class RangeTooShortError(ConfigurationError):
    pass


class BillingPeriodError(ConfigurationError):
    pass


class IteratorExhaustedError(UsageError):
    pass


class BackendError(UsageError):
    """
    BackendError wraps a list/get/stream failure from a
    storage backend. The underlying exception is kept as
    __cause__.
    """

    def __init__(self, backend: "str", message: "str") -> "None":
        super().__init__(f"{backend}: {message}")
        self.backend = backend


class DecodeError(UsageError):
    """
    raised on malformed JSON or an unexpected array structure.
    Distinct from the EOF sentinel, which is never raised.
    """


class ValidationError(UsageError):
    pass


class ReportError(UsageError):
    pass


class PipelineStoppedError(UsageError):
    pass
