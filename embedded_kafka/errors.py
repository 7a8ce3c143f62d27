"""
Error types raised by the embedded Kafka harness.

Startup and topic administration failures propagate to the caller.
Shutdown failures are captured as ShutdownFailure values, logged, and
returned from EmbeddedKafka.shutdown() instead of being raised.
"""


class HarnessError(Exception):
    """Base class for all harness errors."""


class PreconditionTimeout(HarnessError):
    """A readiness condition did not hold within its polling window."""


class IllegalStateError(HarnessError):
    """An operation was invoked while the harness was in the wrong state."""


class KafkaNotFoundError(HarnessError):
    """The Kafka distribution (start scripts) could not be located."""


class ShutdownFailure(HarnessError):
    """Failure of a single shutdown step."""

    def __init__(self, step, cause):
        super().__init__(f"{step}: {cause!r}")
        self.step = step
        self.cause = cause
