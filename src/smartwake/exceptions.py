"""Custom exceptions for smartwake.

Every exception here is absorbed somewhere on the device: none of them is
allowed to stop the arming or algorithm timers.  Each class picks the level
it is logged at when raised.
"""

import logging

from smartwake import config

logger = config.get_logger()


class LoggedException(Exception):
    """Base class that automatically logs messages."""

    log_level = logging.ERROR

    def __init__(self, message: str) -> None:
        """Initialize a new instance of the LoggedException class.

        Args:
            message: The message to display.
        """
        logger.log(self.log_level, message)
        super().__init__(message)


class SensorUnavailableError(LoggedException):
    """A sensor could not be started (permission denied or hardware absent)."""

    log_level = logging.WARNING


class TransportUnreachableError(LoggedException):
    """The peer device is not reachable for an ephemeral message."""

    log_level = logging.WARNING


class EnvelopeDecodeError(LoggedException):
    """A sync payload was malformed or used an unsupported schema version."""

    log_level = logging.WARNING


class UnsupportedMessageError(EnvelopeDecodeError):
    """The envelope carried a message type this build does not know."""

    log_level = logging.DEBUG


class InvalidScheduleError(LoggedException, ValueError):
    """An alarm schedule or setup value is out of range."""

    pass
