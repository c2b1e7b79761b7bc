from abc import ABC


class BaseCustomException(Exception, ABC):
    """
    Base class for all custom exceptions.
    """

    def __init__(self, message: str | None = None):
        self.message = message or self.get_default_message()
        super().__init__(self.message)

    def get_default_message(self) -> str:
        """
        Return default error message.

        Returns
        -------
        str
            Default error message
        """
        return "error.unknown"

    def get_status_code(self) -> int:
        """
        Return HTTP status code for exception.

        Returns
        -------
        int
            HTTP status code
        """
        return 500


class NotFoundException(BaseCustomException):
    """Not found exception (404)."""

    def get_status_code(self) -> int:
        return 404


class ConfigurationException(BaseCustomException):
    """Missing or invalid configuration."""

    def get_default_message(self) -> str:
        return "error.config.invalid"


class StreamTransportException(BaseCustomException):
    """Stream or socket level failure."""

    def get_default_message(self) -> str:
        return "error.stream.transport"

    def get_status_code(self) -> int:
        return 502


class RPCException(BaseCustomException):
    """RPC error exception."""

    def get_default_message(self) -> str:
        return "error.rpc.failed"

    def get_status_code(self) -> int:
        return 502


class RecorderWriteException(BaseCustomException):
    """Observation log could not be written."""

    def get_default_message(self) -> str:
        return "error.recorder.write_failed"


class NoBenchmarkDataException(NotFoundException):
    """Observation log is empty or absent."""

    def get_default_message(self) -> str:
        return "error.benchmark.no_data"
