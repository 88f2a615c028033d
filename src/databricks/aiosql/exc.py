import json
import logging
from enum import Enum

logger = logging.getLogger(__name__)


### PEP-249 style base classes ###
class Error(Exception):
    """Base class for all errors raised by the driver.
    `message`: An optional user-friendly error message. It should be short, actionable and stable
    `context`: Optional extra context about the error. MUST be JSON serializable
    """

    def __init__(self, message=None, context=None, *args, **kwargs):
        super().__init__(message, *args, **kwargs)
        self.message = message
        self.context = context or {}

    def __str__(self):
        return self.message

    def message_with_context(self):
        return self.message + ": " + json.dumps(self.context, default=str)


class InterfaceError(Error):
    pass


class DatabaseError(Error):
    pass


class OperationalError(DatabaseError):
    pass


class ProgrammingError(DatabaseError):
    pass


class NotSupportedError(DatabaseError):
    pass


### Custom error classes ###
class InvalidServerResponseError(OperationalError):
    """Thrown if the server response lacks a field the driver requires"""

    pass


class StatusError(DatabaseError):
    """Thrown if a response carries an error or invalid-handle status.
    Its context will have the following keys:
    "error-code": Server error code, or -1 if the server did not provide one
    "sql-state": SQLSTATE reported by the server (if available)
    "info-messages": The server-side stack trace lines (if available)
    """

    def __init__(self, status):
        self.status = status
        self.code = status.error_code if status.error_code is not None else -1
        self.sql_state = status.sql_state
        self.info_messages = list(status.info_messages or [])
        super().__init__(
            status.error_message or "Request failed with status {}".format(
                status.status_code.name
            ),
            {
                "error-code": self.code,
                "sql-state": self.sql_state,
                "info-messages": self.info_messages,
            },
        )


class OperationStateErrorCode(Enum):
    CANCELED = "CANCELED"
    CLOSED = "CLOSED"
    ERROR = "ERROR"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"


_OPERATION_STATE_MESSAGES = {
    OperationStateErrorCode.CANCELED: "The operation was canceled by a client",
    OperationStateErrorCode.CLOSED: "The operation was closed by a client",
    OperationStateErrorCode.ERROR: "The operation failed due to an error",
    OperationStateErrorCode.TIMEOUT: "The operation is in a timed out state",
    OperationStateErrorCode.UNKNOWN: "The operation is in an unrecognized state",
}


class OperationStateError(DatabaseError):
    """Thrown if an operation cannot be used in its current state, either because
    the server reported a terminal state other than FINISHED, or because it was
    cancelled or closed on the client.
    Its context will have the following keys:
    "error-code": One of OperationStateErrorCode names
    "operation-state": The state reported by the server (if available)
    "diagnostic-info": The full server stack trace (if available)
    """

    def __init__(self, error_code: OperationStateErrorCode, response=None):
        self.error_code = error_code
        self.response = response

        message = _OPERATION_STATE_MESSAGES[error_code]
        if error_code == OperationStateErrorCode.ERROR and response is not None:
            message = response.display_message or response.error_message or message

        context = {"error-code": error_code.name}
        if response is not None:
            if response.operation_state is not None:
                context["operation-state"] = response.operation_state.name
            context["diagnostic-info"] = response.diagnostic_info
        super().__init__(message, context)


class UnsupportedResultFormatError(NotSupportedError):
    """Thrown if the result set metadata reports a format the driver cannot decode"""

    def __init__(self, result_format):
        self.result_format = result_format
        name = getattr(result_format, "name", result_format)
        super().__init__(
            "Unsupported result format: {}".format(name), {"result-format": str(name)}
        )


class CloudFetchError(OperationalError):
    """Base class for failures while downloading CloudFetch result files"""

    pass


class CloudFetchLinkExpiredError(CloudFetchError):
    """Thrown if a CloudFetch link expired before it could be downloaded.
    Its context will have the following keys:
    "expiry-time": Link expiry as epoch milliseconds
    "start-row-offset": First row covered by the file
    """

    pass


class CloudFetchDownloadError(CloudFetchError):
    """Thrown if a CloudFetch file download returned a non-success HTTP status"""

    def __init__(self, status_code, reason_phrase="", context=None):
        self.status_code = status_code
        super().__init__(
            "CloudFetch HTTP error {} {}".format(status_code, reason_phrase).strip(),
            context,
        )


class RequestError(OperationalError):
    """Thrown if there was a error during request to the server.
    Its context will have the following keys:
    "method": The HTTP method of the failed request
    "path": The API path of the failed request
    "http-code": HTTP response code (if available)
    "error-message": Error message returned by the server (if available)
    "original-exception": The Python level original exception (if available)
    "attempt": current retry number / maximum number of retries
    "elapsed-seconds": time that has elapsed since first attempting the request
    """

    pass


class RetryErrorCode(Enum):
    ATTEMPTS_EXCEEDED = "ATTEMPTS_EXCEEDED"
    TIMEOUT_EXCEEDED = "TIMEOUT_EXCEEDED"


class RetryError(RequestError):
    """Thrown if a retryable request keeps failing after the configured number of
    attempts, or after the configured total retry duration
    """

    def __init__(self, error_code: RetryErrorCode, message=None, context=None):
        self.error_code = error_code
        if message is None:
            message = (
                "Max retry attempts exceeded"
                if error_code == RetryErrorCode.ATTEMPTS_EXCEEDED
                else "Max retry duration exceeded"
            )
        super().__init__(message, context)
