"""Broker-specific exceptions for error classification.

These never escape ``BrokerClient.invoke``; they ride on ``BrokerResult.error``
so callers can see why a call was retryable or rejected.
"""


class BrokerError(Exception):
    """Base exception for all broker calls."""

    retryable = False

    def __init__(self, message: str, endpoint: str = ""):
        self.endpoint = endpoint
        super().__init__(message)


class BrokerUnreachable(BrokerError):
    """Connection to the broker could not be established."""

    retryable = True


class BrokerTimeout(BrokerError):
    """Broker did not answer within the request timeout."""

    retryable = True


class BrokerServerError(BrokerError):
    """Broker answered with a 5xx status.

    Attributes:
        status_code: HTTP status code
    """

    retryable = True

    def __init__(self, status_code: int, message: str, endpoint: str = ""):
        self.status_code = status_code
        super().__init__(f"[{status_code}] {message}", endpoint)


class BrokerRejected(BrokerError):
    """Broker answered with a 4xx status other than 410.

    Attributes:
        status_code: HTTP status code
        description: Broker-supplied error detail, passed through verbatim
    """

    def __init__(self, status_code: int, description: str, endpoint: str = ""):
        self.status_code = status_code
        self.description = description
        super().__init__(description, endpoint)
