"""Service broker client library.

Architecture:
- client.py: HTTP client, route composition and result classification
- exceptions.py: Error classification carried on BrokerResult.error

Usage:
    from app.core.broker import BrokerClient, BrokerVerb, ResultStatus

    client = BrokerClient(timeout=30)
    result = client.invoke(broker, instance, BrokerVerb.DEPROVISION)
"""
from .client import (
    BrokerClient,
    BrokerResult,
    BrokerVerb,
    ResultStatus,
    REQUEST_TIMEOUT,
    BROKER_API_VERSION,
)
from .exceptions import (
    BrokerError,
    BrokerUnreachable,
    BrokerTimeout,
    BrokerServerError,
    BrokerRejected,
)

__all__ = [
    # Client
    "BrokerClient",
    "BrokerResult",
    "BrokerVerb",
    "ResultStatus",
    "REQUEST_TIMEOUT",
    "BROKER_API_VERSION",

    # Exceptions
    "BrokerError",
    "BrokerUnreachable",
    "BrokerTimeout",
    "BrokerServerError",
    "BrokerRejected",
]
