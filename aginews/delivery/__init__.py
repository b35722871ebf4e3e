"""Newsletter delivery: subscriber batching, transports and send records."""

from aginews.delivery.engine import DeliveryEngine, DeliveryError, DeliveryReport
from aginews.delivery.transport import (
    EmailTransport,
    OutgoingEmail,
    ResendTransport,
    SMTPTransport,
    TransportError,
    build_transport,
)

__all__ = [
    "DeliveryEngine",
    "DeliveryError",
    "DeliveryReport",
    "EmailTransport",
    "OutgoingEmail",
    "ResendTransport",
    "SMTPTransport",
    "TransportError",
    "build_transport",
]
