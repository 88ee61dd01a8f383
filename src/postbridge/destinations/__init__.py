"""Publishing destinations and their storage."""

from postbridge.destinations.models import (
    AuthType,
    Destination,
    DestinationConfig,
    DestinationStats,
    DestinationType,
    ResponseMapping,
    validate_destination,
)

__all__ = [
    "AuthType",
    "Destination",
    "DestinationConfig",
    "DestinationStats",
    "DestinationType",
    "ResponseMapping",
    "validate_destination",
]
