"""Source data access for the CRM / call-platform gateway."""

from .client import (
    CALL,
    EMAIL,
    GatewayClient,
    InteractionRecord,
    RetryConfig,
    SourceDataProvider,
    UserProfile,
)

__all__ = [
    "CALL",
    "EMAIL",
    "GatewayClient",
    "InteractionRecord",
    "RetryConfig",
    "SourceDataProvider",
    "UserProfile",
]
