"""
Core module initialization.
Exports configuration, logging utilities and the error taxonomy.
"""

from ordertrack.core.config import get_settings, Settings, EnvironmentMode
from ordertrack.core.exceptions import (
    OrderTrackError,
    InvalidTransition,
    OrderNotFound,
    Unauthorized,
    StorageFailure,
    TopicAuthorizationDenied,
    DeliveryFailure,
    PaymentVerificationFailed,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "OrderTrackError",
    "InvalidTransition",
    "OrderNotFound",
    "Unauthorized",
    "StorageFailure",
    "TopicAuthorizationDenied",
    "DeliveryFailure",
    "PaymentVerificationFailed",
]
