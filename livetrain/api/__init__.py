"""
API integration for the LiveTrain package.

This module handles communication with the vehicle API, including transport
fallback, retries, error classification and response normalisation.
"""

from .api_manager import (
    APIException,
    APIManager,
    AuthenticationException,
    NetworkException,
    RateLimitException,
    TransportError,
)
from .response_transformer import ParseError, ResponseTransformer

__all__ = [
    "APIException",
    "APIManager",
    "AuthenticationException",
    "NetworkException",
    "ParseError",
    "RateLimitException",
    "ResponseTransformer",
    "TransportError",
]
