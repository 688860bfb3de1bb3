"""
Shared business codes used across layers (Domain/Core/API).

This package exposes BusinessCode at `shared.codes`; realtime close codes
live next to it so the WebSocket route and its tests agree on them.
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    """Unified business status codes (single source of truth)."""

    # Success
    SUCCESS = 0

    # Parameter errors (1xxxx)
    PARAM_ERROR = 10000
    PARAM_MISSING = 10001
    PARAM_VALIDATION_ERROR = 10003

    # Business errors (2xxxx)
    BUSINESS_ERROR = 20000
    TOKEN_INVALID = 20004
    TOKEN_EXPIRED = 20005
    NOT_FOUND = 20006

    # Permission errors (3xxxx)
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002

    # System errors (4xxxx)
    SYSTEM_ERROR = 40000
    SERVICE_UNAVAILABLE = 40003


class WSCloseCode(IntEnum):
    """WebSocket close codes sent by the collaboration endpoint."""

    GOING_AWAY = 1001
    # Generic authentication failure; clients may retry.
    POLICY_VIOLATION = 1008
    TRY_AGAIN_LATER = 1013
    # Credential expired or signature invalid; clients must not retry with the same token.
    TOKEN_EXPIRED = 4001


__all__ = ["BusinessCode", "WSCloseCode"]
