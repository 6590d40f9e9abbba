"""
Error taxonomy and the best-effort boundary for non-critical work
"""
from typing import Any, Awaitable, Optional
import logging

logger = logging.getLogger(__name__)


class DiscoveryError(Exception):
    """Base class for service errors"""

    message: str = "Request failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class TransportFailure(DiscoveryError):
    """Network or provider error while talking to an upstream service"""

    message = "Upstream service unavailable"


class ValidationFailure(DiscoveryError):
    """Malformed request parameters, rejected before any network call"""

    message = "Invalid request"


class AuthorizationFailure(DiscoveryError):
    """Mutation attempted without an authenticated viewer"""

    message = "Sign in to continue"


async def best_effort(label: str, work: Awaitable[Any]) -> None:
    """
    Await non-critical work (tracking, notifications) and swallow its failure.

    Failures are logged as warnings and never reach the caller.
    """
    try:
        await work
    except Exception as e:
        logger.warning(f"{label} failed: {e}")
