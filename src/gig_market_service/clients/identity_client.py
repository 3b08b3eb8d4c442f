"""Async HTTP client for the Identity service."""

from __future__ import annotations

from typing import Any

import httpx

from gig_market_service.core.exceptions import ServiceError
from gig_market_service.logging import get_logger

logger = get_logger(__name__)


def _unavailable(message: str) -> ServiceError:
    return ServiceError("IDENTITY_SERVICE_UNAVAILABLE", message, 502, {})


class IdentityClient:
    """
    Forwards signed marketplace requests to the Identity service.

    The gig market keeps no key registry. The Identity service answers each
    verification with ``valid``, the signer's ``agent_id`` and the decoded
    ``payload``; anything else is treated as the service being unavailable.
    """

    def __init__(self, base_url: str, verify_jws_path: str, timeout_seconds: int) -> None:
        self._base_url = base_url
        self._verify_jws_path = verify_jws_path
        self._client = httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(timeout_seconds))

    async def verify_jws(self, token: str) -> dict[str, Any]:
        """
        Ask the Identity service who signed ``token``.

        Raises FORBIDDEN (403) when the signature does not verify, and
        IDENTITY_SERVICE_UNAVAILABLE (502) on transport errors, non-200
        answers, or a body that is not a JSON object.
        """
        try:
            response = await self._client.post(self._verify_jws_path, json={"token": token})
        except httpx.HTTPError as exc:
            logger.warning(
                "Identity verification request failed",
                extra={
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "base_url": self._base_url,
                },
            )
            raise _unavailable("Cannot connect to Identity service") from exc

        if response.status_code != 200:
            logger.warning(
                "Identity verification returned non-200",
                extra={"status_code": response.status_code, "base_url": self._base_url},
            )
            raise _unavailable("Identity service returned unexpected status")

        try:
            verdict = response.json()
        except ValueError as exc:
            raise _unavailable("Identity service returned a non-JSON body") from exc
        if not isinstance(verdict, dict):
            raise _unavailable("Identity service returned an unexpected response")

        if verdict.get("valid") is not True:
            raise ServiceError("FORBIDDEN", "JWS signature verification failed", 403, {})
        return verdict

    async def close(self) -> None:
        await self._client.aclose()
