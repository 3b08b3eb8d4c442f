"""Signed-request verification for marketplace operations."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from gig_market_service.core.exceptions import ServiceError

if TYPE_CHECKING:
    from gig_market_service.clients.identity_client import IdentityClient


class TokenValidator:
    """Verifies JWS tokens through the Identity service and checks the action."""

    def __init__(self, identity_client: IdentityClient) -> None:
        self._identity_client = identity_client

    def set_identity_client(self, identity_client: IdentityClient) -> None:
        self._identity_client = identity_client

    async def validate_jws_token(
        self,
        token: str,
        expected_action: str | tuple[str, ...],
    ) -> dict[str, Any]:
        """
        Verify a JWS token and validate its ``action`` field.

        Returns the verified payload with ``_signer_id`` added.

        Error precedence:
        1. INVALID_JWS - not a three-part compact JWS
        2. IDENTITY_SERVICE_UNAVAILABLE - Identity service unreachable
        3. FORBIDDEN - signature invalid
        4. INVALID_JWS - Identity answered without a signer or payload
        5. INVALID_PAYLOAD - missing or unexpected action
        """
        if not token:
            raise ServiceError("INVALID_JWS", "Token must be a non-empty string", 400, {})

        if len(token.split(".")) != 3:
            raise ServiceError(
                "INVALID_JWS",
                "Token must be in JWS compact serialization format (header.payload.signature)",
                400,
                {},
            )

        try:
            result = await self._identity_client.verify_jws(token)
        except ServiceError:
            raise
        except Exception as exc:
            raise ServiceError(
                "IDENTITY_SERVICE_UNAVAILABLE",
                "Cannot connect to Identity service",
                502,
                {},
            ) from exc

        if not isinstance(result, dict) or not isinstance(result.get("payload"), dict):
            raise ServiceError(
                "IDENTITY_SERVICE_UNAVAILABLE",
                "Identity service returned an unexpected response",
                502,
                {},
            )

        agent_id = result.get("agent_id")
        if not isinstance(agent_id, str) or len(agent_id) < 1:
            raise ServiceError("INVALID_JWS", "Token signer is missing", 400, {})
        payload = dict(cast("dict[str, Any]", result["payload"]))

        if "action" not in payload:
            raise ServiceError(
                "INVALID_PAYLOAD",
                "JWS payload must include an 'action' field",
                400,
                {},
            )

        allowed_actions = (
            {expected_action} if isinstance(expected_action, str) else set(expected_action)
        )
        action = payload["action"]
        if action not in allowed_actions:
            expected_actions_text = ", ".join(sorted(allowed_actions))
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"Expected action in [{expected_actions_text}], got '{action}'",
                400,
                {},
            )

        payload["_signer_id"] = agent_id
        return payload


def require_field(payload: dict[str, Any], field_name: str) -> Any:
    """Return a required payload field or raise INVALID_PAYLOAD."""
    if field_name not in payload:
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"Missing required field: {field_name}",
            400,
            {},
        )
    return payload[field_name]


def require_path_match(payload: dict[str, Any], field_name: str, path_value: str) -> None:
    """The id signed into the payload must match the id in the URL path."""
    if require_field(payload, field_name) != path_value:
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"{field_name} in payload does not match URL path",
            400,
            {},
        )
