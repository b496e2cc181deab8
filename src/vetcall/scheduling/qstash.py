"""
QStash REST client and request signature verifier.

Publishing goes through the v2 HTTP API with a blocking httpx client; the
async wrapper hands the request to a worker thread so the event loop never
waits on the network.
"""

import base64
import hashlib
from functools import partial
from typing import Any

import anyio
import httpx
import jwt

from vetcall.scheduling.config import QueueConfig
from vetcall.shared.exceptions import ConfigurationError, UpstreamError, VetcallError
from vetcall.shared.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "Upstash-Signature"


class QueuePublishError(UpstreamError):
    """The durable queue rejected or never received a publish."""


class SignatureVerificationError(VetcallError):
    """A queue callback carried a missing or invalid signature."""


def _safe_json(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {"raw": response.text[:500]}
    return data if isinstance(data, dict) else {"data": data}


class QStashClient:
    """Minimal QStash publisher."""

    def __init__(self, config: QueueConfig, http_client: httpx.Client | None = None) -> None:
        """Initialize the client.

        Args:
            config: Queue configuration.
            http_client: Optional client, injected in tests.
        """
        self._config = config
        self._client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self._config.request_timeout_seconds)
        return self._client

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None

    def publish_json_sync(
        self,
        url: str,
        body: dict[str, Any],
        delay_seconds: int = 0,
        retries: int = 0,
    ) -> str:
        """Publish a JSON message for delivery to ``url``.

        Returns:
            The queue's message id.

        Raises:
            ConfigurationError: no token configured.
            QueuePublishError: transport failure or non-2xx response.
        """
        if not self._config.token:
            raise ConfigurationError("QSTASH_TOKEN is not configured")

        endpoint = f"{self._config.url.rstrip('/')}/v2/publish/{url}"
        headers = {
            "Authorization": f"Bearer {self._config.token}",
            "Content-Type": "application/json",
            "Upstash-Delay": f"{max(int(delay_seconds), 0)}s",
            "Upstash-Retries": str(retries),
        }

        try:
            response = self._get_client().post(endpoint, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise QueuePublishError(f"Queue publish failed: {e}") from e

        if response.status_code >= 400:
            raise QueuePublishError(
                f"Queue publish rejected with HTTP {response.status_code}",
                status_code=response.status_code,
                provider_response=_safe_json(response),
            )

        data = _safe_json(response)
        message_id = data.get("messageId")
        if not message_id:
            raise QueuePublishError(
                "Queue publish response missing messageId",
                status_code=response.status_code,
                provider_response=data,
            )

        logger.info(
            "Queue message published",
            extra={"destination": url, "message_id": message_id, "delay_seconds": delay_seconds},
        )
        return str(message_id)

    async def publish_json(
        self,
        url: str,
        body: dict[str, Any],
        delay_seconds: int = 0,
        retries: int = 0,
    ) -> str:
        return await anyio.to_thread.run_sync(
            partial(self.publish_json_sync, url, body, delay_seconds=delay_seconds, retries=retries)
        )


def body_hash(body: bytes | str) -> str:
    """base64url SHA-256 of the body, unpadded."""
    raw = body.encode("utf-8") if isinstance(body, str) else body
    digest = hashlib.sha256(raw).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


class QStashSignatureVerifier:
    """Verifies the ``Upstash-Signature`` JWT on queue callbacks.

    The token is tried against the current signing key, then the next one,
    so key rotation never rejects in-flight messages.
    """

    ISSUER = "Upstash"

    def __init__(self, current_signing_key: str, next_signing_key: str = "", leeway_seconds: int = 0) -> None:
        self._keys = [key for key in (current_signing_key, next_signing_key) if key]
        self._leeway = leeway_seconds

    @classmethod
    def from_config(cls, config: QueueConfig) -> "QStashSignatureVerifier":
        return cls(config.current_signing_key, config.next_signing_key)

    def verify(self, signature: str | None, body: bytes | str, url: str | None = None) -> bool:
        """Verify a callback signature.

        Raises:
            ConfigurationError: no signing key configured.
            SignatureVerificationError: missing, invalid or mismatched token.
        """
        if not self._keys:
            raise ConfigurationError("QStash signing keys are not configured")
        if not signature:
            raise SignatureVerificationError("Missing queue signature")

        last_error: Exception | None = None
        for key in self._keys:
            try:
                claims = jwt.decode(
                    signature,
                    key,
                    algorithms=["HS256"],
                    issuer=self.ISSUER,
                    leeway=self._leeway,
                    options={"require": ["iss", "sub", "exp", "body"]},
                )
            except jwt.InvalidTokenError as e:
                last_error = e
                continue
            self._check_claims(claims, body, url)
            return True

        raise SignatureVerificationError("Invalid queue signature") from last_error

    @staticmethod
    def _check_claims(claims: dict[str, Any], body: bytes | str, url: str | None) -> None:
        if url is not None and claims.get("sub") != url:
            raise SignatureVerificationError("Queue signature subject does not match URL")
        if str(claims.get("body", "")).rstrip("=") != body_hash(body):
            raise SignatureVerificationError("Queue signature body hash mismatch")
