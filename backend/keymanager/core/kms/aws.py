"""AWS KMS client for production use.

Private key material stays inside AWS KMS (FIPS 140-2 validated HSMs);
only public keys and signatures leave the service.

boto3 clients are blocking, so every request runs in a worker thread.
Awaiting callers can therefore be cancelled (or time out) while a request
is still in flight; the request itself completes in the background.

Requirements:
- AWS credentials (static keys from settings, or the default boto3 chain:
  environment, shared config, instance profile / IAM role)
- kms:CreateKey, kms:DescribeKey, kms:GetPublicKey, kms:ListKeys,
  kms:ScheduleKeyDeletion and kms:Sign permissions
"""

import asyncio
from typing import TYPE_CHECKING, Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from keymanager.core.exceptions import ConfigurationError, KMSAuthenticationError, KMSError
from keymanager.core.kms.base import CreatedKey, KeyDescription, KMSBackend, KMSClient
from keymanager.core.logging import get_logger
from keymanager.core.metrics import metrics

if TYPE_CHECKING:
    from keymanager.config import Settings

logger = get_logger(__name__)

# Error codes meaning the caller is not allowed to use KMS at all
AUTH_ERROR_CODES = {
    "AccessDeniedException",
    "UnrecognizedClientException",
    "InvalidSignatureException",
    "ExpiredTokenException",
}


class AWSKMSClient(KMSClient):
    """KMS client backed by boto3."""

    backend = KMSBackend.AWS_KMS

    def __init__(self, settings: "Settings", client: Any = None):
        """Initialize the AWS KMS client.

        Args:
            settings: Validated key manager settings
            client: Pre-built boto3 KMS client (tests use a stubbed one)
        """
        self._deletion_window_days = settings.deletion_window_days
        self._client = client if client is not None else self._build_client(settings)

    @staticmethod
    def _build_client(settings: "Settings") -> Any:
        client_kwargs: dict[str, Any] = {
            "region_name": settings.region,
            # Retries/backoff are left to botocore's standard mode
            "config": Config(retries={"mode": "standard"}),
        }

        if settings.endpoint:
            client_kwargs["endpoint_url"] = settings.endpoint

        if settings.has_static_credentials:
            client_kwargs["aws_access_key_id"] = settings.access_key_id
            client_kwargs["aws_secret_access_key"] = settings.secret_access_key
            if settings.session_token:
                client_kwargs["aws_session_token"] = settings.session_token

        try:
            client = boto3.session.Session().client("kms", **client_kwargs)
        except (ValueError, BotoCoreError) as e:
            raise ConfigurationError(f"Cannot build AWS KMS client: {e}") from e

        logger.info(
            "AWS KMS client created",
            region=settings.region,
            endpoint=settings.endpoint,
            static_keys=settings.has_static_credentials,
        )
        return client

    async def _call(self, operation: str, fn: Any, **kwargs: Any) -> Any:
        with metrics.track_kms_request(operation):
            try:
                return await asyncio.to_thread(fn, **kwargs)
            except NoCredentialsError as e:
                raise KMSAuthenticationError(f"AWS credentials not found: {e}") from e
            except ClientError as e:
                error_code = e.response.get("Error", {}).get("Code", "Unknown")
                if error_code in AUTH_ERROR_CODES:
                    raise KMSAuthenticationError(
                        f"AWS KMS {operation} denied: {e}", code=error_code
                    ) from e
                raise KMSError(f"AWS KMS {operation} failed: {e}", code=error_code) from e
            except BotoCoreError as e:
                raise KMSError(f"AWS KMS {operation} failed: {e}") from e

    async def create_key(self, key_spec: str, key_usage: str, description: str) -> CreatedKey:
        response = await self._call(
            "create_key",
            self._client.create_key,
            Description=description,
            KeyUsage=key_usage,
            KeySpec=key_spec,
        )
        key_meta = response["KeyMetadata"]
        return CreatedKey(
            kms_key_id=key_meta["KeyId"],
            creation_date=key_meta["CreationDate"],
        )

    async def describe_key(self, kms_key_id: str) -> KeyDescription:
        response = await self._call(
            "describe_key", self._client.describe_key, KeyId=kms_key_id
        )
        key_meta = response["KeyMetadata"]
        return KeyDescription(
            kms_key_id=key_meta["KeyId"],
            # Older keys only report the deprecated CustomerMasterKeySpec
            key_spec=key_meta.get("KeySpec") or key_meta.get("CustomerMasterKeySpec", ""),
            enabled=key_meta.get("Enabled", False),
            description=key_meta.get("Description", ""),
            creation_date=key_meta["CreationDate"],
            key_state=key_meta.get("KeyState", "Enabled"),
        )

    async def get_public_key(self, kms_key_id: str) -> bytes:
        response = await self._call(
            "get_public_key", self._client.get_public_key, KeyId=kms_key_id
        )
        return response["PublicKey"]

    async def list_keys(self) -> list[str]:
        paginator = self._client.get_paginator("list_keys")

        def _collect() -> list[str]:
            return [
                key["KeyId"]
                for page in paginator.paginate()
                for key in page.get("Keys", [])
            ]

        return await self._call("list_keys", _collect)

    async def schedule_key_deletion(self, kms_key_id: str) -> None:
        await self._call(
            "schedule_key_deletion",
            self._client.schedule_key_deletion,
            KeyId=kms_key_id,
            PendingWindowInDays=self._deletion_window_days,
        )

    async def sign_digest(self, kms_key_id: str, digest: bytes, signing_algorithm: str) -> bytes:
        response = await self._call(
            "sign",
            self._client.sign,
            KeyId=kms_key_id,
            Message=digest,
            MessageType="DIGEST",
            SigningAlgorithm=signing_algorithm,
        )
        return response["Signature"]

    async def close(self) -> None:
        """Close the AWS client."""
        if self._client is not None:
            self._client.close()
            self._client = None
