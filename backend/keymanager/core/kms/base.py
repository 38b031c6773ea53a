"""Base KMS client interface.

The key manager talks to the key custody service only through this
interface, so the real AWS binding and the in-memory development KMS are
interchangeable (and tests never need the network).
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class KMSBackend(str, Enum):
    """Supported KMS backends."""
    LOCAL = "local"           # Development only - keys live in process memory
    AWS_KMS = "aws_kms"       # AWS Key Management Service


# KMS key usage for asymmetric signing keys
KEY_USAGE_SIGN_VERIFY = "SIGN_VERIFY"


@dataclass(frozen=True)
class CreatedKey:
    """Result of a KMS CreateKey call."""
    kms_key_id: str
    creation_date: datetime


@dataclass(frozen=True)
class KeyDescription:
    """Subset of KMS key metadata the key manager relies on."""
    kms_key_id: str
    key_spec: str
    enabled: bool
    description: str
    creation_date: datetime
    key_state: str = "Enabled"


class KMSClient(ABC):
    """Abstract base class for KMS clients.

    Every method is a coroutine so callers can cancel it or bound it with a
    timeout. Failures are raised as KMSError (or a subclass) with the SDK
    exception chained.
    """

    backend: KMSBackend

    @abstractmethod
    async def create_key(self, key_spec: str, key_usage: str, description: str) -> CreatedKey:
        """Create an asymmetric key.

        Args:
            key_spec: KMS key spec (e.g. ECC_NIST_P256)
            key_usage: KMS key usage, SIGN_VERIFY for signing keys
            description: Label stored with the key ("<tag><key id>")
        """
        pass

    @abstractmethod
    async def describe_key(self, kms_key_id: str) -> KeyDescription:
        """Fetch metadata for a key."""
        pass

    @abstractmethod
    async def get_public_key(self, kms_key_id: str) -> bytes:
        """Fetch the DER SubjectPublicKeyInfo of an asymmetric key."""
        pass

    @abstractmethod
    async def list_keys(self) -> list[str]:
        """List the ids of every key in the account/region, across all pages."""
        pass

    @abstractmethod
    async def schedule_key_deletion(self, kms_key_id: str) -> None:
        """Schedule a key for deletion after the configured waiting period."""
        pass

    @abstractmethod
    async def sign_digest(self, kms_key_id: str, digest: bytes, signing_algorithm: str) -> bytes:
        """Sign a precomputed digest (KMS MessageType=DIGEST)."""
        pass

    async def verify_health(self) -> dict[str, Any]:
        """Verify the KMS answers requests.

        Returns:
            Health status dict with healthy, backend, latency_ms and either
            key_count or error
        """
        start = time.monotonic()

        try:
            keys = await self.list_keys()
            latency = (time.monotonic() - start) * 1000
            return {
                "healthy": True,
                "backend": self.backend.value,
                "key_count": len(keys),
                "latency_ms": round(latency, 2),
            }
        except Exception as e:
            latency = (time.monotonic() - start) * 1000
            return {
                "healthy": False,
                "backend": self.backend.value,
                "error": str(e),
                "latency_ms": round(latency, 2),
            }

    async def close(self) -> None:
        """Close any open connections."""
        pass
