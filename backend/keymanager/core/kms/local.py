"""Local KMS client for development.

WARNING: This client is for DEVELOPMENT AND TESTS ONLY.
In production, use AWS KMS.

The local client:
- Generates real RSA/EC key pairs with ``cryptography`` and keeps the
  private keys in process memory (lost on restart)
- Exports public keys as DER SubjectPublicKeyInfo, as AWS KMS does
- Signs precomputed digests with the same algorithm names as AWS KMS
- Generates and signs in a worker thread, so callers can time out or cancel
- Hands out strictly increasing creation dates
- Records every ScheduleKeyDeletion request in ``deletion_requests``
"""

import asyncio
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed

from keymanager.core.exceptions import KMSError
from keymanager.core.kms.base import CreatedKey, KeyDescription, KMSBackend, KMSClient
from keymanager.core.logging import get_logger

logger = get_logger(__name__)

_RSA_SIZES = {
    "RSA_2048": 2048,
    "RSA_3072": 3072,
    "RSA_4096": 4096,
}

_EC_CURVES = {
    "ECC_NIST_P256": ec.SECP256R1,
    "ECC_NIST_P384": ec.SECP384R1,
    "ECC_NIST_P521": ec.SECP521R1,
    "ECC_SECG_P256K1": ec.SECP256K1,
}

_HASHES = {
    "SHA_256": hashes.SHA256,
    "SHA_384": hashes.SHA384,
    "SHA_512": hashes.SHA512,
}


@dataclass
class _LocalKey:
    kms_key_id: str
    key_spec: str
    key_usage: str
    description: str
    creation_date: datetime
    private_key: Any
    enabled: bool = True
    key_state: str = "Enabled"


class LocalKMSClient(KMSClient):
    """In-memory KMS for development and tests.

    NOT suitable for production - private keys are not HSM-protected.
    """

    backend = KMSBackend.LOCAL

    def __init__(
        self,
        settings: Any = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._lock = threading.Lock()
        self._keys: dict[str, _LocalKey] = {}
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._last_creation: Optional[datetime] = None
        self.deletion_requests: list[str] = []

        if settings is not None:
            logger.warning(
                "Local KMS client in use. Keys are kept in memory and lost on restart. "
                "Use aws_kms in production."
            )

    def _next_creation_date(self) -> datetime:
        now = self._clock()
        if self._last_creation is not None and now <= self._last_creation:
            now = self._last_creation + timedelta(microseconds=1)
        self._last_creation = now
        return now

    def _get(self, kms_key_id: str) -> _LocalKey:
        key = self._keys.get(kms_key_id)
        if key is None:
            raise KMSError(f"Key '{kms_key_id}' does not exist", code="NotFoundException")
        return key

    @staticmethod
    def _generate_private_key(key_spec: str) -> Any:
        if key_spec in _RSA_SIZES:
            return rsa.generate_private_key(public_exponent=65537, key_size=_RSA_SIZES[key_spec])
        if key_spec in _EC_CURVES:
            return ec.generate_private_key(_EC_CURVES[key_spec]())
        raise KMSError(f"Key spec {key_spec} is not valid for asymmetric keys", code="ValidationException")

    async def create_key(self, key_spec: str, key_usage: str, description: str) -> CreatedKey:
        private_key = await asyncio.to_thread(self._generate_private_key, key_spec)

        with self._lock:
            key = _LocalKey(
                kms_key_id=str(uuid.uuid4()),
                key_spec=key_spec,
                key_usage=key_usage,
                description=description,
                creation_date=self._next_creation_date(),
                private_key=private_key,
            )
            self._keys[key.kms_key_id] = key

        return CreatedKey(kms_key_id=key.kms_key_id, creation_date=key.creation_date)

    async def describe_key(self, kms_key_id: str) -> KeyDescription:
        with self._lock:
            key = self._get(kms_key_id)
            return KeyDescription(
                kms_key_id=key.kms_key_id,
                key_spec=key.key_spec,
                enabled=key.enabled,
                description=key.description,
                creation_date=key.creation_date,
                key_state=key.key_state,
            )

    async def get_public_key(self, kms_key_id: str) -> bytes:
        with self._lock:
            key = self._get(kms_key_id)
        return key.private_key.public_key().public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    async def list_keys(self) -> list[str]:
        with self._lock:
            return list(self._keys)

    async def schedule_key_deletion(self, kms_key_id: str) -> None:
        with self._lock:
            key = self._get(kms_key_id)
            if key.key_state == "PendingDeletion":
                raise KMSError(
                    f"Key '{kms_key_id}' is pending deletion",
                    code="KMSInvalidStateException",
                )
            key.enabled = False
            key.key_state = "PendingDeletion"
            self.deletion_requests.append(kms_key_id)

    async def sign_digest(self, kms_key_id: str, digest: bytes, signing_algorithm: str) -> bytes:
        with self._lock:
            key = self._get(kms_key_id)
            if not key.enabled:
                raise KMSError(
                    f"Key '{kms_key_id}' is {key.key_state}",
                    code="KMSInvalidStateException",
                )

        try:
            return await asyncio.to_thread(self._sign, key, digest, signing_algorithm)
        except (ValueError, TypeError) as e:
            raise KMSError(f"Local KMS sign failed: {e}", code="ValidationException") from e

    @staticmethod
    def _sign(key: _LocalKey, digest: bytes, signing_algorithm: str) -> bytes:
        scheme, _, hash_name = signing_algorithm.rpartition("_SHA_")
        hash_cls = _HASHES.get(f"SHA_{hash_name}")
        if hash_cls is None:
            raise ValueError(f"unknown signing algorithm {signing_algorithm}")
        algorithm = Prehashed(hash_cls())

        if isinstance(key.private_key, rsa.RSAPrivateKey):
            if scheme == "RSASSA_PSS":
                pad = padding.PSS(mgf=padding.MGF1(hash_cls()), salt_length=hash_cls.digest_size)
            elif scheme == "RSASSA_PKCS1_V1_5":
                pad = padding.PKCS1v15()
            else:
                raise ValueError(f"{signing_algorithm} is not valid for RSA keys")
            return key.private_key.sign(digest, pad, algorithm)

        if scheme != "ECDSA":
            raise ValueError(f"{signing_algorithm} is not valid for EC keys")
        return key.private_key.sign(digest, ec.ECDSA(algorithm))

    def disable_key(self, kms_key_id: str) -> None:
        """Disable a key, like KMS DisableKey."""
        with self._lock:
            key = self._get(kms_key_id)
            key.enabled = False
            key.key_state = "Disabled"
