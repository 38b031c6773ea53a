"""Key lifecycle orchestration.

Generate/rotate, sign and lookup on top of the KMS client and the key
entry store.

Rotation rule: a generated key becomes current only if its KMS creation
date is strictly newer than the current entry's. Only the entry actually
replaced is scheduled for deletion; a generate that loses the race leaves
its own new key orphaned in the KMS (recorded, and removable with
``prune_orphaned_keys``) and never deletes a key another caller installed.
"""

import asyncio
import threading
from typing import Any, Awaitable, Mapping, Optional, TypeVar, Union

from keymanager.config import Settings, load_settings
from keymanager.core.exceptions import (
    ConfigurationError,
    KeyManagerError,
    KeyNotFoundError,
    KMSError,
    KMSTimeoutError,
    ReconciliationError,
    UnsupportedKeyTypeError,
)
from keymanager.core.key_store import KeyEntry, KeyEntryStore, PublicKey
from keymanager.core.key_types import (
    KeyType,
    SigningOptions,
    digest_size,
    key_spec_from_key_type,
    resolve_hash_algorithm,
    signing_algorithm,
)
from keymanager.core.kms.base import KEY_USAGE_SIGN_VERIFY, KMSClient
from keymanager.core.kms.factory import create_kms_client
from keymanager.core.logging import get_logger, key_context
from keymanager.core.metrics import metrics
from keymanager.core.reconciler import KeyReconciler, ReconciliationReport, key_label

logger = get_logger(__name__)

T = TypeVar("T")

# KMS error codes meaning a key is already gone or going
_ALREADY_DELETED_CODES = {"NotFoundException", "KMSInvalidStateException"}


def _require_key_id(key_id: str) -> None:
    if not key_id:
        raise ValueError("key_id is required")


def _coerce_key_type(key_type: Union[KeyType, str]) -> KeyType:
    try:
        return KeyType(key_type)
    except ValueError:
        raise UnsupportedKeyTypeError(f"Unknown and unsupported key type: {key_type}")


class KeyManager:
    """Manages KMS-backed signing keys for a calling identity system.

    Usage:
        manager = KeyManager()
        await manager.configure({"region": "us-east-1"})

        public_key = await manager.generate_key("svid-1", KeyType.EC_P256)
        signature = await manager.sign_data("svid-1", hashlib.sha256(data).digest())
    """

    def __init__(self, kms: Optional[KMSClient] = None):
        """Initialize an unconfigured key manager.

        Args:
            kms: KMS client to use instead of the one built from settings
        """
        self._injected_kms = kms
        self._kms: Optional[KMSClient] = None
        self._settings: Optional[Settings] = None
        self._store = KeyEntryStore()
        self._orphan_lock = threading.Lock()
        self._orphaned: set[str] = set()
        self.last_reconciliation: Optional[ReconciliationReport] = None

    @property
    def store(self) -> KeyEntryStore:
        return self._store

    @property
    def kms(self) -> Optional[KMSClient]:
        return self._kms

    @property
    def configured(self) -> bool:
        return self._kms is not None

    @property
    def orphaned_keys(self) -> set[str]:
        """KMS key ids known to be unreferenced and not yet deleted."""
        with self._orphan_lock:
            return set(self._orphaned)

    # ==================== Configuration ====================

    async def configure(
        self,
        config: Union[Settings, Mapping[str, Any], None] = None,
        timeout: Optional[float] = None,
    ) -> ReconciliationReport:
        """Validate configuration, connect to the KMS and reconcile existing keys.

        Reconciliation builds a fresh store that replaces the current one
        only once it completes.

        Args:
            config: Settings, or a mapping of setting names to values
            timeout: Bound on the whole reconciliation pass (default: none)

        Raises:
            ConfigurationError: If the configuration is invalid
            KMSError: If the KMS keys cannot be listed
            ReconciliationError: If some keys failed and
                fail_on_partial_reconciliation is set
        """
        settings = load_settings(config)
        kms = self._injected_kms or create_kms_client(settings)

        store = KeyEntryStore()
        reconciler = KeyReconciler(kms, store, settings.key_tag)

        with key_context(None, "configure"), metrics.track_operation("configure"):
            try:
                report = await self._bounded(reconciler.reconcile(), timeout)
                if report.partial_failure and settings.fail_on_partial_reconciliation:
                    raise ReconciliationError(
                        f"{len(report.failures)} KMS key(s) could not be reconciled",
                        report,
                    )
            except (KeyManagerError, asyncio.CancelledError):
                if kms is not self._injected_kms:
                    await kms.close()
                raise

            if report.partial_failure:
                logger.warning(
                    "Some KMS keys could not be reconciled",
                    failed=sorted(report.failures),
                )

        previous_kms = self._kms
        self._settings = settings
        self._kms = kms
        self._store = store
        self.last_reconciliation = report
        with self._orphan_lock:
            self._orphaned.update(report.stale)
        metrics.set_entry_count(len(store))

        if previous_kms is not None and previous_kms is not kms:
            await previous_kms.close()

        logger.info(
            "Key manager configured",
            backend=settings.backend.value,
            keys=len(store),
        )
        return report

    def _require_configured(self) -> tuple[Settings, KMSClient]:
        if self._kms is None or self._settings is None:
            raise ConfigurationError("Key manager is not configured")
        return self._settings, self._kms

    async def _bounded(self, operation: Awaitable[T], timeout: Optional[float]) -> T:
        """Await ``operation``, cancelling it when ``timeout`` seconds elapse."""
        if timeout is None:
            return await operation
        try:
            return await asyncio.wait_for(operation, timeout)
        except asyncio.TimeoutError as e:
            raise KMSTimeoutError(f"KMS operation timed out after {timeout}s") from e

    def _record_orphan(self, kms_key_id: str) -> None:
        with self._orphan_lock:
            self._orphaned.add(kms_key_id)

    # ==================== Generate / rotate ====================

    async def generate_key(
        self,
        key_id: str,
        key_type: Union[KeyType, str],
        timeout: Optional[float] = None,
    ) -> PublicKey:
        """Create a new KMS key for ``key_id``, rotating out the current one.

        Args:
            key_id: Logical key id
            key_type: Key type to create
            timeout: Seconds before the operation is abandoned
                (default: request_timeout_seconds)

        Returns:
            Public key of the newly created KMS key

        Raises:
            UnsupportedKeyTypeError: If key_type cannot be created
            KMSError: If a KMS call fails or times out
        """
        settings, kms = self._require_configured()
        _require_key_id(key_id)

        with key_context(key_id, "generate_key"), metrics.track_operation("generate_key"):
            key_type = _coerce_key_type(key_type)
            key_spec = key_spec_from_key_type(key_type)
            return await self._bounded(
                self._generate(settings, kms, key_id, key_type, key_spec.value),
                settings.request_timeout_seconds if timeout is None else timeout,
            )

    async def _generate(
        self,
        settings: Settings,
        kms: KMSClient,
        key_id: str,
        key_type: KeyType,
        key_spec: str,
    ) -> PublicKey:
        created = await kms.create_key(
            key_spec,
            KEY_USAGE_SIGN_VERIFY,
            key_label(settings.key_tag, key_id),
        )

        try:
            pkix_data = await kms.get_public_key(created.kms_key_id)
        except (KeyManagerError, asyncio.CancelledError):
            await self._discard_unused_key(kms, created.kms_key_id)
            raise

        new_entry = KeyEntry(
            key_id=key_id,
            kms_key_id=created.kms_key_id,
            creation_date=created.creation_date,
            key_type=key_type,
            public_key=PublicKey(id=key_id, type=key_type, pkix_data=pkix_data),
        )

        old_entry = self._store.get(key_id)
        if not self._store.put(key_id, new_entry):
            self._record_orphan(new_entry.kms_key_id)
            metrics.record_rotation_conflict()
            logger.warning(
                "Generated key lost to a newer entry and is orphaned",
                kms_key_id=new_entry.kms_key_id,
            )
            return new_entry.public_key

        metrics.set_entry_count(len(self._store))

        if old_entry is not None:
            try:
                await kms.schedule_key_deletion(old_entry.kms_key_id)
            except (KeyManagerError, asyncio.CancelledError):
                self._record_orphan(old_entry.kms_key_id)
                raise
            logger.info(
                "Rotated key",
                kms_key_id=new_entry.kms_key_id,
                replaced=old_entry.kms_key_id,
            )
        else:
            logger.info("Generated key", kms_key_id=new_entry.kms_key_id)

        return new_entry.public_key

    async def _discard_unused_key(self, kms: KMSClient, kms_key_id: str) -> None:
        """Best-effort deletion of a key created by a generate that did not finish."""
        try:
            await asyncio.shield(kms.schedule_key_deletion(kms_key_id))
        except asyncio.CancelledError:
            self._record_orphan(kms_key_id)
            raise
        except KeyManagerError as e:
            self._record_orphan(kms_key_id)
            logger.error(
                "Could not delete unused KMS key",
                kms_key_id=kms_key_id,
                error=str(e),
            )
        else:
            logger.info("Deleted unused KMS key", kms_key_id=kms_key_id)

    # ==================== Sign ====================

    async def sign_data(
        self,
        key_id: str,
        digest: bytes,
        options: Optional[SigningOptions] = None,
        timeout: Optional[float] = None,
    ) -> bytes:
        """Sign a precomputed digest with the current key for ``key_id``.

        Args:
            key_id: Logical key id
            digest: Digest of the data, produced with the options' hash
            options: Hash and padding selection (default: key type defaults)
            timeout: Seconds before the request is abandoned

        Returns:
            Raw signature bytes as returned by the KMS

        Raises:
            KeyNotFoundError: If key_id has no current key
            UnsupportedKeyTypeError: If options do not fit the key type
            ValueError: If the digest length does not match the hash
            KMSError: If the KMS call fails or times out
        """
        settings, kms = self._require_configured()
        _require_key_id(key_id)

        with key_context(key_id, "sign_data"), metrics.track_operation("sign_data"):
            entry = self._store.get(key_id)
            if entry is None:
                raise KeyNotFoundError(f"Unable to find key id: {key_id}")

            algorithm = signing_algorithm(entry.key_type, options)
            hash_algorithm = resolve_hash_algorithm(entry.key_type, options)
            if len(digest) != digest_size(hash_algorithm):
                raise ValueError(
                    f"{hash_algorithm.value} digest must be {digest_size(hash_algorithm)} bytes, "
                    f"got {len(digest)}"
                )

            return await self._bounded(
                kms.sign_digest(entry.kms_key_id, digest, algorithm.value),
                settings.request_timeout_seconds if timeout is None else timeout,
            )

    # ==================== Lookup ====================

    def get_public_key(self, key_id: str) -> Optional[PublicKey]:
        """Public key currently behind ``key_id``, or None."""
        self._require_configured()
        _require_key_id(key_id)

        entry = self._store.get(key_id)
        return entry.public_key if entry else None

    def get_public_keys(self) -> list[PublicKey]:
        """Public keys of every managed key, in no particular order."""
        self._require_configured()
        return [entry.public_key for entry in self._store.list_all()]

    # ==================== Maintenance ====================

    async def prune_orphaned_keys(self, timeout: Optional[float] = None) -> list[str]:
        """Schedule deletion of orphaned and superseded KMS keys.

        Candidates are keys orphaned by lost rotation races or failed cleanup,
        and stale keys found by reconciliation. Keys referenced by a current
        entry are never touched.

        Returns:
            KMS key ids now scheduled for deletion
        """
        settings, kms = self._require_configured()
        timeout = settings.request_timeout_seconds if timeout is None else timeout

        with key_context(None, "prune_orphaned_keys"), metrics.track_operation("prune_orphaned_keys"):
            current = self._store.kms_key_ids()
            candidates = sorted(self.orphaned_keys - current)
            pruned = []

            for kms_key_id in candidates:
                try:
                    await self._bounded(kms.schedule_key_deletion(kms_key_id), timeout)
                except KMSError as e:
                    if e.code not in _ALREADY_DELETED_CODES:
                        logger.error(
                            "Could not delete orphaned KMS key",
                            kms_key_id=kms_key_id,
                            error=str(e),
                        )
                        continue
                else:
                    pruned.append(kms_key_id)

                with self._orphan_lock:
                    self._orphaned.discard(kms_key_id)

            logger.info("Pruned orphaned KMS keys", pruned=len(pruned), remaining=len(self.orphaned_keys))
            return pruned

    async def verify_health(self) -> dict[str, Any]:
        """Health of the KMS connection plus store statistics."""
        if self._kms is None:
            return {"healthy": False, "configured": False, "error": "Key manager is not configured"}

        status = await self._kms.verify_health()
        status["configured"] = True
        status["entries"] = len(self._store)
        status["orphaned_keys"] = len(self.orphaned_keys)
        return status

    async def close(self) -> None:
        """Close the KMS client."""
        if self._kms is not None:
            await self._kms.close()
            self._kms = None
            self._settings = None

