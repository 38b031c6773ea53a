"""Startup reconciliation of KMS keys into the key entry store.

The KMS is the only persistent state: each owned key carries the label
"<tag><key id>" in its description. On startup every key in the account is
described; enabled keys whose label starts with the tag are parsed back
into entries. A key that fails (describe error, unsupported spec, public
key fetch error) is logged and skipped; only a failed listing aborts.
"""

from dataclasses import dataclass, field
from typing import Optional

from keymanager.core.exceptions import InvalidKeyLabelError, KeyManagerError
from keymanager.core.key_store import KeyEntry, KeyEntryStore, PublicKey
from keymanager.core.key_types import key_type_from_key_spec
from keymanager.core.kms.base import KMSClient, KeyDescription
from keymanager.core.logging import get_logger
from keymanager.core.metrics import metrics

logger = get_logger(__name__)


@dataclass
class ReconciliationReport:
    """Outcome of one reconciliation pass."""
    reconciled: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failures: dict[str, KeyManagerError] = field(default_factory=dict)
    stale: list[str] = field(default_factory=list)

    @property
    def partial_failure(self) -> bool:
        return bool(self.failures)


def parse_key_label(description: Optional[str], key_tag: str) -> Optional[str]:
    """Extract the logical key id from a KMS key description.

    Strict prefix match: returns None unless the description starts with the
    tag. Everything after the first occurrence of the tag is the key id.
    """
    if not description or not description.startswith(key_tag):
        return None
    return description[len(key_tag):]


def key_label(key_tag: str, key_id: str) -> str:
    return f"{key_tag}{key_id}"


class KeyReconciler:
    """Rebuilds the key entry store from the keys held in the KMS."""

    def __init__(self, kms: KMSClient, store: KeyEntryStore, key_tag: str):
        self.kms = kms
        self.store = store
        self.key_tag = key_tag

    async def reconcile(self) -> ReconciliationReport:
        """Walk every KMS key and store the owned, enabled ones.

        Returns:
            Report of reconciled key ids, skipped and stale KMS key ids,
            and per-key failures

        Raises:
            KMSError: If the keys cannot be listed
        """
        kms_key_ids = await self.kms.list_keys()
        logger.info("Reconciling KMS keys", total=len(kms_key_ids))

        report = ReconciliationReport()
        # KMS key ids seen per logical key id
        candidates: dict[str, list[str]] = {}

        for kms_key_id in kms_key_ids:
            try:
                entry = await self._process_key(kms_key_id)
            except KeyManagerError as e:
                logger.error(
                    "Failed to reconcile KMS key",
                    kms_key_id=kms_key_id,
                    error=str(e),
                )
                report.failures[kms_key_id] = e
                continue

            if entry is None:
                report.skipped.append(kms_key_id)
                continue

            candidates.setdefault(entry.key_id, []).append(entry.kms_key_id)
            self.store.put(entry.key_id, entry)

        for key_id, seen in candidates.items():
            current = self.store.get(key_id)
            report.reconciled.append(key_id)
            for kms_key_id in seen:
                if current is not None and kms_key_id != current.kms_key_id:
                    report.stale.append(kms_key_id)

        if report.stale:
            logger.warning(
                "Found superseded KMS keys still enabled",
                stale=report.stale,
            )

        metrics.record_reconciliation("reconciled", len(report.reconciled))
        metrics.record_reconciliation("skipped", len(report.skipped))
        metrics.record_reconciliation("failed", len(report.failures))
        metrics.record_reconciliation("stale", len(report.stale))

        logger.info(
            "Reconciliation finished",
            reconciled=len(report.reconciled),
            skipped=len(report.skipped),
            failed=len(report.failures),
            stale=len(report.stale),
        )
        return report

    async def _process_key(self, kms_key_id: str) -> Optional[KeyEntry]:
        """Build the entry for one KMS key, or None if the key is not ours to manage."""
        description = await self.kms.describe_key(kms_key_id)

        if not description.enabled:
            logger.debug(
                "Skipping disabled KMS key",
                kms_key_id=kms_key_id,
                key_state=description.key_state,
            )
            return None

        key_id = parse_key_label(description.description, self.key_tag)
        if key_id is None:
            logger.debug("Skipping KMS key without ownership tag", kms_key_id=kms_key_id)
            return None
        if not key_id:
            raise InvalidKeyLabelError(
                f"KMS key {kms_key_id} carries the ownership tag but no key id"
            )

        return await self._build_entry(key_id, description)

    async def _build_entry(self, key_id: str, description: KeyDescription) -> KeyEntry:
        key_type = key_type_from_key_spec(description.key_spec)
        pkix_data = await self.kms.get_public_key(description.kms_key_id)

        return KeyEntry(
            key_id=key_id,
            kms_key_id=description.kms_key_id,
            creation_date=description.creation_date,
            key_type=key_type,
            public_key=PublicKey(id=key_id, type=key_type, pkix_data=pkix_data),
        )
