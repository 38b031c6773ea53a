"""In-memory key entry store.

Maps a logical key id to the entry describing its current KMS key. Entries
are immutable and replaced whole, only by an entry with a strictly newer
creation date. A single lock guards the mapping; every critical section is
a dict lookup or assignment, so readers never wait on KMS traffic.
"""

import hashlib
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from cryptography.hazmat.primitives.serialization import load_der_public_key

from keymanager.core.key_types import KeyType
from keymanager.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PublicKey:
    """Public half of a managed key, DER SubjectPublicKeyInfo encoded."""
    id: str
    type: KeyType
    pkix_data: bytes

    @property
    def fingerprint(self) -> str:
        return hashlib.sha256(self.pkix_data).hexdigest()

    def load(self):
        """Parse into a ``cryptography`` public key object."""
        return load_der_public_key(self.pkix_data)


@dataclass(frozen=True)
class KeyEntry:
    """Current KMS backing for one logical key."""
    key_id: str
    kms_key_id: str
    creation_date: datetime
    key_type: KeyType
    public_key: PublicKey


class KeyEntryStore:
    """Thread-safe logical key id -> KeyEntry mapping."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: dict[str, KeyEntry] = {}

    def get(self, key_id: str) -> Optional[KeyEntry]:
        """Current entry for ``key_id``, or None."""
        with self._lock:
            return self._entries.get(key_id)

    def put(self, key_id: str, entry: KeyEntry) -> bool:
        """Adopt ``entry`` unless an entry at least as new already exists.

        Returns:
            True if the store now holds ``entry``; False if it was left unchanged
        """
        with self._lock:
            current = self._entries.get(key_id)
            if current is not None and entry.creation_date <= current.creation_date:
                accepted = False
            else:
                self._entries[key_id] = entry
                accepted = True

        if accepted:
            logger.debug(
                "Key entry stored",
                key_id=key_id,
                kms_key_id=entry.kms_key_id,
                replaced=current.kms_key_id if current else None,
            )
        else:
            logger.debug(
                "Key entry rejected, newer entry present",
                key_id=key_id,
                kms_key_id=entry.kms_key_id,
                current_kms_key_id=current.kms_key_id,
            )
        return accepted

    def list_all(self) -> list[KeyEntry]:
        """Snapshot of all entries, in no particular order."""
        with self._lock:
            return list(self._entries.values())

    def kms_key_ids(self) -> set[str]:
        """KMS key ids currently referenced by an entry."""
        with self._lock:
            return {entry.kms_key_id for entry in self._entries.values()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
