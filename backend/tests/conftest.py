"""Test configuration and fixtures."""

import os
from datetime import datetime, timedelta, timezone

import pytest

# Set up test environment variables BEFORE importing keymanager modules
os.environ.setdefault("KEYMANAGER_BACKEND", "local")
os.environ.setdefault("KEYMANAGER_REQUEST_TIMEOUT_SECONDS", "5")

from keymanager.config import DEFAULT_KEY_TAG, get_settings
from keymanager.core.key_manager import KeyManager
from keymanager.core.key_store import KeyEntry, PublicKey
from keymanager.core.key_types import KeyType
from keymanager.core.kms.local import LocalKMSClient


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Settings are cached per process; tests change the environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def local_kms(clock):
    """Fresh in-memory KMS."""
    return LocalKMSClient(clock=clock)


@pytest.fixture
async def manager(local_kms):
    """Key manager configured against an empty local KMS."""
    km = KeyManager(kms=local_kms)
    await km.configure({"backend": "local"})
    yield km
    await km.close()


@pytest.fixture
def seed_key(local_kms):
    """Create keys in the KMS the way a previous key manager run would have."""

    async def _seed(
        key_id: str,
        key_spec: str = "ECC_NIST_P256",
        tag: str = DEFAULT_KEY_TAG,
    ) -> str:
        created = await local_kms.create_key(key_spec, "SIGN_VERIFY", f"{tag}{key_id}")
        return created.kms_key_id

    return _seed


@pytest.fixture
def make_entry():
    """Build key entries with placeholder public keys."""

    def _make(
        key_id: str,
        kms_key_id: str,
        creation_date: datetime,
        key_type: KeyType = KeyType.EC_P256,
    ) -> KeyEntry:
        return KeyEntry(
            key_id=key_id,
            kms_key_id=kms_key_id,
            creation_date=creation_date,
            key_type=key_type,
            public_key=PublicKey(id=key_id, type=key_type, pkix_data=kms_key_id.encode()),
        )

    return _make
