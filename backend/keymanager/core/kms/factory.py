"""KMS client factory.

Creates the KMS client matching the configured backend.
"""

from typing import TYPE_CHECKING

from keymanager.core.exceptions import ConfigurationError
from keymanager.core.kms.aws import AWSKMSClient
from keymanager.core.kms.base import KMSBackend, KMSClient
from keymanager.core.kms.local import LocalKMSClient
from keymanager.core.logging import get_logger

if TYPE_CHECKING:
    from keymanager.config import Settings

logger = get_logger(__name__)

# Registry of KMS clients
_clients: dict[KMSBackend, type[KMSClient]] = {
    KMSBackend.AWS_KMS: AWSKMSClient,
    KMSBackend.LOCAL: LocalKMSClient,
}


def register_client(backend: KMSBackend, client_class: type[KMSClient]) -> None:
    """Register a KMS client class.

    Allows swapping in another binding (or a fake) without modifying this module.

    Args:
        backend: Backend identifier
        client_class: Class implementing KMSClient, constructed with the settings
    """
    _clients[backend] = client_class
    logger.info(f"Registered KMS client: {backend.value}")


def create_kms_client(settings: "Settings") -> KMSClient:
    """Create the KMS client for validated settings.

    Raises:
        ConfigurationError: If no client is registered for the backend
    """
    client_class = _clients.get(settings.backend)
    if client_class is None:
        raise ConfigurationError(
            f"KMS backend '{settings.backend.value}' is not available. "
            f"Available backends: {', '.join(b.value for b in _clients)}"
        )

    client = client_class(settings)
    logger.info(f"Created KMS client: {settings.backend.value}")
    return client
