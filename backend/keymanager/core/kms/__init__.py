"""Key Management Service client layer.

Supports:
- AWS KMS: production binding over boto3
- Local: development only, keys held in process memory

The key manager depends only on the KMSClient interface, so other key
custody services can be plugged in with ``register_client``.
"""

from .base import KMSBackend, KMSClient, CreatedKey, KeyDescription
from .local import LocalKMSClient
from .factory import create_kms_client, register_client

__all__ = [
    "KMSBackend",
    "KMSClient",
    "CreatedKey",
    "KeyDescription",
    "LocalKMSClient",
    "create_kms_client",
    "register_client",
]
