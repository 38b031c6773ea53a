"""KeyManager - KMS-backed signing key management.

Keeps a stable, backend-agnostic view of asymmetric signing keys whose
private material never leaves the key custody service:
- Startup reconciliation of owned keys from the KMS
- Generate/rotate with last-writer-wins by creation time
- Digest signing with key-type aware algorithm selection
- Public key lookups for the calling identity system
"""

__version__ = "0.1.0"
__author__ = "KeyManager Contributors"
