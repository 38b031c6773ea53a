"""Key type and signing algorithm mapping.

Translates between the caller's key type vocabulary and the KMS key spec
vocabulary, and picks the KMS signing algorithm for a key.

Signing is digest-mode: the caller hashes, the KMS only applies the
signature scheme. The hash in SigningOptions must therefore match the
digest the caller supplies.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from keymanager.core.exceptions import UnsupportedKeyTypeError


class KeyType(str, Enum):
    """Key types understood by the calling identity system."""
    UNSPECIFIED = "UNSPECIFIED_KEY_TYPE"
    RSA_1024 = "RSA_1024"  # Recognized, never supported
    RSA_2048 = "RSA_2048"
    RSA_4096 = "RSA_4096"
    EC_P256 = "EC_P256"
    EC_P384 = "EC_P384"

    @property
    def is_rsa(self) -> bool:
        return self in (KeyType.RSA_1024, KeyType.RSA_2048, KeyType.RSA_4096)


class KeySpec(str, Enum):
    """KMS asymmetric key specs usable for SIGN_VERIFY."""
    RSA_2048 = "RSA_2048"
    RSA_4096 = "RSA_4096"
    ECC_NIST_P256 = "ECC_NIST_P256"
    ECC_NIST_P384 = "ECC_NIST_P384"


class HashAlgorithm(str, Enum):
    """Digest algorithms a caller may have used before signing."""
    SHA256 = "SHA256"
    SHA384 = "SHA384"
    SHA512 = "SHA512"


class SigningAlgorithm(str, Enum):
    """KMS signing algorithm specs."""
    RSASSA_PSS_SHA_256 = "RSASSA_PSS_SHA_256"
    RSASSA_PSS_SHA_384 = "RSASSA_PSS_SHA_384"
    RSASSA_PSS_SHA_512 = "RSASSA_PSS_SHA_512"
    RSASSA_PKCS1_V1_5_SHA_256 = "RSASSA_PKCS1_V1_5_SHA_256"
    RSASSA_PKCS1_V1_5_SHA_384 = "RSASSA_PKCS1_V1_5_SHA_384"
    RSASSA_PKCS1_V1_5_SHA_512 = "RSASSA_PKCS1_V1_5_SHA_512"
    ECDSA_SHA_256 = "ECDSA_SHA_256"
    ECDSA_SHA_384 = "ECDSA_SHA_384"


@dataclass(frozen=True)
class SigningOptions:
    """Caller-supplied signing options.

    Attributes:
        hash_algorithm: Hash used to produce the digest. None picks the
            key's default (SHA-256, or SHA-384 for P-384 keys).
        pss: Use RSASSA-PSS instead of PKCS#1 v1.5. RSA keys only.
    """
    hash_algorithm: Optional[HashAlgorithm] = None
    pss: bool = False


_SPEC_TO_TYPE = {
    KeySpec.RSA_2048: KeyType.RSA_2048,
    KeySpec.RSA_4096: KeyType.RSA_4096,
    KeySpec.ECC_NIST_P256: KeyType.EC_P256,
    KeySpec.ECC_NIST_P384: KeyType.EC_P384,
}

_TYPE_TO_SPEC = {key_type: spec for spec, key_type in _SPEC_TO_TYPE.items()}

# EC keys only sign with the hash matching their curve
_EC_ALGORITHMS = {
    KeyType.EC_P256: (HashAlgorithm.SHA256, SigningAlgorithm.ECDSA_SHA_256),
    KeyType.EC_P384: (HashAlgorithm.SHA384, SigningAlgorithm.ECDSA_SHA_384),
}

_RSA_ALGORITHMS = {
    (HashAlgorithm.SHA256, False): SigningAlgorithm.RSASSA_PKCS1_V1_5_SHA_256,
    (HashAlgorithm.SHA384, False): SigningAlgorithm.RSASSA_PKCS1_V1_5_SHA_384,
    (HashAlgorithm.SHA512, False): SigningAlgorithm.RSASSA_PKCS1_V1_5_SHA_512,
    (HashAlgorithm.SHA256, True): SigningAlgorithm.RSASSA_PSS_SHA_256,
    (HashAlgorithm.SHA384, True): SigningAlgorithm.RSASSA_PSS_SHA_384,
    (HashAlgorithm.SHA512, True): SigningAlgorithm.RSASSA_PSS_SHA_512,
}

DIGEST_SIZES = {
    HashAlgorithm.SHA256: 32,
    HashAlgorithm.SHA384: 48,
    HashAlgorithm.SHA512: 64,
}


def key_type_from_key_spec(key_spec: str) -> KeyType:
    """Map a KMS key spec to a key type.

    Raises:
        UnsupportedKeyTypeError: For any spec other than the four supported ones
    """
    try:
        return _SPEC_TO_TYPE[KeySpec(key_spec)]
    except ValueError:
        raise UnsupportedKeyTypeError(f"Unsupported KMS key spec: {key_spec}")


def key_spec_from_key_type(key_type: KeyType) -> KeySpec:
    """Map a key type to the KMS key spec used to create it.

    Raises:
        UnsupportedKeyTypeError: For RSA-1024 (recognized) or unknown types
    """
    if key_type == KeyType.RSA_1024:
        raise UnsupportedKeyTypeError(
            "Key type RSA_1024 is recognized but not supported",
            recognized=True,
        )

    spec = _TYPE_TO_SPEC.get(key_type)
    if spec is None:
        raise UnsupportedKeyTypeError(f"Unknown and unsupported key type: {key_type}")
    return spec


def resolve_hash_algorithm(key_type: KeyType, options: Optional[SigningOptions] = None) -> HashAlgorithm:
    """Hash algorithm a digest must have been produced with for this key."""
    options = options or SigningOptions()
    if options.hash_algorithm is not None:
        return options.hash_algorithm
    if key_type in _EC_ALGORITHMS:
        return _EC_ALGORITHMS[key_type][0]
    return HashAlgorithm.SHA256


def signing_algorithm(key_type: KeyType, options: Optional[SigningOptions] = None) -> SigningAlgorithm:
    """Pick the KMS signing algorithm for a key type and caller options.

    Raises:
        UnsupportedKeyTypeError: If the key type cannot sign, or the options
            do not fit the key family (PSS or a foreign hash on an EC key)
    """
    options = options or SigningOptions()

    # Validates the key type itself
    key_spec_from_key_type(key_type)

    hash_algorithm = resolve_hash_algorithm(key_type, options)

    if key_type.is_rsa:
        return _RSA_ALGORITHMS[(hash_algorithm, options.pss)]

    curve_hash, algorithm = _EC_ALGORITHMS[key_type]
    if options.pss:
        raise UnsupportedKeyTypeError(f"PSS padding is not available for {key_type.value} keys")
    if hash_algorithm != curve_hash:
        raise UnsupportedKeyTypeError(
            f"{key_type.value} keys sign {curve_hash.value} digests, not {hash_algorithm.value}"
        )
    return algorithm


def digest_size(hash_algorithm: HashAlgorithm) -> int:
    """Length in bytes of a digest produced by ``hash_algorithm``."""
    return DIGEST_SIZES[hash_algorithm]
