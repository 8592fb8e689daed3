"""Digest algorithms for audit entry integrity hashes.

The algorithm is selected by name from configuration so the weak legacy
digest can be replaced without touching the audit services.

Example:
    ```python
    digest = get_digest("sha256")
    value = digest.digest(canonical_json({"id": "a1", "action": "state_transition"}))
    ```
"""

import json
import re
from abc import ABC, abstractmethod
from base64 import b64encode
from typing import Any

from cryptography.hazmat.primitives import hashes, hmac

LEGACY_DIGEST_LENGTH = 16
_NON_ALPHANUMERIC = re.compile(r"[^A-Za-z0-9]")


class DigestConfigurationError(Exception):
    """Raised when a digest algorithm is unknown or misconfigured."""

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize DigestConfigurationError.

        Args:
            message: Human-readable error message.
            field: Optional configuration field that caused the error.
        """
        self.message = message
        self.field = field
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return error message with field name if available."""
        if self.field:
            return f"Digest configuration error in field '{self.field}': {self.message}"
        return self.message


def canonical_json(data: Any) -> str:
    """Serialize data deterministically (sorted keys, no whitespace)."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


class DigestAlgorithm(ABC):
    """A named function from text to a printable digest."""

    name: str = ""
    weak: bool = False
    """True when the digest is not collision resistant."""

    @abstractmethod
    def digest(self, data: str) -> str:
        """Return the digest of ``data``."""
        pass


class HashDigest(DigestAlgorithm):
    """Cryptographic hash rendered as lowercase hex."""

    _ALGORITHMS = {
        "sha256": lambda: hashes.SHA256(),
        "sha512": lambda: hashes.SHA512(),
        "blake2b": lambda: hashes.BLAKE2b(64),
    }

    def __init__(self, name: str) -> None:
        if name not in self._ALGORITHMS:
            raise DigestConfigurationError(f"Unsupported hash algorithm: {name}", field="hash_algorithm")
        self.name = name
        self._factory = self._ALGORITHMS[name]

    def digest(self, data: str) -> str:
        hasher = hashes.Hash(self._factory())
        hasher.update(data.encode("utf-8"))
        return hasher.finalize().hex()


class HmacSha256Digest(DigestAlgorithm):
    """Keyed HMAC-SHA256; only holders of the key can forge a digest."""

    name = "hmac-sha256"

    def __init__(self, key: str | bytes) -> None:
        if not key:
            raise DigestConfigurationError(
                "hmac-sha256 requires a signing key", field="audit_signing_key"
            )
        self._key = key.encode("utf-8") if isinstance(key, str) else key

    def digest(self, data: str) -> str:
        signer = hmac.HMAC(self._key, hashes.SHA256())
        signer.update(data.encode("utf-8"))
        return signer.finalize().hex()


class LegacyBase64Digest(DigestAlgorithm):
    """Base64 of the payload, alphanumerics only, truncated to 16 characters.

    Kept for compatibility with trails written by earlier deployments. Not
    collision resistant: payloads sharing a prefix share a digest.
    """

    name = "legacy-base64"
    weak = True

    def digest(self, data: str) -> str:
        encoded = b64encode(data.encode("utf-8")).decode("ascii")
        return _NON_ALPHANUMERIC.sub("", encoded)[:LEGACY_DIGEST_LENGTH]


SUPPORTED_DIGESTS = ("legacy-base64", "sha256", "sha512", "blake2b", "hmac-sha256")


def get_digest(name: str, signing_key: str | bytes | None = None) -> DigestAlgorithm:
    """Return the digest algorithm registered under ``name``.

    Args:
        name: One of SUPPORTED_DIGESTS (case-insensitive, "_" accepted for "-").
        signing_key: Key for hmac-sha256; ignored by the other algorithms.

    Returns:
        DigestAlgorithm instance.

    Raises:
        DigestConfigurationError: If the name is unknown or a required key is missing.
    """
    normalized = name.strip().lower().replace("_", "-")
    if normalized == "legacy-base64":
        return LegacyBase64Digest()
    if normalized == "hmac-sha256":
        return HmacSha256Digest(signing_key or b"")
    if normalized in HashDigest._ALGORITHMS:
        return HashDigest(normalized)
    raise DigestConfigurationError(
        f"Unknown digest algorithm: {name}. Supported: {', '.join(SUPPORTED_DIGESTS)}",
        field="hash_algorithm",
    )
