"""
PHI field encryption.

AES-256-GCM encryption of individual PHI values with a versioned,
authenticated wire format::

    v<version>:<iv-hex>:<auth-tag-hex>:<ciphertext-hex>

and a normalized SHA-256 search hash so encrypted columns can still be
matched on equality. The cipher holds a single 256-bit key for the
lifetime of the process; build it once at startup with :func:`load_cipher`
and pass the instance to every call site.
"""

import hashlib
import os
import re
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from phi_guard.config import Settings, get_settings
from phi_guard.utils.exceptions import (
    DecryptionError,
    EncryptionError,
    FormatError,
    IntegrityError,
    KeyConfigurationError,
    VersionMismatchError,
)
from phi_guard.utils.logging import AuditLogger, audit_logger, get_logger

logger = get_logger(__name__)

KEY_LENGTH = 32  # AES-256
KEY_HEX_LENGTH = KEY_LENGTH * 2
IV_LENGTH = 16
TAG_LENGTH = 16

_CIPHERTEXT_PATTERN = re.compile(r"^v(\d+):([0-9a-f]+):([0-9a-f]+):([0-9a-f]+)$")
_SELF_TEST_VALUE = "test-phi-data-123"


def _non_blank(value: Optional[str]) -> Optional[str]:
    if value is None or value.strip() == "":
        return None
    return value


def create_search_hash(plaintext: Optional[str]) -> Optional[str]:
    """Create a search hash for an encrypted field.

    The value is trimmed and lower-cased before hashing, so every producer
    and every lookup must go through this function.

    Args:
        plaintext: Value to hash

    Returns:
        Hex SHA-256 digest, or None for blank input
    """
    text = _non_blank(plaintext)
    if text is None:
        return None
    normalized = text.strip().lower()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def generate_key() -> str:
    """Generate a new 256-bit key as 64 hex characters (setup use only)."""
    return secrets.token_hex(KEY_LENGTH)


def parse_hex_key(hex_key: Optional[str]) -> bytes:
    """Decode a hex encoded key, enforcing the AES-256 length.

    Raises:
        KeyConfigurationError: If the key is missing, the wrong length or not hex
    """
    if not hex_key:
        raise KeyConfigurationError(
            "PHI_ENCRYPTION_KEY environment variable is required for HIPAA compliance"
        )
    if len(hex_key) != KEY_HEX_LENGTH:
        raise KeyConfigurationError(
            f"PHI_ENCRYPTION_KEY must be {KEY_HEX_LENGTH} hex characters "
            f"({KEY_LENGTH} bytes), got {len(hex_key)}"
        )
    try:
        return bytes.fromhex(hex_key)
    except ValueError as e:
        raise KeyConfigurationError("PHI_ENCRYPTION_KEY is not valid hex") from e


class PHICipher:
    """Encrypts and decrypts PHI values with AES-256-GCM."""

    __slots__ = ("_key", "_version", "_audit")

    def __init__(
        self,
        key: bytes,
        version: int = 1,
        audit: Optional[AuditLogger] = None,
    ):
        """Initialize the cipher.

        Args:
            key: Raw 32-byte AES key
            version: Version tag written to and required from ciphertexts
            audit: Audit logger for decryption failures
        """
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
            raise KeyConfigurationError(
                f"PHI encryption key must be exactly {KEY_LENGTH} bytes"
            )
        if version < 1:
            raise KeyConfigurationError("Ciphertext version must be a positive integer")
        self._key = bytes(key)
        self._version = version
        self._audit = audit or audit_logger

    @classmethod
    def from_hex(
        cls, hex_key: Optional[str], version: int = 1, audit: Optional[AuditLogger] = None
    ) -> "PHICipher":
        """Build a cipher from a hex encoded key."""
        return cls(parse_hex_key(hex_key), version=version, audit=audit)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PHICipher":
        """Build a cipher from application settings."""
        settings = settings or get_settings()
        return cls.from_hex(settings.phi_encryption_key, version=settings.ciphertext_version)

    @property
    def version(self) -> int:
        """Version tag of ciphertexts produced by this cipher."""
        return self._version

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        """Encrypt a PHI value.

        A fresh IV is drawn for every call, so encrypting the same value
        twice never yields the same string.

        Args:
            plaintext: Value to protect

        Returns:
            Versioned ciphertext, or None for blank input
        """
        text = _non_blank(plaintext)
        if text is None:
            return None

        try:
            data = text.encode("utf-8")
        except UnicodeEncodeError as e:
            raise EncryptionError(f"Failed to encrypt PHI data: {e.reason}") from e

        iv = os.urandom(IV_LENGTH)
        encryptor = Cipher(
            algorithms.AES(self._key), modes.GCM(iv), backend=default_backend()
        ).encryptor()
        ciphertext = encryptor.update(data) + encryptor.finalize()

        return f"v{self._version}:{iv.hex()}:{encryptor.tag.hex()}:{ciphertext.hex()}"

    def decrypt(
        self,
        ciphertext: Optional[str],
        field: Optional[str] = None,
        table: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Optional[str]:
        """Decrypt a versioned PHI ciphertext.

        Failures are audited once, with the column and reader when given.

        Args:
            ciphertext: Value produced by :meth:`encrypt`
            field: Column the value came from, for the audit trail
            table: Table the value came from, for the audit trail
            user_id: Reader, for the audit trail

        Returns:
            The plaintext, or None for blank input

        Raises:
            FormatError: The string is not ``v<N>:hex:hex:hex``
            VersionMismatchError: The version tag is not this cipher's version
            IntegrityError: Tag verification failed (tampering or wrong key)
        """
        text = _non_blank(ciphertext)
        if text is None:
            return None

        try:
            return self._decrypt(text)
        except DecryptionError as e:
            self._audit.log_phi_failure(
                "decryption", e.code, field=field, table=table, user_id=user_id
            )
            raise

    def _decrypt(self, ciphertext: str) -> str:
        match = _CIPHERTEXT_PATTERN.match(ciphertext)
        if match is None:
            raise FormatError()

        version = int(match.group(1))
        if version != self._version:
            logger.warning(
                "ciphertext_version_mismatch", found=version, expected=self._version
            )
            raise VersionMismatchError(found=version, expected=self._version)

        try:
            iv = bytes.fromhex(match.group(2))
            tag = bytes.fromhex(match.group(3))
            data = bytes.fromhex(match.group(4))
        except ValueError as e:
            raise FormatError("Invalid ciphertext format - odd-length hex field") from e

        if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise FormatError("Invalid ciphertext format - bad IV or tag length")

        decryptor = Cipher(
            algorithms.AES(self._key), modes.GCM(iv, tag), backend=default_backend()
        ).decryptor()
        try:
            plaintext = decryptor.update(data) + decryptor.finalize()
            return plaintext.decode("utf-8")
        except (InvalidTag, UnicodeDecodeError) as e:
            raise IntegrityError() from e

    def search_hash(self, plaintext: Optional[str]) -> Optional[str]:
        """Create the normalized search hash for ``plaintext``."""
        return create_search_hash(plaintext)

    def reencrypt(self, ciphertext: Optional[str], target: "PHICipher") -> Optional[str]:
        """Decrypt with this cipher and encrypt again with ``target``.

        Used when rotating to a new key. Running it on a value already
        produced by ``target`` fails with IntegrityError or
        VersionMismatchError, which rotation tooling treats as done.
        """
        return target.encrypt(self.decrypt(ciphertext))

    def self_test(self) -> bool:
        """Check that a value survives an encrypt/decrypt round trip."""
        try:
            return self.decrypt(self.encrypt(_SELF_TEST_VALUE)) == _SELF_TEST_VALUE
        except (DecryptionError, EncryptionError) as e:
            logger.error("phi_encryption_self_test_failed", error_code=e.code)
            return False

    def __repr__(self) -> str:
        """Return a representation without key material."""
        return f"<PHICipher(version=v{self._version})>"


def load_cipher(settings: Optional[Settings] = None) -> PHICipher:
    """Load and validate the process-wide cipher at startup.

    Raises:
        KeyConfigurationError: The key is missing, malformed or fails the self-test
    """
    try:
        cipher = PHICipher.from_settings(settings)
    except KeyConfigurationError as e:
        logger.critical("phi_encryption_key_invalid", reason=str(e))
        raise

    if not cipher.self_test():
        raise KeyConfigurationError("PHI encryption system failed validation")

    logger.info("phi_encryption_validated", version=cipher.version)
    return cipher
