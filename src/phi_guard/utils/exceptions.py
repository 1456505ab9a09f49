"""Custom exceptions for phi-guard."""

from typing import Optional


class PhiGuardException(Exception):
    """Base exception for all phi-guard exceptions."""

    def __init__(self, message: str, code: Optional[str] = None):
        """Initialize exception.

        Args:
            message: Error message
            code: Optional error code
        """
        super().__init__(message)
        self.code = code


class KeyConfigurationError(PhiGuardException):
    """Raised when the PHI encryption key is missing or malformed.

    This is a startup error: the process must not serve traffic without a
    valid key.
    """

    def __init__(self, message: str = "PHI encryption key is not configured"):
        """Initialize KeyConfigurationError."""
        super().__init__(message, "KEY_CONFIGURATION")


class EncryptionError(PhiGuardException):
    """Raised when encrypting PHI fails."""

    def __init__(self, message: str = "Failed to encrypt PHI data"):
        """Initialize EncryptionError."""
        super().__init__(message, "ENCRYPTION_FAILED")


class DecryptionError(PhiGuardException):
    """Base exception for PHI decryption failures."""

    def __init__(
        self, message: str = "Failed to decrypt PHI data", code: str = "DECRYPTION_FAILED"
    ):
        """Initialize DecryptionError."""
        super().__init__(message, code)


class FormatError(DecryptionError):
    """Raised when a ciphertext does not match ``v<N>:hex:hex:hex``."""

    def __init__(
        self,
        message: str = "Invalid ciphertext format - expected v<version>:iv:authTag:encrypted",
    ):
        """Initialize FormatError."""
        super().__init__(message, "CIPHERTEXT_FORMAT")


class VersionMismatchError(DecryptionError):
    """Raised when a ciphertext was produced under another version tag."""

    def __init__(self, found: int, expected: int):
        """Initialize VersionMismatchError.

        Args:
            found: Version embedded in the ciphertext
            expected: Version the cipher is configured for
        """
        super().__init__(
            f"Ciphertext version v{found} does not match configured version v{expected}",
            "CIPHERTEXT_VERSION",
        )
        self.found = found
        self.expected = expected


class IntegrityError(DecryptionError):
    """Raised when authentication tag verification fails."""

    def __init__(
        self,
        message: str = "Failed to decrypt PHI data: Wrong encryption key or corrupted data",
    ):
        """Initialize IntegrityError."""
        super().__init__(message, "CIPHERTEXT_INTEGRITY")


class SessionException(PhiGuardException):
    """Base exception for session-related errors."""


class SessionNotActiveError(SessionException):
    """Raised when an operation requires an active session."""

    def __init__(self, message: str = "Session is not active"):
        """Initialize SessionNotActiveError."""
        super().__init__(message, "SESSION_NOT_ACTIVE")


class GeolocationError(PhiGuardException):
    """Raised when an IP address cannot be geolocated."""

    def __init__(self, message: str = "IP geolocation failed"):
        """Initialize GeolocationError."""
        super().__init__(message, "GEOLOCATION_FAILED")


class AuthorizationException(PhiGuardException):
    """Base exception for role administration errors."""


class RoleNotFoundError(AuthorizationException):
    """Raised when a role id does not exist."""

    def __init__(self, role_id: str):
        """Initialize RoleNotFoundError."""
        super().__init__(f"Role not found: {role_id}", "ROLE_NOT_FOUND")
        self.role_id = role_id


class RoleLimitExceededError(AuthorizationException):
    """Raised when a user would hold more roles than allowed."""

    def __init__(self, user_id: str, limit: int):
        """Initialize RoleLimitExceededError."""
        super().__init__(
            f"User {user_id} already holds the maximum of {limit} active roles",
            "ROLE_LIMIT_EXCEEDED",
        )
        self.user_id = user_id
        self.limit = limit


class PersistenceError(PhiGuardException):
    """Raised when the backing store fails after retries."""

    def __init__(self, message: str = "Persistence operation failed"):
        """Initialize PersistenceError."""
        super().__init__(message, "PERSISTENCE_FAILED")
