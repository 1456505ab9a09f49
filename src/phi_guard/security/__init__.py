"""Security module for phi-guard.

PHI field encryption and record-level field protection.
"""

from phi_guard.security.field_protection import (
    PHI_FIELD_MAPPINGS,
    FieldProtector,
    PHIFieldMapping,
)
from phi_guard.security.phi_encryption import (
    PHICipher,
    create_search_hash,
    generate_key,
    load_cipher,
)

__all__ = [
    "PHICipher",
    "PHIFieldMapping",
    "PHI_FIELD_MAPPINGS",
    "FieldProtector",
    "create_search_hash",
    "generate_key",
    "load_cipher",
]
