"""
PHI field protection for persisted records.

Maps each table that carries PHI to the columns that are encrypted before
storage, the columns that also get a search hash, and the columns that are
decrypted when a record is read back.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from phi_guard.security.phi_encryption import PHICipher
from phi_guard.utils.exceptions import EncryptionError
from phi_guard.utils.logging import AuditLogger, audit_logger, get_logger

logger = get_logger(__name__)

SEARCH_HASH_SUFFIX = "_search_hash"


@dataclass(frozen=True)
class PHIFieldMapping:
    """Encryption rules for one table."""

    encrypt: Tuple[str, ...]
    search_hash: Tuple[str, ...] = ()
    decrypt: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Search hashes and decryption only make sense for encrypted columns."""
        unknown = (set(self.search_hash) | set(self.decrypt)) - set(self.encrypt)
        if unknown:
            raise ValueError(f"Fields not marked for encryption: {sorted(unknown)}")


PHI_FIELD_MAPPINGS: Dict[str, PHIFieldMapping] = {
    "patients": PHIFieldMapping(
        encrypt=(
            "contact_email",
            "contact_phone",
            "home_address",
            "home_city",
            "home_state",
            "home_zip",
            "date_of_birth",
            "gender",
            "race",
            "ethnicity",
            "pronouns",
            "clinical_notes",
            "diagnosis_codes",
            "primary_diagnosis",
            "medical_history",
            "treatment_history",
            "referring_physician",
            "insurance_provider",
            "member_id",
            "group_number",
            "prior_auth_number",
        ),
        search_hash=("contact_email", "contact_phone"),
        decrypt=(
            "contact_email",
            "contact_phone",
            "date_of_birth",
            "gender",
            "clinical_notes",
        ),
    ),
    "clinical_sessions": PHIFieldMapping(
        encrypt=(
            "clinical_notes",
            "subjective_notes",
            "objective_notes",
            "assessment_notes",
            "plan_notes",
            "treatment_goals",
            "progress_notes",
            "interventions",
        ),
        decrypt=(
            "clinical_notes",
            "subjective_notes",
            "objective_notes",
            "assessment_notes",
            "plan_notes",
        ),
    ),
    "treatment_plans": PHIFieldMapping(
        encrypt=(
            "content",
            "goals",
            "objectives",
            "interventions",
            "progress_notes",
            "diagnosis",
            "assessment",
        ),
        decrypt=("content", "goals", "objectives"),
    ),
}


class FieldProtector:
    """Applies a table's PHI field mapping to record dictionaries."""

    def __init__(
        self,
        cipher: PHICipher,
        mappings: Optional[Mapping[str, PHIFieldMapping]] = None,
        audit: Optional[AuditLogger] = None,
    ):
        """Initialize field protector.

        Args:
            cipher: Process-wide PHI cipher
            mappings: Table mappings, defaults to ``PHI_FIELD_MAPPINGS``
            audit: Audit logger for failures
        """
        self.cipher = cipher
        self.mappings = dict(mappings if mappings is not None else PHI_FIELD_MAPPINGS)
        self.audit = audit or audit_logger

    def protect(self, table: str, record: Mapping[str, Any]) -> Dict[str, Any]:
        """Encrypt a record's PHI columns before it is written.

        Search hashes are computed from the plaintext and stored under
        ``<field>_search_hash``. Blank values are left as they are.

        Raises:
            KeyError: ``table`` has no mapping
            EncryptionError: A field could not be encrypted
        """
        mapping = self.mappings[table]
        result = dict(record)

        for field in mapping.encrypt:
            value = record.get(field)
            if not isinstance(value, str) or not value.strip():
                continue
            try:
                result[field] = self.cipher.encrypt(value)
            except EncryptionError as e:
                self.audit.log_phi_failure("encryption", e.code, field=field, table=table)
                raise
            if field in mapping.search_hash:
                result[field + SEARCH_HASH_SUFFIX] = self.cipher.search_hash(value)

        return result

    def reveal(
        self, table: str, record: Mapping[str, Any], user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Decrypt a record's readable PHI columns.

        Raises:
            KeyError: ``table`` has no mapping
            DecryptionError: A stored value failed to decrypt; it is never
                replaced with a default
        """
        mapping = self.mappings[table]
        result = dict(record)

        for field in mapping.decrypt:
            value = record.get(field)
            if not isinstance(value, str) or not value:
                continue
            result[field] = self.cipher.decrypt(
                value, field=field, table=table, user_id=user_id
            )

        return result

    def search_hash_for(self, table: str, field: str, value: Optional[str]) -> Optional[str]:
        """Hash a lookup value for an equality query on ``table.field``."""
        if field not in self.mappings[table].search_hash:
            raise KeyError(f"{table}.{field} is not searchable")
        return self.cipher.search_hash(value)
