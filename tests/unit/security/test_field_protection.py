"""Tests for record-level PHI field protection."""

import pytest

from phi_guard.security import FieldProtector, PHIFieldMapping, PHICipher, create_search_hash
from phi_guard.utils.exceptions import IntegrityError
from tests.conftest import OTHER_HEX_KEY


@pytest.fixture
def protector(cipher, audit):
    """Field protector with the default table mappings."""
    return FieldProtector(cipher, audit=audit)


@pytest.fixture
def patient():
    """Plaintext patient record."""
    return {
        "id": "patient-1",
        "first_name": "Jane",
        "contact_email": "Jane.Doe@Example.com",
        "contact_phone": "555-0100",
        "date_of_birth": "1984-02-11",
        "clinical_notes": "Reports improved sleep.",
        "gender": "",
        "member_id": None,
    }


@pytest.mark.hipaa_required
@pytest.mark.phi_encryption
class TestFieldProtector:
    """Encrypt on write, decrypt on read."""

    def test_protect_encrypts_mapped_fields(self, protector, patient):
        """Test that mapped columns are encrypted and others untouched."""
        stored = protector.protect("patients", patient)

        assert stored["id"] == "patient-1"
        assert stored["first_name"] == "Jane"
        assert stored["contact_email"].startswith("v1:")
        assert stored["date_of_birth"].startswith("v1:")
        assert stored["clinical_notes"] != patient["clinical_notes"]

    def test_protect_leaves_blank_values(self, protector, patient):
        """Test that blank and missing values are not encrypted."""
        stored = protector.protect("patients", patient)

        assert stored["gender"] == ""
        assert stored["member_id"] is None
        assert "home_address" not in stored

    def test_protect_adds_search_hashes(self, protector, patient):
        """Test search hashes come from the plaintext."""
        stored = protector.protect("patients", patient)

        assert stored["contact_email_search_hash"] == create_search_hash(
            "jane.doe@example.com"
        )
        assert stored["contact_phone_search_hash"] == create_search_hash("555-0100")
        assert "date_of_birth_search_hash" not in stored

    def test_protect_does_not_mutate_input(self, protector, patient):
        """Test that a new dict is returned."""
        original = dict(patient)

        protector.protect("patients", patient)

        assert patient == original

    def test_reveal_round_trip(self, protector, patient):
        """Test that readable columns decrypt back."""
        revealed = protector.reveal("patients", protector.protect("patients", patient))

        assert revealed["contact_email"] == "Jane.Doe@Example.com"
        assert revealed["date_of_birth"] == "1984-02-11"
        assert revealed["clinical_notes"] == "Reports improved sleep."

    def test_reveal_only_decrypts_listed_fields(self, protector):
        """Test that encrypted-only columns stay encrypted on read."""
        stored = protector.protect("treatment_plans", {"content": "a", "diagnosis": "F41.1"})

        revealed = protector.reveal("treatment_plans", stored)

        assert revealed["content"] == "a"
        assert revealed["diagnosis"].startswith("v1:")

    @pytest.mark.audit_required
    def test_reveal_failure_is_audited_and_raised(self, protector, patient, audit):
        """Test that a value under another key is never silently replaced."""
        foreign = FieldProtector(PHICipher.from_hex(OTHER_HEX_KEY))
        stored = foreign.protect("patients", patient)

        with pytest.raises(IntegrityError):
            protector.reveal("patients", stored, user_id="user-7")

        failures = [e for e in audit.entries if e["event"] == "phi_decryption_failed"]
        assert len(failures) == 1
        assert failures[0]["field"] == "contact_email"
        assert failures[0]["table"] == "patients"
        assert failures[0]["user_id"] == "user-7"
        assert failures[0]["error_code"] == "CIPHERTEXT_INTEGRITY"

    def test_unknown_table(self, protector):
        """Test that tables without a mapping are refused."""
        with pytest.raises(KeyError):
            protector.protect("invoices", {"amount": "10"})

    def test_search_hash_for(self, protector):
        """Test lookups hash the same way as writes."""
        assert protector.search_hash_for(
            "patients", "contact_phone", " 555-0100 "
        ) == create_search_hash("555-0100")

    def test_search_hash_for_unsearchable_field(self, protector):
        """Test that only search-hashed columns can be looked up."""
        with pytest.raises(KeyError):
            protector.search_hash_for("patients", "clinical_notes", "x")


class TestPHIFieldMapping:
    """Mapping validation."""

    def test_search_hash_requires_encryption(self):
        """Test that a hashed column must be encrypted."""
        with pytest.raises(ValueError):
            PHIFieldMapping(encrypt=("a",), search_hash=("b",))

    def test_custom_mapping(self, cipher):
        """Test a protector with caller supplied mappings."""
        protector = FieldProtector(
            cipher, mappings={"notes": PHIFieldMapping(encrypt=("body",), decrypt=("body",))}
        )

        stored = protector.protect("notes", {"body": "text"})

        assert protector.reveal("notes", stored) == {"body": "text"}
