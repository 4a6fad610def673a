"""Tests for profile and overview hashing"""

import pytest

from trainermatch.errors import ValidationError
from trainermatch.schemas.intake import ClientProfile
from trainermatch.services.profile_key import canonicalize_profile, derive_key, overview_hash


class TestDeriveKey:
    """Profile key derivation"""

    def test_key_is_sha256_hex(self, sample_profile):
        key = derive_key(sample_profile)
        assert len(key) == 64
        assert all(c in "0123456789abcdef" for c in key)

    def test_deterministic(self, intake_data):
        assert derive_key(ClientProfile.from_intake(intake_data)) == derive_key(
            ClientProfile.from_intake(dict(intake_data))
        )

    def test_list_order_and_case_do_not_matter(self, intake_data):
        variant = dict(intake_data)
        variant["goals"] = ["  LOSE WEIGHT", "build strength ", "Build Strength"]
        variant["training_experience"] = "intermediate  "
        variant["injuries"] = ["knee", ""]
        assert derive_key(variant) == derive_key(intake_data)

    def test_different_profiles_differ(self, intake_data):
        variant = dict(intake_data, weight_goal="Gain 5kg")
        assert derive_key(variant) != derive_key(intake_data)

    def test_mapping_and_model_agree(self, intake_data, sample_profile):
        assert derive_key(intake_data) == derive_key(sample_profile)

    def test_sessions_per_week_int_and_str_agree(self, intake_data):
        as_int = ClientProfile.from_intake(dict(intake_data, sessions_per_week=3))
        assert derive_key(as_int) == derive_key(intake_data)

    def test_canonical_form(self, intake_data):
        canonical = canonicalize_profile(intake_data)
        assert canonical["goals"] == ["build strength", "lose weight"]
        assert canonical["chronic_diseases"] == []
        assert canonical["weight_goal"] == "lose 5kg"


class TestOverviewHash:
    """Match cache key space"""

    def test_surrounding_whitespace_ignored(self):
        assert overview_hash("  An overview.\n") == overview_hash("An overview.")

    def test_text_change_changes_hash(self):
        assert overview_hash("An overview.") != overview_hash("An overview!")


class TestIntakeValidation:
    """ClientProfile.from_intake"""

    def test_missing_goals_rejected(self, intake_data):
        intake_data["goals"] = []
        with pytest.raises(ValidationError) as exc_info:
            ClientProfile.from_intake(intake_data)
        assert exc_info.value.details["fields"] == ["goals"]
        assert exc_info.value.retryable is False

    def test_blank_required_field_rejected(self, intake_data):
        intake_data["training_experience"] = "   "
        with pytest.raises(ValidationError) as exc_info:
            ClientProfile.from_intake(intake_data)
        assert "training_experience" in exc_info.value.details["fields"]

    def test_optional_lists_default_to_empty(self, intake_data):
        intake_data["chronic_diseases"] = None
        del intake_data["injuries"]
        profile = ClientProfile.from_intake(intake_data)
        assert profile.chronic_diseases == []
        assert profile.injuries == []
