"""
Unit tests for profile, identity and stored-document models.
"""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from stock_advisor.models.conversation import StoredSummary, StoredTurn
from stock_advisor.models.identity import Identity
from stock_advisor.models.profile import (
    DEFAULT_PREFERRED_SECTORS,
    AdvisoryProfile,
    merge_sectors,
)


class TestAdvisoryProfile:
    def test_defaults_for_new_user(self):
        profile = AdvisoryProfile.default_for("alice")

        assert profile.risk_tolerance == "medium"
        assert profile.investment_goals.startswith("Balanced Growth")
        assert profile.preferred_sectors == DEFAULT_PREFERRED_SECTORS

    def test_default_sectors_not_shared(self):
        first = AdvisoryProfile.default_for("alice")
        first.preferred_sectors.append("Energy")

        assert AdvisoryProfile.default_for("bob").preferred_sectors == DEFAULT_PREFERRED_SECTORS

    def test_sectors_deduplicated_in_order(self):
        profile = AdvisoryProfile(
            user_id="alice", preferred_sectors=["Energy", "Technology", "Energy"]
        )

        assert profile.preferred_sectors == ["Energy", "Technology"]

    def test_unknown_risk_rejected(self):
        with pytest.raises(ValidationError):
            AdvisoryProfile(user_id="alice", risk_tolerance="extreme")

    def test_document_uses_store_field_names(self):
        document = AdvisoryProfile.default_for("alice").to_document()

        assert set(document) == {
            "userId",
            "riskTolerance",
            "investmentGoals",
            "preferredSectors",
        }

    def test_parse_store_document(self):
        profile = AdvisoryProfile.model_validate(
            {"userId": "alice", "riskTolerance": "high", "preferredSectors": ["Energy"]}
        )

        assert profile.risk_tolerance == "high"
        assert profile.preferred_sectors == ["Energy"]

    def test_merge_sectors(self):
        assert merge_sectors(["Technology"], ["Energy", "Technology"]) == [
            "Technology",
            "Energy",
        ]


class TestIdentity:
    NOW = datetime(2025, 6, 1, 9, 0, tzinfo=UTC)

    def test_fresh_within_window(self):
        identity = Identity(user_id="alice", last_authenticated_at=self.NOW)

        assert identity.is_fresh(self.NOW + timedelta(hours=24), timedelta(hours=24))
        assert not identity.is_fresh(
            self.NOW + timedelta(hours=24, seconds=1), timedelta(hours=24)
        )

    def test_frozen(self):
        identity = Identity(user_id="alice", last_authenticated_at=self.NOW)

        with pytest.raises(ValidationError):
            identity.user_id = "bob"


class TestStoredTurn:
    def test_naive_timestamp_becomes_utc(self):
        turn = StoredTurn.model_validate(
            {
                "userId": "alice",
                "message": "Hi",
                "sender": "user",
                "timestamp": "2025-06-01T09:00:00",
            }
        )

        assert turn.timestamp.tzinfo is UTC

    @pytest.mark.parametrize("sender", ["user", "Human"])
    def test_user_senders(self, sender):
        turn = StoredTurn(user_id="a", sender=sender, timestamp=datetime.now(UTC))

        assert turn.is_user and not turn.is_assistant

    @pytest.mark.parametrize("sender", ["assistant", "bot", "AI"])
    def test_assistant_senders(self, sender):
        turn = StoredTurn(user_id="a", sender=sender, timestamp=datetime.now(UTC))

        assert turn.is_assistant and not turn.is_user

    def test_unknown_sender_is_neither(self):
        turn = StoredTurn(user_id="a", sender="system", timestamp=datetime.now(UTC))

        assert not turn.is_user and not turn.is_assistant

    def test_document_omits_missing_sequence(self):
        turn = StoredTurn(
            user_id="alice", message="Hi", sender="user", timestamp=TestIdentity.NOW
        )

        assert "sequence" not in turn.to_document()
        assert turn.model_copy(update={"sequence": 3}).to_document()["sequence"] == 3


def test_stored_summary_aliases():
    summary = StoredSummary.model_validate(
        {"userId": "alice", "summary": "Digest", "timestamp": "2025-06-01T09:00:00Z"}
    )

    assert summary.text == "Digest"
    assert summary.created_at == datetime(2025, 6, 1, 9, 0, tzinfo=UTC)
