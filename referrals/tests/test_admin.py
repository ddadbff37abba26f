"""
Unit Tests for Settings Management and Admin Edits
"""

import pytest

from referrals.auth import Identity, is_admin
from referrals.config import Settings
from referrals.errors import InvalidRequestError, NotFoundError
from referrals.models import RewardSettingsUpdate
from referrals.rewards import RewardSettingsManager
from referrals.service import ReferralService
from referrals.storage import SETTINGS, USERS, InMemoryStorage

REFERRER_CODE = "U1-A1B2C3"


def make_service() -> ReferralService:
    service = ReferralService(config=Settings(_env_file=None))
    service.storage.seed(USERS, "u1", {"id": "u1", "referral_code": REFERRER_CODE, "coins": 0})
    return service


class TestRewardSettings:
    def test_defaults_when_unset(self):
        manager = RewardSettingsManager(InMemoryStorage())

        current = manager.get_settings()

        assert current.referrer_coins == 50
        assert current.referred_coins == 20
        assert current.require_complete_profile is False
        assert current.version == 0

    def test_partial_update_merges(self):
        """Test that fields not supplied keep their stored values."""
        manager = RewardSettingsManager(InMemoryStorage())
        manager.update_settings(RewardSettingsUpdate(referred_coins=30))

        saved, current = manager.update_settings(RewardSettingsUpdate(referrer_coins=10))

        assert saved == {"referrer_coins": 10}
        assert current.referrer_coins == 10
        assert current.referred_coins == 30
        assert current.version == 2

    def test_update_returns_committed_record(self):
        """Test that the returned settings describe the write that was made."""
        class RacingStorage(InMemoryStorage):
            # another admin saves right after our commit lands
            def commit(self, writes):
                committed = super().commit(writes)
                self.seed(SETTINGS, "referral", {"referrer_coins": 99})
                return committed

        storage = RacingStorage()
        manager = RewardSettingsManager(storage)

        _, current = manager.update_settings(RewardSettingsUpdate(referrer_coins=15))

        assert current.referrer_coins == 15
        assert current.version == 1
        assert storage.get(SETTINGS, "referral").version == 2

    def test_require_complete_profile_stored(self):
        manager = RewardSettingsManager(InMemoryStorage())

        _, current = manager.update_settings(RewardSettingsUpdate(require_complete_profile=True))

        assert current.require_complete_profile is True
        assert current.referrer_coins == 50

    def test_non_positive_award_rejected(self):
        with pytest.raises(ValueError):
            RewardSettingsUpdate(referrer_coins=0)


class TestAdminEdits:
    def test_balance_adjustment(self):
        service = make_service()
        service.redeem("u2", "u2", REFERRER_CODE)

        service.apply_admin_edit("user", "u2", {"coinsDelta": -5})

        assert service.get_account("u2").coins == 15

    def test_set_balance_and_name(self):
        service = make_service()

        service.apply_admin_edit("user", "u1", {"coins": 100, "displayName": "Uma"})

        account = service.get_account("u1")
        assert account.coins == 100
        assert account.display_name == "Uma"
        assert account.referral_code == REFERRER_CODE

    def test_negative_balance_rejected(self):
        service = make_service()

        with pytest.raises(InvalidRequestError):
            service.apply_admin_edit("user", "u1", {"coinsDelta": -1})

        assert service.get_account("u1").coins == 0

    @pytest.mark.parametrize("changes", [
        {"referralCode": "HIJACK-1"},
        {"referredBy": "X"},
        {"referralAppliedAt": None},
        {"coins": -3},
    ])
    def test_referral_fields_not_editable(self, changes):
        """Test that edits which would break referral invariants are refused."""
        service = make_service()

        with pytest.raises(InvalidRequestError):
            service.apply_admin_edit("user", "u1", changes)

        assert service.get_account("u1").referral_code == REFERRER_CODE

    def test_unknown_account(self):
        service = make_service()

        with pytest.raises(NotFoundError):
            service.apply_admin_edit("user", "ghost", {"coins": 1})

    def test_referral_note(self):
        service = make_service()
        service.redeem("u2", "u2", REFERRER_CODE)
        entry = service.list_recent()[0]

        service.apply_admin_edit("referral", entry.id, {"note": "verified by support"})

        edited = service.list_recent()[0]
        assert edited.note == "verified by support"
        assert edited.updated_at is not None
        assert edited.referrer_coins == entry.referrer_coins
        assert edited.created_at == entry.created_at

    def test_referral_amounts_not_editable(self):
        service = make_service()
        service.redeem("u2", "u2", REFERRER_CODE)
        entry = service.list_recent()[0]

        with pytest.raises(InvalidRequestError):
            service.apply_admin_edit("referral", entry.id, {"referrerCoins": 5000})

    def test_unknown_referral(self):
        service = make_service()

        with pytest.raises(NotFoundError):
            service.apply_admin_edit("referral", "missing", {"note": "x"})

    def test_unknown_type(self):
        service = make_service()

        with pytest.raises(InvalidRequestError, match="unknown type"):
            service.apply_admin_edit("coupon", "u1", {"note": "x"})

    def test_missing_fields(self):
        service = make_service()

        with pytest.raises(InvalidRequestError):
            service.apply_admin_edit("user", "u1", None)


class TestIsAdmin:
    def test_allow_list(self):
        assert is_admin(Identity(uid="root"), ["root"])

    @pytest.mark.parametrize("claim", ["admin", "isAdmin"])
    def test_claims(self, claim):
        assert is_admin(Identity(uid="u5", claims={claim: True}), [])

    def test_regular_user(self):
        assert not is_admin(Identity(uid="u5", claims={"admin": "yes"}), ["root"])
