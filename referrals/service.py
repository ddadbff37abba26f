from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from pydantic import ValidationError

from .codes import ReferralCodeService
from .config import Settings, settings as default_settings
from .errors import (
    AlreadyAppliedError,
    ForbiddenError,
    InternalError,
    InvalidRequestError,
    NotFoundError,
    SelfReferralError,
)
from .logging_config import get_logger
from .models import (
    Account,
    ReferralChanges,
    ReferralEntry,
    RedemptionResult,
    ReferrerPreview,
    RewardSettings,
    RewardSettingsUpdate,
    UserChanges,
)
from .rewards import RewardSettingsManager
from .storage import REFERRALS, USERS, InMemoryStorage, VersionConflictError, Write

logger = get_logger(__name__)


class ReferralService:
    def __init__(self, storage: Optional[InMemoryStorage] = None, config: Optional[Settings] = None):
        self.config = config or default_settings
        self.storage = storage or InMemoryStorage(lock_timeout=self.config.storage_lock_timeout_seconds)
        self.max_attempts = self.config.commit_max_attempts
        self.codes = ReferralCodeService(self.storage, max_attempts=self.max_attempts)
        self.rewards = RewardSettingsManager(
            self.storage,
            default_referrer_coins=self.config.default_referrer_coins,
            default_referred_coins=self.config.default_referred_coins,
            max_attempts=self.max_attempts,
        )

    def ensure_code(self, account_id: str, display_name: Optional[str] = None) -> str:
        return self.codes.ensure_code(account_id, display_name)

    def find_by_code(self, code: str) -> Account:
        return self.codes.find_by_code(code)

    def preview_referrer(self, code: str) -> ReferrerPreview:
        account = self.codes.find_by_code(code)
        return ReferrerPreview(uid=account.id, display_name=account.display_name)

    def get_account(self, account_id: str) -> Account:
        record = self.storage.get(USERS, account_id)
        if not record:
            raise NotFoundError(f"Account {account_id} not found")
        return Account(**record.data)

    def redeem(
        self,
        requester_id: str,
        new_account_id: Optional[str],
        code: Optional[str],
        display_name: Optional[str] = None,
    ) -> RedemptionResult:
        """
        Apply a referral code to a newly registered account, exactly once.

        Both balance updates and the ledger entry go out in one conditional
        commit. The ledger entry is keyed by the redeeming account, so a lost
        race or a client retry can never write a second entry.
        """
        if not new_account_id:
            raise InvalidRequestError("newUid is required")
        if new_account_id != requester_id:
            raise ForbiddenError("A referral can only be applied by the account it credits")
        code = (code or "").strip()
        if not code:
            raise InvalidRequestError("usedReferralCode is required")

        for attempt in range(self.max_attempts):
            target = self.storage.get(USERS, new_account_id)
            target_data = dict(target.data) if target else {
                "id": new_account_id, "display_name": display_name, "coins": 0,
            }
            if target_data.get("referral_applied_at"):
                raise AlreadyAppliedError(f"Referral already applied for {new_account_id}")

            referrer = self.codes.lookup(code)
            if referrer.key == new_account_id:
                raise SelfReferralError("Cannot use your own referral code")

            rewards = self.rewards.get_settings()
            now = datetime.now(timezone.utc)

            referrer_data = dict(referrer.data)
            referrer_data["coins"] = referrer_data.get("coins", 0) + rewards.referrer_coins
            referrer_data["updated_at"] = now

            target_data.setdefault("created_at", now)
            target_data["referred_by"] = code
            target_data["referral_applied_at"] = now
            target_data["coins"] = target_data.get("coins", 0) + rewards.referred_coins
            target_data["updated_at"] = now

            entry = ReferralEntry(
                id=str(uuid4()),
                referrer_id=referrer.key,
                referred_id=new_account_id,
                code_used=code,
                referred_code=target_data.get("referral_code"),
                referrer_coins=rewards.referrer_coins,
                referred_coins=rewards.referred_coins,
                created_at=now,
            )

            try:
                self.storage.commit([
                    Write(USERS, referrer.key, referrer_data, expected_version=referrer.version),
                    Write(USERS, new_account_id, target_data, expected_version=target.version if target else 0),
                    Write(REFERRALS, new_account_id, entry.model_dump(), expected_version=0),
                ])
            except VersionConflictError as e:
                if e.collection == REFERRALS:
                    raise AlreadyAppliedError(f"Referral already applied for {new_account_id}") from e
                logger.info(
                    "redemption_commit_conflict",
                    account_id=new_account_id,
                    conflict_key=e.key,
                    attempt=attempt + 1,
                )
                continue

            logger.info(
                "referral_redeemed",
                referrer_id=referrer.key,
                referred_id=new_account_id,
                code=code,
                referrer_coins=rewards.referrer_coins,
                referred_coins=rewards.referred_coins,
            )
            return RedemptionResult(
                referrer_uid=referrer.key,
                referrer_coins=rewards.referrer_coins,
                referred_coins=rewards.referred_coins,
            )

        raise InternalError(f"Redemption for {new_account_id} kept conflicting, retry later")

    def get_settings(self) -> RewardSettings:
        return self.rewards.get_settings()

    def update_settings(self, update: RewardSettingsUpdate) -> tuple[dict, RewardSettings]:
        return self.rewards.update_settings(update)

    def list_recent(self, limit: Optional[int] = None) -> list[ReferralEntry]:
        if limit is None:
            limit = self.config.default_list_limit
        if limit < 1:
            raise InvalidRequestError("limit must be at least 1")
        limit = min(limit, self.config.max_list_limit)
        records = self.storage.list_ordered(REFERRALS, order_by="created_at", limit=limit)
        return [ReferralEntry(**r.data) for r in records]

    def apply_admin_edit(self, edit_type: Optional[str], record_id: Optional[str], changes: Optional[dict]) -> None:
        if not edit_type or not record_id or not changes:
            raise InvalidRequestError("type, id and changes are required")
        if edit_type == "user":
            self.edit_user(record_id, self._parse_changes(UserChanges, changes))
        elif edit_type == "referral":
            self.edit_referral(record_id, self._parse_changes(ReferralChanges, changes))
        else:
            raise InvalidRequestError(f"unknown type {edit_type!r}")

    def edit_user(self, account_id: str, changes: UserChanges) -> Account:
        """Admin balance adjustment or display name change; referral fields stay untouched."""
        for _ in range(self.max_attempts):
            record = self.storage.get(USERS, account_id)
            if not record:
                raise NotFoundError(f"Account {account_id} not found")

            data = dict(record.data)
            if "display_name" in changes.model_fields_set:
                data["display_name"] = changes.display_name
            if changes.coins is not None:
                data["coins"] = changes.coins
            if changes.coins_delta is not None:
                data["coins"] = data.get("coins", 0) + changes.coins_delta
            if data.get("coins", 0) < 0:
                raise InvalidRequestError(f"Balance of {account_id} cannot go below zero")
            data["updated_at"] = datetime.now(timezone.utc)

            try:
                self.storage.commit([Write(USERS, account_id, data, expected_version=record.version)])
            except VersionConflictError:
                continue
            logger.info(
                "admin_edit_applied",
                type="user",
                id=account_id,
                changes=changes.model_dump(exclude_unset=True),
            )
            return Account(**data)

        raise InternalError(f"Could not update account {account_id}")

    def edit_referral(self, entry_id: str, changes: ReferralChanges) -> ReferralEntry:
        for _ in range(self.max_attempts):
            matches = self.storage.find_by(REFERRALS, "id", entry_id)
            if not matches:
                raise NotFoundError(f"Referral {entry_id} not found")
            record = matches[0]

            data = dict(record.data)
            data["note"] = changes.note
            data["updated_at"] = datetime.now(timezone.utc)

            try:
                self.storage.commit([Write(REFERRALS, record.key, data, expected_version=record.version)])
            except VersionConflictError:
                continue
            logger.info("admin_edit_applied", type="referral", id=entry_id)
            return ReferralEntry(**data)

        raise InternalError(f"Could not update referral {entry_id}")

    @staticmethod
    def _parse_changes(model, changes: dict):
        if not isinstance(changes, dict):
            raise InvalidRequestError("changes must be an object")
        try:
            return model.model_validate(changes)
        except ValidationError as e:
            raise InvalidRequestError(f"Unsupported changes: {e.errors(include_url=False)}") from e
