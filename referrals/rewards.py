from .errors import InternalError
from .logging_config import get_logger
from .models import RewardSettings, RewardSettingsUpdate
from .storage import SETTINGS, InMemoryStorage, VersionConflictError, Write

logger = get_logger(__name__)

REFERRAL_SETTINGS_KEY = "referral"


class RewardSettingsManager:
    """Admin-tunable award amounts, stored as one versioned record."""

    def __init__(
        self,
        storage: InMemoryStorage,
        default_referrer_coins: int = 50,
        default_referred_coins: int = 20,
        max_attempts: int = 20,
    ):
        self.storage = storage
        self.default_referrer_coins = default_referrer_coins
        self.default_referred_coins = default_referred_coins
        self.max_attempts = max_attempts

    def get_settings(self) -> RewardSettings:
        # Always read from storage so an update applies to the very next redemption.
        record = self.storage.get(SETTINGS, REFERRAL_SETTINGS_KEY)
        return self._effective(record.data if record else {}, record.version if record else 0)

    def update_settings(self, update: RewardSettingsUpdate) -> tuple[dict, RewardSettings]:
        saved = update.model_dump(exclude_none=True)
        for _ in range(self.max_attempts):
            record = self.storage.get(SETTINGS, REFERRAL_SETTINGS_KEY)
            data = dict(record.data) if record else {}
            data.update(saved)
            try:
                [committed] = self.storage.commit([
                    Write(SETTINGS, REFERRAL_SETTINGS_KEY, data, expected_version=record.version if record else 0)
                ])
            except VersionConflictError:
                continue
            logger.info("reward_settings_updated", saved=saved)
            return saved, self._effective(committed.data, committed.version)

        raise InternalError("Could not save referral settings")

    def _effective(self, data: dict, version: int) -> RewardSettings:
        return RewardSettings(
            referrer_coins=data.get("referrer_coins") or self.default_referrer_coins,
            referred_coins=data.get("referred_coins") or self.default_referred_coins,
            require_complete_profile=bool(data.get("require_complete_profile", False)),
            version=version,
        )
