import hashlib
import time
from datetime import datetime, timezone
from typing import Optional

from .errors import CodeNotFoundError, InternalError
from .logging_config import get_logger
from .models import Account
from .storage import USERS, InMemoryStorage, Record, UniqueConstraintError, VersionConflictError, Write

logger = get_logger(__name__)

PREFIX_LENGTH = 3
HASH_LENGTH = 6


def make_referral_code(uid: str, now_ms: Optional[int] = None, salt: int = 0) -> str:
    """Build a shareable code such as ``U1-A1B2C3`` from the uid and the current time."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    seed = f"{uid}{now_ms}" if not salt else f"{uid}{now_ms}:{salt}"
    digest = hashlib.sha1(seed.encode("utf-8")).hexdigest()[:HASH_LENGTH].upper()
    return f"{uid[:PREFIX_LENGTH].upper()}-{digest}"


class ReferralCodeService:
    def __init__(self, storage: InMemoryStorage, max_attempts: int = 20):
        self.storage = storage
        self.max_attempts = max_attempts

    def ensure_code(self, account_id: str, display_name: Optional[str] = None) -> str:
        """
        Return the account's referral code, generating and persisting one on first use.

        The write is conditioned on the version that was read, so two concurrent
        calls for the same account settle on a single code.
        """
        for attempt in range(self.max_attempts):
            record = self.storage.get(USERS, account_id)
            if record and record.data.get("referral_code"):
                return record.data["referral_code"]

            now = datetime.now(timezone.utc)
            code = make_referral_code(account_id, salt=attempt)
            data = dict(record.data) if record else {
                "id": account_id,
                "display_name": display_name,
                "coins": 0,
                "created_at": now,
            }
            data["referral_code"] = code
            data["updated_at"] = now

            try:
                self.storage.commit([
                    Write(USERS, account_id, data, expected_version=record.version if record else 0)
                ])
            except VersionConflictError:
                continue
            except UniqueConstraintError:
                logger.warning("referral_code_taken", account_id=account_id, code=code)
                continue

            logger.info("referral_code_generated", account_id=account_id, code=code)
            return code

        raise InternalError(f"Could not assign a referral code to {account_id}")

    def lookup(self, code: str) -> Record:
        matches = self.storage.find_by(USERS, "referral_code", code)
        if not matches:
            raise CodeNotFoundError(f"Referral code {code} not found")
        if len(matches) > 1:
            logger.warning(
                "referral_code_collision",
                code=code,
                account_ids=[m.key for m in matches],
                chosen=matches[0].key,
            )
        return matches[0]

    def find_by_code(self, code: str) -> Account:
        return Account(**self.lookup(code).data)
