from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake case in Python, camel case on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class Account(CamelModel):
    id: str
    display_name: Optional[str] = None
    referral_code: Optional[str] = None
    coins: int = Field(default=0, ge=0)
    referred_by: Optional[str] = None
    referral_applied_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def has_redeemed(self) -> bool:
        return self.referral_applied_at is not None


class ReferralEntry(CamelModel):
    id: str
    referrer_id: str
    referred_id: str
    code_used: str
    referred_code: Optional[str] = None
    referrer_coins: int
    referred_coins: int
    created_at: datetime
    note: Optional[str] = None
    updated_at: Optional[datetime] = None


class RewardSettings(CamelModel):
    referrer_coins: int = Field(..., gt=0)
    referred_coins: int = Field(..., gt=0)
    require_complete_profile: bool = False
    version: int = 0


class RewardSettingsUpdate(CamelModel):
    referrer_coins: Optional[int] = Field(default=None, gt=0)
    referred_coins: Optional[int] = Field(default=None, gt=0)
    require_complete_profile: Optional[bool] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {"referrerCoins": 10, "referredCoins": 20}
    })


class RedemptionRequest(CamelModel):
    new_uid: Optional[str] = None
    used_referral_code: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {"newUid": "u2", "usedReferralCode": "U1-A1B2C3"}
    })


class RedemptionResult(CamelModel):
    referrer_uid: str
    referrer_coins: int
    referred_coins: int


class RedemptionResponse(CamelModel):
    success: bool = True
    awarded: RedemptionResult


class ReferralCodeResponse(CamelModel):
    referral_code: str


class ReferrerPreview(CamelModel):
    uid: str
    display_name: Optional[str] = None


class ReferralListResponse(CamelModel):
    data: list[ReferralEntry]


class AdminEditRequest(CamelModel):
    type: Optional[str] = None
    id: Optional[str] = None
    changes: Optional[dict] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {"type": "user", "id": "u2", "changes": {"coinsDelta": -20}}
    })


class UserChanges(CamelModel):
    display_name: Optional[str] = None
    coins: Optional[int] = Field(default=None, ge=0)
    coins_delta: Optional[int] = None

    model_config = ConfigDict(extra="forbid")


class ReferralChanges(CamelModel):
    note: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class SuccessResponse(CamelModel):
    success: bool = True


class SettingsUpdateResponse(CamelModel):
    success: bool = True
    saved: dict
    settings: RewardSettings
