"""Domain models for referral rewards."""

from datetime import datetime
from pydantic import BaseModel, ConfigDict


class ReferralReward(BaseModel):
    id: int
    referrer_subscriber_id: str
    referred_subscriber_id: str
    referrer_tokens: int
    referred_tokens: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReferralRewardCreateModel(BaseModel):
    referrer_subscriber_id: str
    referred_subscriber_id: str
    referrer_tokens: int
    referred_tokens: int
    created_at: datetime
