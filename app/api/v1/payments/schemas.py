from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VerifySessionRequest(CamelModel):
    session_id: Optional[str] = None
    student_id: Optional[int] = None
    package_id: Optional[int] = None


class SubscriptionInfo(CamelModel):
    id: int
    status: str
    stripe_subscription_id: Optional[str] = None
    package_id: int
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None


class VerifySessionResponse(CamelModel):
    verified: bool
    finalized: bool
    message: str
    subscription: Optional[SubscriptionInfo] = None
    requires_metadata: Optional[bool] = None
    # Set when the provider failed during finalization; the caller may retry
    error: Optional[str] = None
