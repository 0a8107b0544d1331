"""Distribution schemas: redeemable token allocations."""

import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class DistributionResponse(BaseModel):
    id: uuid.UUID
    investor_id: uuid.UUID
    subscription_id: uuid.UUID | None
    project_id: uuid.UUID | None
    token_type: str
    token_amount: Decimal
    distribution_date: datetime
    distribution_tx_hash: str | None
    blockchain: str
    token_address: str | None
    token_symbol: str | None
    to_address: str
    status: str
    notes: str | None
    remaining_amount: Decimal
    fully_redeemed: bool
    standard: str | None
    redemption_status: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class InvestorSummary(BaseModel):
    id: uuid.UUID
    name: str
    email: str
    investor_type: str
    company: str | None
    wallet_address: str | None
    kyc_status: str
    investor_status: str
    accreditation_status: str
    onboarding_completed: bool

    model_config = {"from_attributes": True}


class SubscriptionSummary(BaseModel):
    id: uuid.UUID
    subscription_ref: str
    fiat_amount: Decimal
    currency: str
    confirmed: bool
    allocated: bool
    distributed: bool
    subscription_date: date
    notes: str | None

    model_config = {"from_attributes": True}


class EnrichedDistribution(DistributionResponse):
    investor: InvestorSummary | None = None
    subscription: SubscriptionSummary | None = None


class LinkRedemptionRequest(BaseModel):
    redemption_request_id: uuid.UUID
    amount_redeemed: Decimal = Field(..., gt=0)


class DistributionRedemptionResponse(BaseModel):
    id: uuid.UUID
    distribution_id: uuid.UUID
    redemption_request_id: uuid.UUID
    amount_redeemed: Decimal
    created_at: datetime

    model_config = {"from_attributes": True}
