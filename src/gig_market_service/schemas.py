"""Pydantic response models for the API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_contracts: int
    contracts_by_status: dict[str, int]


class ErrorResponse(BaseModel):
    """Standard error response model."""

    model_config = ConfigDict(extra="forbid")
    error: str
    message: str
    details: dict[str, object]


class FeeQuoteResponse(BaseModel):
    """Itemized fee and tax breakdown, all amounts in minor units."""

    model_config = ConfigDict(extra="forbid")
    currency: str
    service_amount: int
    platform_fee: int
    provider_taxable_amount: int
    provider_tax: int
    tasker_tax: int
    total_tax: int
    total_provider_payment: int
    amount_received_by_payee: int


class NotificationResponse(BaseModel):
    """One notification addressed to the caller."""

    model_config = ConfigDict(extra="forbid")
    notification_id: str
    recipient_id: str
    kind: str
    message: str
    data: dict[str, object]
    created_at: str


class NotificationListResponse(BaseModel):
    """Response model for GET /notifications."""

    model_config = ConfigDict(extra="forbid")
    notifications: list[NotificationResponse]
