"""Pydantic schemas for AI commentary endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class StrategyResponse(BaseModel):
    """Strategy recommendation for one car."""

    car_number: str
    status: str  # "ready", "generating", "error"
    lap: int | None = None
    recommendation: str | None = None
    confidence: float | None = None
    reasoning: str | None = None
    color: str | None = None
    error: str | None = None


class TextResponse(BaseModel):
    """Markdown produced by the commentary model."""

    content: str


class WhatIfRequest(BaseModel):
    car_number: str
    decision_lap: int = Field(ge=1)
    action: str = "Pit Now"


class HeadToHeadRequest(BaseModel):
    car_a: str
    car_b: str


class ChatMessage(BaseModel):
    """A single message in the race Q&A chat."""

    role: str  # "user" or "assistant"
    content: str
