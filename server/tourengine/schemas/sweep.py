"""Lifecycle sweep result schemas."""

from typing import List

from pydantic import BaseModel, Field


class SweepError(BaseModel):
    """One item a sweep could not process."""

    item_id: str
    error: str


class SweepResult(BaseModel):
    """Summary of one sweep run."""

    sweeper: str
    total: int = 0
    succeeded: int = 0
    skipped: int = Field(0, description="Items no longer matching the sweep predicate")
    failed: int = 0
    errors: List[SweepError] = Field(default_factory=list)
