"""Request models for document and image analysis."""

from __future__ import annotations

from typing import List, Optional

from pydantic import Field, field_validator

from .record import CamelModel


class AnalyzeRequest(CamelModel):
    reanalyze: bool = False
    custom_prompt: Optional[str] = None

    @field_validator("custom_prompt")
    @classmethod
    def empty_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value


class BatchAnalyzeRequest(CamelModel):
    record_ids: List[str] = Field(..., min_length=1)
