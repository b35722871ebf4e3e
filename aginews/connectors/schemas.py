"""Boundary schemas for loosely-typed external responses (LLM output, X API)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator


class ExtractedStory(BaseModel):
    """One story as returned by a connector, before normalization."""

    title: str = Field("", validation_alias=AliasChoices("title", "headline"))
    url: str = Field("", validation_alias=AliasChoices("url", "link"))
    content: str = ""
    summary: str = ""

    @field_validator("title", "url", "content", "summary", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str:
        if v is None:
            return ""
        return str(v).strip()


class StoryExtraction(BaseModel):
    """Expected LLM filter output: ``{"stories": [...]}``."""

    stories: List[ExtractedStory]


class Tweet(BaseModel):
    id: str
    text: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, v: Any) -> str:
        return str(v)


class TweetSearchResponse(BaseModel):
    """Subset of the X recent-search response we rely on."""

    data: Optional[List[Tweet]] = None
    meta: Dict[str, Any] = Field(default_factory=dict)

    @property
    def result_count(self) -> int:
        if "result_count" in self.meta:
            return int(self.meta["result_count"] or 0)
        return len(self.data or [])
