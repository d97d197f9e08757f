"""Pydantic schemas for narration transcripts used to build captions."""

from pydantic import BaseModel, Field, model_validator


class CaptionWord(BaseModel):
    word: str
    start: float = Field(ge=0)
    end: float = Field(ge=0)


class CaptionSegment(BaseModel):
    """One transcribed phrase with per-word timing."""

    text: str
    start: float = Field(ge=0)
    end: float = Field(ge=0)
    words: list[CaptionWord] = Field(default_factory=list)

    @model_validator(mode="after")
    def _ordered(self) -> "CaptionSegment":
        if self.end < self.start:
            raise ValueError(f"segment ends at {self.end} before it starts at {self.start}")
        return self
