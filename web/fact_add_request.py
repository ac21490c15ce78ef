from pydantic import BaseModel, Field, field_validator

from web.debate_start_request import ID_PATTERN


class FactAddRequest(BaseModel):
    """Request model for adding a fact to the knowledge base."""

    fact: str = Field(..., min_length=1, max_length=1000)
    source: str = Field(default="user", min_length=1, max_length=100)
    category: str = Field(default="general", min_length=1, max_length=50, pattern=ID_PATTERN)

    @field_validator("fact")
    @classmethod
    def strip_fact(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Fact content is required")
        return stripped
