from pydantic import BaseModel, Field, field_validator

from web.debate_start_request import DEFAULT_AGENTS, validate_agent_ids


class MultiDebateRequest(BaseModel):
    """Request model for launching several debates at once."""

    topics: list[str] = Field(..., min_length=1, max_length=5)
    agents: list[str] = Field(
        default_factory=lambda: list(DEFAULT_AGENTS), min_length=1, max_length=10
    )

    @field_validator("topics")
    @classmethod
    def validate_topics(cls, v: list[str]) -> list[str]:
        topics = [topic.strip() for topic in v]
        if not all(3 <= len(topic) <= 200 for topic in topics):
            raise ValueError("Each topic must be 3-200 characters")
        return topics

    @field_validator("agents")
    @classmethod
    def validate_agents(cls, v: list[str]) -> list[str]:
        return validate_agent_ids(v)
