from pydantic import BaseModel, ConfigDict, Field


class SummarizeRequest(BaseModel):
    """Request model for summarizing a debate transcript."""

    model_config = ConfigDict(populate_by_name=True)

    max_messages: int = Field(default=20, ge=1, le=100, alias="maxMessages")
