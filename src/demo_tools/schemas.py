"""Argument schemas for the demo tools (single source of truth).

The loop validates model-supplied arguments against these before a handler
runs, and the model adapter publishes them as JSON schema.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


class WeatherInput(BaseModel):
    """Input for get_weather."""
    location: str = Field(..., description="Location to get the weather for.")

    @field_validator("location")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("location must not be empty")
        return value.strip()


class CoolestCitiesInput(BaseModel):
    """Input for get_coolest_cities."""
    no_op: str | None = Field(default=None, description="No-op parameter.")


class SearchInput(BaseModel):
    """Input for search."""
    query: str = Field(..., min_length=1, description="The query to use in your search.")


class ChartPoint(BaseModel):
    label: str
    value: float


class ChartInput(BaseModel):
    """Input for generate_bar_chart."""
    data: list[ChartPoint] = Field(..., min_length=1)


class RetrieveInput(BaseModel):
    """Input for retrieve_blog_posts."""
    query: str = Field(..., min_length=1, description="What to look up in the blog posts.")
    k: int = Field(default=3, ge=1, le=10)
