"""Pydantic schemas for request/response validation in the short link service.

Schema Hierarchy
=================
::
    ShortenRequest / UpdateRequest (Input)
    └─ original_url: str  (alias "originalUrl")

    ShortLink (Output)
    ├─ id: int
    ├─ short_code: str
    ├─ short_url: str (base URL + "/" + short_code)
    ├─ original_url: str
    ├─ clicks: int
    └─ created_at: datetime

    LinkStats (Output, camelCase keys)
    ├─ totalUrls: int
    ├─ totalClicks: int
    ├─ mostClickedUrl: ShortLink | None
    └─ recentUrls: int

    HealthResponse / DeleteResponse / ErrorResponse (Output)

Key Behaviours
===============
- Request schemas do not validate URLs; the registry does, so the same
  rules apply to HTTP and programmatic callers.
- ShortLink is built from a UrlMapping plus the base URL in effect.
"""

import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shortlinks.enums import ConnectionState, HealthStatus
from shortlinks.models import UrlMapping

__all__ = [
    "ShortenRequest",
    "UpdateRequest",
    "ShortLink",
    "LinkStats",
    "HealthResponse",
    "DatabaseHealth",
    "DeleteResponse",
    "ErrorResponse",
]


class ShortenRequest(BaseModel):
    original_url: str = Field(validation_alias=AliasChoices("original_url", "originalUrl"))


class UpdateRequest(BaseModel):
    original_url: str = Field(validation_alias=AliasChoices("original_url", "originalUrl"))


class ShortLink(BaseModel):
    id: int
    short_code: str
    short_url: str
    original_url: str
    clicks: int
    created_at: datetime.datetime

    @classmethod
    def from_mapping(cls, mapping: UrlMapping, base_url: str) -> "ShortLink":
        return cls(
            id=mapping.id,
            short_code=mapping.short_code,
            short_url=f"{base_url}/{mapping.short_code}",
            original_url=mapping.original_url,
            clicks=mapping.clicks,
            created_at=mapping.created_at,
        )


class LinkStats(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_urls: int
    total_clicks: int
    most_clicked_url: ShortLink | None
    recent_urls: int


class DatabaseHealth(BaseModel):
    state: ConnectionState
    connected: bool


class HealthResponse(BaseModel):
    status: HealthStatus
    timestamp: datetime.datetime
    environment: str
    database: DatabaseHealth


class DeleteResponse(BaseModel):
    success: bool = True
    message: str = "URL deleted successfully"


class ErrorResponse(BaseModel):
    error: str
    type: str
