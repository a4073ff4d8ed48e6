from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from ats_api.schemas.base import ApiModel

BlockType = Literal[
    "hero",
    "about",
    "values",
    "benefits",
    "team",
    "testimonials",
    "jobs",
    "stats",
    "gallery",
    "cta",
    "contact",
    "custom",
]


class CareerPageBlock(ApiModel):
    id: str | None = None
    type: BlockType
    order: int = 0
    enabled: bool = True
    content: dict[str, Any] = Field(default_factory=dict)
    styles: dict[str, Any] = Field(default_factory=dict)


class CareerPageOut(ApiModel):
    org_id: str
    published: bool
    config: dict[str, Any] = Field(default_factory=dict)
    blocks: list[CareerPageBlock] = Field(default_factory=list)


class CareerPageUpdateRequest(ApiModel):
    org_id: str = Field(min_length=1)
    published: bool = False
    config: dict[str, Any] = Field(default_factory=dict)
    blocks: list[CareerPageBlock] = Field(default_factory=list, max_length=50)


class PublicOrganization(ApiModel):
    name: str
    slug: str
    logo_url: str | None = None
    primary_color: str | None = None
    secondary_color: str | None = None


class PublicJob(ApiModel):
    id: str
    title: str
    location: str | None = None
    employment_type: str | None = None
    department: str | None = None
    published_at: datetime | None = None


class PublicCareerPageOut(ApiModel):
    organization: PublicOrganization
    config: dict[str, Any] = Field(default_factory=dict)
    blocks: list[CareerPageBlock] = Field(default_factory=list)
    jobs: list[PublicJob] = Field(default_factory=list)


class ApplicationOut(ApiModel):
    success: bool = True
    message: str = "Application submitted successfully"
    application_id: str
