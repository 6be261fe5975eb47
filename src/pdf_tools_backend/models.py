from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthResponse(BaseModel):
    status: str = "ok"


class DownloadResponse(ApiModel):
    download_url: str


class PreviewPage(ApiModel):
    page_number: int
    image_url: str


class PreviewResponse(ApiModel):
    pages: List[PreviewPage]


class ErrorResponse(BaseModel):
    error: str


class OrganizeRotation(ApiModel):
    page_number: int = 0
    degrees: int = 0


class RedactionArea(BaseModel):
    page: int = Field(ge=1)
    x: float
    y: float
    width: float = Field(ge=0)
    height: float = Field(ge=0)
