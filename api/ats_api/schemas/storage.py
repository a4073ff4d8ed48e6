from pydantic import Field

from ats_api.schemas.base import ApiModel


class UploadOut(ApiModel):
    path: str
    bucket: str
    public_url: str | None = None
    signed_url: str | None = None


class SignedUrlRequest(ApiModel):
    bucket: str = Field(min_length=1)
    path: str = Field(min_length=1)


class SignedUrlOut(ApiModel):
    signed_url: str
    expires_in: int
