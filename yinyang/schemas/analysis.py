from pydantic import BaseModel, field_validator


class ErrorResponse(BaseModel):
    status: str = "error"
    kind: str
    message: str
    requestId: str | None = None


class HealthResponse(BaseModel):
    status: str


class SubmissionBody(BaseModel):
    """Plain-text POST body: a single image URL."""

    url: str

    @field_validator("url")
    @classmethod
    def url_must_be_http(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("url must not be empty")
        if not v.lower().startswith(("http://", "https://")):
            raise ValueError("url must be an http(s) URL")
        return v
