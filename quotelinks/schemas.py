from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from quotelinks.config import ALLOWED_SOURCE_ORIGIN

MAX_QUOTE_LENGTH = 200

_http_url = TypeAdapter(AnyHttpUrl)


class OgpRequest(BaseModel):
    quote: str = Field(min_length=1, max_length=MAX_QUOTE_LENGTH)
    url: str

    @field_validator("url")
    @classmethod
    def url_on_allowed_origin(cls, value: str) -> str:
        try:
            _http_url.validate_python(value)
        except ValidationError:
            raise ValueError("URL must be an absolute http(s) URL") from None
        if not value.startswith(f"{ALLOWED_SOURCE_ORIGIN}/"):
            raise ValueError(f"URL must start with {ALLOWED_SOURCE_ORIGIN}/")
        return value

class OgpResponse(BaseModel):
    id: str
    ogp_image_url: str = Field(alias="ogpImageUrl")

    model_config = ConfigDict(populate_by_name=True)

class ErrorOut(BaseModel):
    error: str
