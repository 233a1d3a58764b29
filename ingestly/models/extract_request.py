from pydantic import BaseModel, Field


class ExtractRequest(BaseModel):
    website_url: str = Field(
        min_length=1,
        max_length=2048,
        description="Site to extract images from. `https://` is assumed when no scheme is given.",
    )
    max_images: int = Field(
        default=20,
        ge=1,
        le=50,
        description="Maximum number of images to save (1–50).",
    )
