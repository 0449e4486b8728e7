"""Cached image listing schemas."""

from __future__ import annotations

from pydantic import BaseModel


class ImageItem(BaseModel):
    """A cached image as consumed by the public site."""

    id: str
    src: str
    alt: str


class ImageListResponse(BaseModel):
    """A list of cached images."""

    images: list[ImageItem]
