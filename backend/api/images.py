"""Public listings of cached images."""

from __future__ import annotations

import logging
import re
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from backend.api.deps import get_blob_store
from backend.schemas.images import ImageItem, ImageListResponse
from backend.services.blob_service import BlobStore
from backend.services.sync_service import HERO_PREFIX, PORTFOLIO_PREFIX, normalize_category

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["images"])

_IMAGE_SUFFIX = re.compile(r"\.(jpe?g|png|gif|webp)$", re.IGNORECASE)


@router.get("/hero-images", response_model=ImageListResponse)
async def list_hero_images(
    blob_store: Annotated[BlobStore, Depends(get_blob_store)],
) -> ImageListResponse:
    """List cached hero images for the landing page slideshow."""
    blobs = [b for b in await blob_store.list(f"{HERO_PREFIX}/") if _IMAGE_SUFFIX.search(b.pathname)]
    return ImageListResponse(
        images=[
            ImageItem(id=str(index), src=blob.url, alt=f"Hero background {index + 1}")
            for index, blob in enumerate(blobs)
        ]
    )


@router.get("/portfolio-images", response_model=ImageListResponse)
async def list_portfolio_images(
    blob_store: Annotated[BlobStore, Depends(get_blob_store)],
    category: Annotated[str, Query(min_length=1, max_length=100)],
) -> ImageListResponse:
    """List cached images of one portfolio category."""
    try:
        normalized = normalize_category(category)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid category") from exc

    prefix = f"{PORTFOLIO_PREFIX}/{normalized}/"
    blobs = [b for b in await blob_store.list(prefix) if _IMAGE_SUFFIX.search(b.pathname)]
    return ImageListResponse(
        images=[
            ImageItem(
                id=f"image-{index}",
                src=blob.url,
                alt=f"{normalized} image {index + 1}",
            )
            for index, blob in enumerate(blobs)
        ]
    )
