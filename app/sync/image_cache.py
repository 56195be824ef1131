"""ADSYNC — Creative Thumbnail Cache.

Meta's thumbnail URLs are signed and expire, so each creative image is
downloaded once and re-hosted from our own static mount.
"""

import asyncio
from pathlib import Path
from typing import Dict, Iterable, Optional

import httpx
from pydantic import BaseModel

from app.config import settings
from app.connectors.meta.client import Sleep
from app.models.entity_models import EntityRecord
from app.core.logging import get_logger

logger = get_logger("sync.image_cache")

EXTENSIONS = {"png": "png", "webp": "webp", "gif": "gif"}


class ImageCacheResult(BaseModel):
    """Outcome of one warm-up pass."""

    total: int = 0
    cached: Dict[str, str] = {}  # ad_id -> public URL
    failed: int = 0


def extension_for(content_type: str) -> str:
    """Pick a file extension from a Content-Type header (jpg by default)."""
    content_type = (content_type or "").lower()
    for marker, ext in EXTENSIONS.items():
        if marker in content_type:
            return ext
    return "jpg"


async def warm_image_cache(
    project_id: str,
    ads: Iterable[EntityRecord],
    transport: httpx.AsyncBaseTransport | None = None,
    sleep: Sleep = asyncio.sleep,
    cache_dir: Optional[str] = None,
    url_prefix: Optional[str] = None,
) -> ImageCacheResult:
    """Download and re-host every distinct ad thumbnail.

    A failed download is logged and counted; it never aborts the pass.
    """
    root = Path(cache_dir or settings.image_cache_dir) / project_id
    prefix = (url_prefix or settings.image_cache_url).rstrip("/")

    unique: Dict[str, str] = {}
    for ad in ads:
        url = ad.creative_thumbnail or ad.creative_image_url
        if url and ad.entity_id not in unique:
            unique[ad.entity_id] = url

    result = ImageCacheResult(total=len(unique))
    if not unique:
        return result

    root.mkdir(parents=True, exist_ok=True)
    async with httpx.AsyncClient(
        timeout=settings.meta_timeout_seconds,
        follow_redirects=True,
        transport=transport,
    ) as client:
        for ad_id, url in unique.items():
            try:
                resp = await client.get(url)
                if resp.status_code != 200:
                    logger.warning(
                        f"Failed to download image for ad {ad_id}: {resp.status_code}",
                        extra={"project_id": project_id, "entity_id": ad_id},
                    )
                    result.failed += 1
                    continue
                ext = extension_for(resp.headers.get("content-type", ""))
                (root / f"{ad_id}.{ext}").write_bytes(resp.content)
                result.cached[ad_id] = f"{prefix}/{project_id}/{ad_id}.{ext}"
            except (httpx.HTTPError, OSError) as e:
                logger.warning(
                    f"Error caching image for ad {ad_id}: {e}",
                    extra={"project_id": project_id, "entity_id": ad_id},
                )
                result.failed += 1
                continue
            await sleep(settings.image_download_delay_seconds)

    logger.info(
        f"Image cache: {len(result.cached)} cached, {result.failed} failed of {result.total}",
        extra={"project_id": project_id},
    )
    return result
