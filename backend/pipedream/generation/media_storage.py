"""
Rehosting of generated media.

fal.ai CDN links are not permanent, so results are copied into the Supabase
``media`` bucket. A local Supabase is not reachable from outside, so in that
case the original URL is kept.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

import httpx

from pipedream import config
from pipedream.db.supabase import get_supabase

logger = logging.getLogger(__name__)

_CONTENT_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "mp4": "video/mp4",
}


async def download_media(url: str, transport: httpx.AsyncBaseTransport | None = None) -> tuple[bytes, str | None]:
    timeout = httpx.Timeout(120.0, connect=20.0)
    async with httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=True) as client:
        response = await client.get(url)
    if response.status_code >= 400:
        raise RuntimeError(
            f"Failed to download file from {url}: {response.status_code} {response.reason_phrase}"
        )
    return response.content, response.headers.get("content-type")


async def upload_to_storage(url: str, extension: str) -> str:
    """Copy ``url`` into the media bucket and return its public URL."""
    content, content_type = await download_media(url)
    file_name = f"{uuid.uuid4()}.{extension}"
    bucket_name = config.media_bucket()

    bucket = get_supabase().storage().from_(bucket_name)
    try:
        await asyncio.to_thread(
            bucket.upload,
            file_name,
            content,
            {
                "content-type": content_type or _CONTENT_TYPES.get(extension, "application/octet-stream"),
                "cache-control": "3600",
                "upsert": "false",
            },
        )
    except Exception as e:
        raise RuntimeError(f"Failed to upload to Supabase: {e}") from e

    public_url = bucket.get_public_url(file_name)
    logger.info("Rehosted %s as %s/%s", url[:80], bucket_name, file_name)
    return public_url


async def rehost_or_passthrough(url: str, extension: str) -> str:
    if config.is_local_supabase():
        return url
    return await upload_to_storage(url, extension)
