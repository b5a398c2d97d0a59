# tile_overlay/infrastructure/io/image_loader.py
import asyncio
import logging
from typing import Optional

import aiohttp

from tile_overlay.config.settings import settings
from tile_overlay.domain.errors import DecodeError
from tile_overlay.infrastructure.cv.image_process import decode_data_url

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(message)s', '%Y-%m-%d %H:%M:%S')
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False


async def load_image_bytes(src: str, session: Optional[aiohttp.ClientSession] = None) -> bytes:
    """Resolves an image source (http(s) URL, data URL or bare base64) to raw bytes."""
    if not src:
        raise DecodeError("Empty image source")

    if src.startswith(("http://", "https://")):
        timeout = aiohttp.ClientTimeout(total=settings.REQUEST_TIMEOUT)
        try:
            if session is None:
                async with aiohttp.ClientSession(timeout=timeout) as own_session:
                    return await _fetch(own_session, src)
            return await _fetch(session, src)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to fetch image from '{src[:70]}...': {type(e).__name__}")
            raise DecodeError(f"Could not fetch image: {e}") from e

    return decode_data_url(src)


async def _fetch(session: aiohttp.ClientSession, url: str) -> bytes:
    async with session.get(url) as response:
        response.raise_for_status()
        return await response.read()
