# certgen/infrastructure/render/image_loader.py
import asyncio
import base64
import binascii
import io
import os
from typing import List, Optional, Union

import aiofiles
import aiohttp
from PIL import Image, UnidentifiedImageError

from certgen.config.logger import get_logger
from certgen.config.settings import settings
from certgen.domain.errors import ImageLoadError

logger = get_logger(__name__, "IMAGE")


async def load_image_bytes(src: str, session: aiohttp.ClientSession) -> bytes:
    """Bytes of an http(s) URL, a local file, a data URL or raw base64."""
    if not src:
        raise ImageLoadError("Sumber gambar kosong.", field="src")
    try:
        if src.startswith(("http://", "https://")):
            timeout = aiohttp.ClientTimeout(total=settings.REQUEST_TIMEOUT)
            async with session.get(src, timeout=timeout) as response:
                response.raise_for_status()
                return await response.read()
        if os.path.isfile(src):
            async with aiofiles.open(src, "rb") as f:
                return await f.read()
        if src.startswith("data:image"):
            _, encoded = src.split(",", 1)
            return base64.b64decode(encoded + "===")
        return base64.b64decode(src + "===", validate=False)
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError, binascii.Error) as e:
        logger.warning(f"Gagal memuat gambar dari sumber '{src[:70]}...': {type(e).__name__}")
        raise ImageLoadError(f"Gagal memuat gambar '{src[:70]}': {type(e).__name__}", field="src") from e


async def load_many_bytes(sources: List[str]) -> List[Union[bytes, ImageLoadError]]:
    """Loads concurrently; a failed source yields its ``ImageLoadError`` in place of bytes."""
    async with aiohttp.ClientSession() as session:
        tasks = [load_image_bytes(src, session) for src in sources]
        results = await asyncio.gather(*tasks, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException) and not isinstance(result, ImageLoadError):
            raise result
    return results


def decode_image(data: Optional[bytes], mode: str = "RGBA") -> Image.Image:
    if not data:
        raise ImageLoadError("Data gambar kosong.")
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ImageLoadError(f"Data gambar tidak bisa dibaca: {type(e).__name__}") from e
    return img.convert(mode) if img.mode != mode else img
