# certgen/infrastructure/cloudinary/upload_file.py
from io import BytesIO
from typing import List, Optional

import cloudinary
import cloudinary.uploader
from PIL import Image

from certgen.config.settings import settings
from certgen.domain.errors import StorageError
from certgen.infrastructure.render.exporter import encode_image

# Configure once (supports CLOUDINARY_URL or split vars)
if not settings.CLOUDINARY_URL:
    cloudinary.config(
        cloud_name=settings.CLOUDINARY_CLOUD_NAME,
        api_key=settings.CLOUDINARY_API_KEY,
        api_secret=settings.CLOUDINARY_API_SECRET,
        secure=True,
    )


def upload_pil_image(
    img: Image.Image,
    public_id: str,
    folder: Optional[str] = None,
    fmt: Optional[str] = None,
    quality: Optional[int] = None,
    overwrite: bool = True,
    tags: Optional[List[str]] = None,
) -> str:
    """Encode and upload one rendered certificate; returns the secure URL."""
    data, fmt = encode_image(img, fmt, quality)
    try:
        res = cloudinary.uploader.upload(
            BytesIO(data),
            resource_type="image",
            folder=folder or settings.CERTIFICATE_FOLDER,
            public_id=public_id,
            overwrite=overwrite,
            format=fmt,              # final extension in Cloudinary
            tags=tags or [],
        )
        return res["secure_url"]
    except Exception as e:
        raise StorageError(f"Upload '{public_id}' gagal: {type(e).__name__}: {e}") from e
