"""
Image storage for product photos.

Uploads go straight to Cloudinary; nothing is written to local disk. The
format allow-list is enforced by Cloudinary itself through `allowed_formats`.
"""
import logging
import os
from typing import BinaryIO, List, Optional

import cloudinary
import cloudinary.uploader
from fastapi.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)

UPLOAD_FOLDER = "products"
ALLOWED_FORMATS = ["jpg", "png", "jpeg"]


class CloudinaryStorage:
    def __init__(
        self,
        cloud_name: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        folder: str = UPLOAD_FOLDER,
        allowed_formats: Optional[List[str]] = None,
    ):
        cloudinary.config(
            cloud_name=cloud_name or os.getenv("CLOUDINARY_CLOUD_NAME", ""),
            api_key=api_key or os.getenv("CLOUDINARY_API_KEY", ""),
            api_secret=api_secret or os.getenv("CLOUDINARY_API_SECRET", ""),
            secure=True,
        )
        self.folder = folder
        self.allowed_formats = allowed_formats or list(ALLOWED_FORMATS)

    async def upload(self, file: BinaryIO) -> str:
        """Send one file to Cloudinary and return its public URL.

        The SDK call is blocking, so it runs in the threadpool.
        """
        result = await run_in_threadpool(
            cloudinary.uploader.upload,
            file,
            folder=self.folder,
            allowed_formats=self.allowed_formats,
        )
        logger.info("Uploaded image %s", result.get("public_id"))
        return result["secure_url"]


_storage: Optional[CloudinaryStorage] = None


def get_image_storage() -> CloudinaryStorage:
    global _storage
    if _storage is None:
        _storage = CloudinaryStorage()
    return _storage
