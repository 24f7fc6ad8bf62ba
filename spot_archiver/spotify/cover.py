"""
Playlist cover copying.

Spotify only accepts cover uploads as base64-encoded JPEG of at most
256 KB (after encoding). Source covers are downloaded from the image CDN,
converted to RGB JPEG with Pillow and re-compressed until they fit.

Cover copying is always best-effort: copy_cover() logs a warning and
returns False instead of raising, so a broken image never fails an
archival run.
"""

import base64
from io import BytesIO

import requests
from PIL import Image, UnidentifiedImageError

from spot_archiver.core.exceptions import ArchiverError, SpotifyError
from spot_archiver.core.logger import get_logger

logger = get_logger(__name__)


MAX_COVER_B64_BYTES = 256 * 1024
COVER_MAX_DIMENSION = 640
JPEG_QUALITY_STEPS = (90, 75, 60, 45)
DOWNLOAD_TIMEOUT = 30


def download_image(url: str, session: requests.Session | None = None) -> bytes:
    """
    Download raw image bytes.

    Raises:
        requests.RequestException: On network or HTTP errors.
    """
    getter = session.get if session is not None else requests.get
    response = getter(url, timeout=DOWNLOAD_TIMEOUT)
    response.raise_for_status()
    return response.content


def prepare_cover(image_data: bytes, max_b64_bytes: int = MAX_COVER_B64_BYTES) -> str:
    """
    Convert an image to a base64 JPEG that Spotify accepts as a cover.

    Args:
        image_data: Raw image bytes in any format Pillow can read.
        max_b64_bytes: Upper bound for the encoded result.

    Returns:
        Base64-encoded JPEG (ASCII string, no data: prefix).

    Raises:
        ArchiverError: If the data is not an image or cannot be made small enough.

    Behavior:
        1. Convert transparency / palette modes to RGB
        2. Downscale to at most 640x640 with LANCZOS
        3. Save as JPEG with decreasing quality until it fits
        4. If the lowest quality is still too big, halve the dimensions and retry
    """
    try:
        with Image.open(BytesIO(image_data)) as img:
            if img.mode != "RGB":
                img = img.convert("RGB")

            if img.width > COVER_MAX_DIMENSION or img.height > COVER_MAX_DIMENSION:
                img.thumbnail((COVER_MAX_DIMENSION, COVER_MAX_DIMENSION), Image.Resampling.LANCZOS)

            while True:
                for quality in JPEG_QUALITY_STEPS:
                    output = BytesIO()
                    img.save(output, format="JPEG", quality=quality, optimize=True)
                    encoded = base64.b64encode(output.getvalue())
                    if len(encoded) <= max_b64_bytes:
                        return encoded.decode("ascii")

                if img.width <= 64 or img.height <= 64:
                    break
                img = img.resize((img.width // 2, img.height // 2), Image.Resampling.LANCZOS)

    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise ArchiverError(
            f"Cover image could not be processed: {e}",
            details={"size": len(image_data), "original_error": str(e)}
        ) from e

    raise ArchiverError(
        "Cover image could not be compressed under the upload limit",
        details={"size": len(image_data), "limit": max_b64_bytes}
    )


def copy_cover(client, source_id: str, target_id: str) -> bool:
    """
    Copy the cover image of one playlist to another.

    Args:
        client: SpotifyClient used for reading and uploading.
        source_id: Playlist whose cover is copied.
        target_id: Playlist receiving the cover.

    Returns:
        True if the cover was uploaded, False otherwise (reason logged).
    """
    try:
        url = client.playlist_cover_url(source_id)
        if not url:
            logger.debug(f"Playlist {source_id} has no cover image to copy")
            return False

        image_b64 = prepare_cover(download_image(url))
        client.upload_cover_image(target_id, image_b64)

    except (SpotifyError, ArchiverError) as e:
        logger.warning(f"Could not copy cover from {source_id} to {target_id}: {e.message}")
        return False
    except requests.RequestException as e:
        logger.warning(f"Could not download cover of playlist {source_id}: {e}")
        return False
    except Exception as e:
        logger.warning(
            f"Could not copy cover from {source_id} to {target_id}: {type(e).__name__}: {e}"
        )
        logger.debug("Cover copy error", exc_info=True)
        return False

    logger.info(f"Copied cover image of {source_id} to {target_id}")
    return True
