from __future__ import annotations
from PIL import Image, ImageOps, UnidentifiedImageError
import io


ALLOWED_IMAGE_MIME = {"image/jpeg", "image/png", "image/webp", "image/gif"}
EXT_FOR_MIME = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp", "image/gif": "gif"}
ZIP_MIME = {"application/zip", "application/x-zip-compressed"}

def sniff_mime(data: bytes) -> str | None:
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = (img.format or "").upper()
    except (UnidentifiedImageError, OSError):
        return None
    return {"JPEG": "image/jpeg", "PNG": "image/png", "WEBP": "image/webp", "GIF": "image/gif"}.get(fmt)

def is_zip(filename: str | None, content_type: str | None) -> bool:
    return (content_type or "") in ZIP_MIME or (filename or "").lower().endswith(".zip")

def compress_picture(data: bytes, max_dim: int = 1080, target_bytes: int = 1024 * 1024) -> bytes:
    """
    Downscale so the longest side is at most ``max_dim`` and re-encode as JPEG,
    stepping quality down from 92 by 8 until under ``target_bytes`` or the
    quality has dropped below 40.
    The last attempt is returned even if it is still over target.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img = ImageOps.exif_transpose(img)
            scale = min(1.0, max_dim / max(img.width, img.height))
            if scale < 1.0:
                img = img.resize((round(img.width * scale), round(img.height * scale)), Image.Resampling.LANCZOS)
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")

            quality = 92
            out = _encode_jpeg(img, quality)
            while len(out) > target_bytes and quality > 40:
                quality -= 8
                out = _encode_jpeg(img, quality)
            return out
    except UnidentifiedImageError:
        raise ValueError("Invalid image file")

def _encode_jpeg(img: Image.Image, quality: int) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue()

def ext_for_mime(mime: str) -> str:
    return EXT_FOR_MIME.get(mime, "bin")
