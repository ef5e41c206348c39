from __future__ import annotations
import re
from urllib.parse import unquote

_LEADING_SLASH = re.compile(r"^/")


class ArtifactLinkResolver:
    """
    Turns whatever was stored for an artifact (bare key, legacy
    ``public/<bucket>/`` key, or a full public URL) into one canonical URL.
    Pure: no I/O, same input always gives the same output.
    """

    def __init__(self, bucket: str, public_url_for):
        self.bucket = bucket
        self._public_url_for = public_url_for
        b = re.escape(bucket)
        # at most one of these is stripped; they all name the bucket location
        self._locations = (
            re.compile(rf"^https?://[^/]+/storage/v1/object/public/{b}/"),
            re.compile(rf"^https?://[^/]+(?:/[^/]+)*?/{b}/"),
            re.compile(rf"^public/{b}/"),
            re.compile(rf"^{b}/"),
        )

    def normalize_key(self, reference: str | None) -> str | None:
        if reference is None:
            return None
        key = str(reference).strip()
        if re.match(r"^https?://", key):
            key = unquote(key.split("?", 1)[0].split("#", 1)[0])
        for pattern in self._locations:
            stripped, n = pattern.subn("", key, count=1)
            if n:
                key = stripped
                break
        key = _LEADING_SLASH.sub("", key, count=1)
        return key or None

    def resolve(self, reference: str | None) -> str | None:
        key = self.normalize_key(reference)
        if key is None:
            return None
        return self._public_url_for(key)
