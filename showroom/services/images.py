# showroom/services/images.py
"""
Turns stored image references into URLs a browser can load directly.

Products carry whatever the admin pasted: object-store URLs, generic image
hosts, or legacy file-share links ("anyone with the link" shares). Share links
point at an HTML viewer, so they are rewritten to the export endpoint:

    https://drive.google.com/file/d/<ID>/view?usp=sharing
        -> https://drive.google.com/uc?export=view&id=<ID>

Only the `uc?export=view` shape is produced.
"""
from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence
from urllib.parse import urlsplit

from showroom.core.settings import settings

_FILE_PATH_RE = re.compile(r"/file/d/([a-zA-Z0-9_-]+)")
_ID_PARAM_RE = re.compile(r"[?&]id=([a-zA-Z0-9_-]+)")


class ImageResolver:
    """Pure and idempotent: resolve(resolve(x)) == resolve(x)."""

    def __init__(self, share_hosts: Sequence[str] = ("drive.google.com", "docs.google.com")):
        self.share_hosts = tuple(h.lower() for h in share_hosts)

    def is_share_link(self, url: str) -> bool:
        try:
            host = (urlsplit(url).hostname or "").lower()
        except ValueError:
            # malformed (e.g. unbalanced "[" in the host): not ours to rewrite
            return False
        return any(host == h or host.endswith("." + h) for h in self.share_hosts)

    def _direct_view(self, url: str, file_id: str) -> str:
        parts = urlsplit(url)
        return f"{parts.scheme or 'https'}://{parts.netloc}/uc?export=view&id={file_id}"

    def resolve(self, ref: Optional[str]) -> Optional[str]:
        if ref is None or not ref.strip():
            return None
        url = ref.strip()
        # share links are often pasted without a scheme: "drive.google.com/file/d/<ID>/view"
        candidate = url if "://" in url else "https://" + url.lstrip("/")

        # object store, googleusercontent, imgur, ... are already direct
        if not self.is_share_link(candidate):
            return url

        file_id: Optional[str] = None
        m = _FILE_PATH_RE.search(candidate)
        if m:
            file_id = m.group(1)
        else:
            m = _ID_PARAM_RE.search(candidate)
            if m:
                file_id = m.group(1)

        # already in export form: only make sure export=view is there
        if "/uc?" in candidate and "id=" in candidate:
            if "export=view" in candidate:
                return candidate
            if file_id:
                return self._direct_view(candidate, file_id)
            return url

        if file_id:
            return self._direct_view(candidate, file_id)

        return url

    __call__ = resolve

    def gallery(self, image: Optional[str], images: Optional[Iterable[Optional[str]]]) -> List[str]:
        """
        Display fallback chain: resolved gallery -> resolved single image -> [].
        Unresolvable entries are skipped, duplicates collapsed, order kept.
        """
        out: List[str] = []
        for ref in images or ():
            resolved = self.resolve(ref)
            if resolved and resolved not in out:
                out.append(resolved)
        if out:
            return out
        primary = self.resolve(image)
        return [primary] if primary else []


def is_valid_image_url(url: Optional[str]) -> bool:
    """Syntactic check only: absolute http(s) URL with a host."""
    if not url:
        return False
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return False
    return parts.scheme in {"http", "https"} and bool(parts.netloc)


default_resolver = ImageResolver(settings.share_hosts or ("drive.google.com",))


def resolve_image_url(ref: Optional[str]) -> Optional[str]:
    return default_resolver.resolve(ref)


def product_gallery(image: Optional[str], images: Optional[Iterable[Optional[str]]]) -> List[str]:
    return default_resolver.gallery(image, images)


__all__ = ["ImageResolver", "resolve_image_url", "product_gallery", "is_valid_image_url", "default_resolver"]
