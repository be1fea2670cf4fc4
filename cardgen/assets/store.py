from __future__ import annotations

import io
import logging
import os
import tempfile
import threading
from pathlib import Path, PurePath
from typing import Any

from PIL import Image, UnidentifiedImageError
from werkzeug.utils import secure_filename

from cardgen.errors import AssetExistsError, AssetNotFoundError, InvalidFormatError, TooLargeError
from cardgen.models.logo_asset import BLANK_LOGO_NAME, LogoAsset

"""Logo asset store.

Flat directory of supplier logos. Names are sanitised with werkzeug's
``secure_filename``; a logo is looked up for a row by the row's supplier value
(``"Acme Ltda"`` -> ``Acme_Ltda.png``/``.jpg``/``.jpeg``).

Mutations are serialised by a store lock and land atomically (temp file in the
same directory, then ``os.replace``), so a concurrent reader sees either the old
or the new file, never a partial one.
"""

__all__ = [
    "ALLOWED_LOGO_EXTENSIONS",
    "LogoStore",
]

logger = logging.getLogger(__name__)

ALLOWED_LOGO_EXTENSIONS = {".png", ".jpg", ".jpeg"}
_MEDIA_TYPES = {".png": "image/png", ".jpg": "image/jpeg", ".jpeg": "image/jpeg"}
_PIL_FORMATS = {"PNG": ".png", "JPEG": ".jpg"}


def _media_type(name: str) -> str:
    return _MEDIA_TYPES[PurePath(name).suffix.lower()]


class LogoStore:
    def __init__(self, logo_dir: Path, max_bytes: int, url_prefix: str = "/api/logos") -> None:
        self.logo_dir = Path(logo_dir)
        self.max_bytes = max_bytes
        self.url_prefix = url_prefix.rstrip("/")
        self._lock = threading.Lock()

    def _safe_name(self, name: str) -> str:
        safe = secure_filename(name or "")
        if not safe or PurePath(safe).suffix.lower() not in ALLOWED_LOGO_EXTENSIONS:
            raise InvalidFormatError(f"logo name not allowed: {name!r}")
        return safe

    def _path(self, name: str) -> Path:
        return self.logo_dir / self._safe_name(name)

    def list(self) -> list[dict[str, Any]]:
        """Sorted ``[{name, path}]`` of stored logos, the blank sentinel excluded."""
        if not self.logo_dir.is_dir():
            return []
        entries = []
        for p in sorted(self.logo_dir.iterdir(), key=lambda p: p.name):
            if not p.is_file() or p.name == BLANK_LOGO_NAME:
                continue
            if p.suffix.lower() not in ALLOWED_LOGO_EXTENSIONS:
                continue
            entries.append({"name": p.name, "path": f"{self.url_prefix}/{p.name}"})
        return entries

    def exists(self, name: str) -> bool:
        try:
            return self._path(name).is_file()
        except InvalidFormatError:
            return False

    def _verify_image(self, name: str, data: bytes) -> None:
        try:
            with Image.open(io.BytesIO(data)) as img:
                fmt = img.format
                img.verify()
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            raise InvalidFormatError(f"logo {name!r} is not a readable image: {e}") from e
        expected = _PIL_FORMATS.get(fmt or "")
        suffix = PurePath(name).suffix.lower()
        if expected is None or (expected == ".png") != (suffix == ".png"):
            raise InvalidFormatError(f"logo {name!r} content ({fmt}) does not match its extension")

    def save(self, name: str, data: bytes, content_type: str | None = None, replace: bool = False) -> LogoAsset:
        """Validate and store a logo.

        Raises:
            InvalidFormatError: name/extension, declared type or content not png/jpeg
            TooLargeError: more than ``max_bytes``
            AssetExistsError: name taken and ``replace`` is False
        """
        safe = self._safe_name(name)
        size = len(data)
        if size > self.max_bytes:
            raise TooLargeError(f"logo {safe!r} has {size} bytes (limit {self.max_bytes})", size=size, limit=self.max_bytes)
        media_type = (content_type or "").split(";")[0].strip().lower()
        if media_type and media_type not in ("image/png", "image/jpeg", "image/jpg"):
            raise InvalidFormatError(f"logo content type not allowed: {media_type!r}")
        self._verify_image(safe, data)

        target = self.logo_dir / safe
        with self._lock:
            if target.exists() and not replace:
                raise AssetExistsError(f"logo {safe!r} already exists")
            self.logo_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".upload-", dir=self.logo_dir)
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp_name, target)
            except OSError:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        logger.info("Logo saved: %s (%d bytes, replace=%s)", safe, size, replace)
        return LogoAsset(name=safe, data=data, media_type=_media_type(safe), path=target)

    def delete(self, name: str) -> None:
        try:
            target = self._path(name)
        except InvalidFormatError as e:
            raise AssetNotFoundError(f"logo {name!r} not found") from e
        with self._lock:
            try:
                target.unlink()
            except FileNotFoundError as e:
                raise AssetNotFoundError(f"logo {target.name!r} not found") from e
        logger.info("Logo deleted: %s", target.name)

    def get(self, name: str) -> LogoAsset:
        try:
            target = self._path(name)
        except InvalidFormatError as e:
            raise AssetNotFoundError(f"logo {name!r} not found") from e
        try:
            data = target.read_bytes()
        except FileNotFoundError as e:
            raise AssetNotFoundError(f"logo {target.name!r} not found") from e
        return LogoAsset(name=target.name, data=data, media_type=_media_type(target.name), path=target)

    def resolve_for(self, supplier: str | None) -> LogoAsset | None:
        """Logo for a supplier value: the supplier's own, else the blank sentinel, else None."""
        if supplier:
            stem = secure_filename(str(supplier))
            if stem:
                for ext in (".png", ".jpg", ".jpeg"):
                    try:
                        return self.get(stem + ext)
                    except AssetNotFoundError:
                        continue
        try:
            return self.get(BLANK_LOGO_NAME)
        except AssetNotFoundError:
            return None
