from __future__ import annotations

import hashlib
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Iterable

import httpx
from fastapi import HTTPException, UploadFile

from storefront.core.config import settings
from storefront.core.errors import ValidationError

logger = logging.getLogger(__name__)

CLOUDINARY_API_BASE = "https://api.cloudinary.com/v1_1"
CLOUDINARY_DELIVERY_BASE = "https://res.cloudinary.com"
CLOUDINARY_TIMEOUT = 30.0

# Upload/URL option name -> Cloudinary transformation prefix
_TRANSFORMATION_KEYS = {
    "crop": "c",
    "width": "w",
    "height": "h",
    "gravity": "g",
    "quality": "q",
    "fetch_format": "f",
}

_VERSION_RE = re.compile(r"^v\d+/")
_EXTENSION_RE = re.compile(r"\.[^/.]+$")

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}


@dataclass(frozen=True)
class CloudinaryConfig:
    cloud_name: str
    api_key: str
    api_secret: str
    root_folder: str = "lawrose"

    @property
    def is_configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    @classmethod
    def from_settings(cls) -> "CloudinaryConfig":
        return cls(
            cloud_name=settings.CLOUDINARY_CLOUD_NAME,
            api_key=settings.CLOUDINARY_API_KEY,
            api_secret=settings.CLOUDINARY_API_SECRET,
            root_folder=settings.CLOUDINARY_ROOT_FOLDER,
        )


@dataclass(frozen=True)
class UploadResult:
    url: str
    public_id: str


@dataclass(frozen=True)
class DeleteResult:
    result: str  # "ok" | "not found"
    public_id: str


def build_transformation(options: dict[str, Any]) -> str:
    """
    {"width": 300, "crop": "fill"} -> "c_fill,w_300"
    """
    parts = []
    for key, prefix in _TRANSFORMATION_KEYS.items():
        value = options.get(key)
        if value is None or value == "":
            continue
        parts.append(f"{prefix}_{value}")
    return ",".join(sorted(parts))


def sign_params(params: dict[str, Any], api_secret: str) -> str:
    """
    Cloudinary request signature: sha1("k1=v1&k2=v2" sorted by key + api_secret).
    """
    to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] not in (None, ""))
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


class CloudinaryClient:
    """
    Thin client for Cloudinary's REST upload API.

    Images are addressed by their opaque public id; every failure surfaces as a 400
    ValidationError carrying the provider's message.
    """

    def __init__(self, config: CloudinaryConfig, *, timeout: float = CLOUDINARY_TIMEOUT) -> None:
        self.config = config
        self.timeout = timeout

    # -------------------------
    # Transport
    # -------------------------
    def _endpoint(self, action: str) -> str:
        return f"{CLOUDINARY_API_BASE}/{self.config.cloud_name}/image/{action}"

    def _signed(self, params: dict[str, Any]) -> dict[str, Any]:
        body = {k: v for k, v in params.items() if v not in (None, "")}
        body["timestamp"] = int(time.time())
        body["signature"] = sign_params(body, self.config.api_secret)
        body["api_key"] = self.config.api_key
        return body

    def _post(self, action: str, params: dict[str, Any], file: bytes | str | None = None) -> dict:
        if not self.config.is_configured:
            raise RuntimeError("Cloudinary is not configured")

        data = self._signed(params)
        files = None
        if isinstance(file, (bytes, bytearray)):
            files = {"file": ("upload", bytes(file))}
        elif isinstance(file, str):
            # Remote URL or data URI; Cloudinary fetches it.
            data["file"] = file

        response = httpx.post(self._endpoint(action), data=data, files=files, timeout=self.timeout)
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.status_code >= 400:
            message = (payload.get("error") or {}).get("message") if isinstance(payload, dict) else None
            raise RuntimeError(message or f"Cloudinary returned HTTP {response.status_code}")
        if not isinstance(payload, dict):
            raise RuntimeError("Unexpected Cloudinary response")
        return payload

    # -------------------------
    # Uploads
    # -------------------------
    def upload_image(self, file: bytes | str, **options: Any) -> UploadResult:
        opts = {
            "folder": self.config.root_folder,
            "quality": "auto",
            "fetch_format": "auto",
            "crop": "limit",
            **options,
        }
        params = {
            "folder": opts.get("folder"),
            "public_id": opts.get("public_id"),
            "overwrite": _bool_param(opts.get("overwrite")),
            "transformation": build_transformation(opts),
        }
        try:
            payload = self._post("upload", params, file=file)
        except (httpx.HTTPError, RuntimeError) as exc:
            logger.warning("Cloudinary upload failed: %s", exc)
            raise ValidationError(f"Image upload failed: {exc}") from exc

        url = payload.get("secure_url")
        public_id = payload.get("public_id")
        if not url or not public_id:
            raise ValidationError("Image upload failed: incomplete response")
        logger.info("Uploaded image public_id=%s", public_id)
        return UploadResult(url=url, public_id=public_id)

    def upload_multiple(
        self,
        files: Iterable[bytes | str],
        folder: str = "variants",
        **options: Any,
    ) -> list[UploadResult]:
        base_public_id = options.pop("public_id", None)
        options.pop("folder", None)
        results: list[UploadResult] = []
        for index, file in enumerate(files):
            results.append(
                self.upload_image(
                    file,
                    **options,
                    folder=f"{self.config.root_folder}/{folder}",
                    public_id=f"{base_public_id}_{index}" if base_public_id else None,
                )
            )
        return results

    def upload_multiple_images(self, files: Iterable[bytes | str], **options: Any) -> list[str]:
        return [r.url for r in self.upload_multiple(files, "images", **options)]

    def upload_category_image(self, file: bytes | str, category_slug: str) -> UploadResult:
        return self.upload_image(
            file,
            folder=f"{self.config.root_folder}/categories/{category_slug}",
            width=800,
            height=600,
            crop="fill",
            gravity="center",
            quality="auto:good",
            fetch_format="auto",
        )

    def upload_subcategory_image(
        self,
        file: bytes | str,
        category_slug: str,
        subcategory_slug: str,
    ) -> UploadResult:
        return self.upload_image(
            file,
            folder=f"{self.config.root_folder}/categories/{category_slug}/subcategories/{subcategory_slug}",
            width=600,
            height=450,
            crop="fill",
            gravity="center",
            quality="auto:good",
            fetch_format="auto",
        )

    # -------------------------
    # Deletes
    # -------------------------
    def delete_image(self, public_id: str) -> DeleteResult:
        try:
            payload = self._post("destroy", {"public_id": public_id})
        except (httpx.HTTPError, RuntimeError) as exc:
            logger.warning("Cloudinary delete failed for %s: %s", public_id, exc)
            raise ValidationError(f"Image deletion failed: {exc}") from exc
        return DeleteResult(result=str(payload.get("result") or "not found"), public_id=public_id)

    def delete_multiple(self, urls: Iterable[str]) -> list[DeleteResult]:
        return [self.delete_image(self.extract_public_id(url)) for url in urls]

    def delete_multiple_images(self, public_ids: Iterable[str]) -> list[DeleteResult]:
        return [self.delete_image(public_id) for public_id in public_ids]

    # -------------------------
    # URLs
    # -------------------------
    @staticmethod
    def extract_public_id(url: str) -> str:
        """
        https://res.cloudinary.com/demo/image/upload/v1234567890/folder/sample.jpg -> folder/sample
        """
        parts = (url or "").split("/")
        if "upload" not in parts:
            raise ValidationError(f"Invalid Cloudinary URL: {url}")
        path_after_upload = "/".join(parts[parts.index("upload") + 1:])
        public_id = _EXTENSION_RE.sub("", _VERSION_RE.sub("", path_after_upload))
        if not public_id:
            raise ValidationError(f"Invalid Cloudinary URL: {url}")
        return public_id

    def optimized_url(self, public_id: str, transformations: list[dict[str, Any]] | None = None) -> str:
        if not public_id:
            raise ValidationError("Failed to generate optimized URL: missing public id")
        chain = [{"quality": "auto", "fetch_format": "auto"}, *(transformations or [])]
        segments = [build_transformation(t) for t in chain]
        path = "/".join(s for s in segments if s)
        return f"{CLOUDINARY_DELIVERY_BASE}/{self.config.cloud_name}/image/upload/{path}/{public_id}"

    def thumbnail_url(self, public_id: str, width: int = 300, height: int = 300) -> str:
        return self.optimized_url(
            public_id,
            [{"width": width, "height": height, "crop": "fill", "gravity": "center"}],
        )


def _bool_param(value: Any) -> str | None:
    if value is None:
        return None
    return "true" if value else "false"


def get_media_client() -> CloudinaryClient:
    return CloudinaryClient(CloudinaryConfig.from_settings())


def read_image_upload(upload: UploadFile) -> bytes:
    content_type = (upload.content_type or "").lower()
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise ValidationError("Only JPEG, PNG, WEBP and GIF images are allowed")

    # Read one byte past the cap so oversize files fail without buffering them whole.
    data = upload.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(data) > settings.MAX_UPLOAD_BYTES:
        max_mb = settings.MAX_UPLOAD_BYTES / (1024 * 1024)
        raise HTTPException(status_code=413, detail=f"File too large. Max allowed size is {max_mb:.1f} MB.")
    if not data:
        raise ValidationError("Uploaded file is empty")
    return data
