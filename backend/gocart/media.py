import os
from typing import Dict, Iterable, List, Optional
from urllib.parse import urljoin
from uuid import uuid4

import requests
from flask import request
from werkzeug.utils import secure_filename

from .errors import CollaboratorError

LOGO_TRANSFORMATION = [{"quality": "auto"}, {"format": "webp"}, {"width": "512"}]
PRODUCT_TRANSFORMATION = [{"quality": "auto"}, {"format": "webp"}, {"width": "1024"}]

TRANSFORMATION_KEYS = {
    "width": "w",
    "height": "h",
    "quality": "q",
    "format": "f",
    "crop": "c",
    "focus": "fo",
}


class MediaUploadError(CollaboratorError):
    pass


def build_transformation_string(transformation: Optional[Iterable[Dict]]) -> str:
    """Render a transformation chain as ``q-auto:f-webp:w-512``.

    Each mapping is one step of the chain; keys inside a step are joined with
    commas. Unknown keys are passed through unchanged.
    """
    steps: List[str] = []
    for step in transformation or []:
        parts = [
            f"{TRANSFORMATION_KEYS.get(key, key)}-{value}"
            for key, value in step.items()
            if value is not None and value != ""
        ]
        if parts:
            steps.append(",".join(parts))
    return ":".join(steps)


def normalize_upload_name(file_name: Optional[str]) -> str:
    cleaned = secure_filename(str(file_name or ""))
    return cleaned or f"{uuid4().hex}.bin"


def allowed_image_extension(filename: str, allowed_extensions) -> bool:
    extension = os.path.splitext(str(filename or ""))[1].lower().lstrip(".")
    if not extension:
        return False
    return extension in allowed_extensions


class ImageKitUploader:
    def __init__(
        self,
        private_key: str,
        url_endpoint: str,
        upload_url: str = "https://upload.imagekit.io/api/v1/files/upload",
        timeout: float = 30,
    ):
        self.private_key = private_key
        self.url_endpoint = url_endpoint.rstrip("/")
        self.upload_url = upload_url
        self.timeout = timeout

    def upload(self, data: bytes, file_name: str, folder: str) -> str:
        try:
            response = requests.post(
                self.upload_url,
                auth=(self.private_key, ""),
                files={"file": (normalize_upload_name(file_name), data)},
                data={
                    "fileName": normalize_upload_name(file_name),
                    "folder": folder,
                    "useUniqueFileName": "true",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise MediaUploadError(f"ImageKit upload failed: {exc}") from exc

        if response.status_code >= 400:
            raise MediaUploadError(
                f"ImageKit upload failed with {response.status_code}: {response.text}"
            )

        file_path = (response.json() or {}).get("filePath")
        if not file_path:
            raise MediaUploadError("ImageKit upload response did not include a filePath.")
        return file_path

    def url(self, path: str, transformation: Optional[Iterable[Dict]] = None) -> str:
        normalized_path = "/" + str(path or "").lstrip("/")
        rendered = build_transformation_string(transformation)
        if rendered:
            return f"{self.url_endpoint}/tr:{rendered}{normalized_path}"
        return f"{self.url_endpoint}{normalized_path}"


class LocalMediaStorage:
    """Stores uploads on disk and serves them through ``/uploads``.

    Transformations cannot be applied locally, so generated URLs always point
    at the original file.
    """

    def __init__(self, root: str, base_url: Optional[str] = None):
        self.root = root
        self.base_url = base_url
        os.makedirs(self.root, exist_ok=True)

    def upload(self, data: bytes, file_name: str, folder: str) -> str:
        original_filename = normalize_upload_name(file_name)
        extension = os.path.splitext(original_filename)[1].lower()
        safe_folder = secure_filename(folder) or "misc"
        directory = os.path.join(self.root, safe_folder)
        os.makedirs(directory, exist_ok=True)

        unique_filename = f"{uuid4().hex}{extension}"
        destination = os.path.join(directory, unique_filename)
        try:
            with open(destination, "wb") as handle:
                handle.write(data)
        except OSError as exc:
            raise MediaUploadError(f"Could not store {original_filename}: {exc}") from exc

        return f"/{safe_folder}/{unique_filename}"

    def url(self, path: str, transformation: Optional[Iterable[Dict]] = None) -> str:
        base = self.base_url or request.host_url
        return urljoin(base if base.endswith("/") else base + "/", "uploads/" + str(path).lstrip("/"))


def build_media_uploader(config):
    private_key = config.get("IMAGEKIT_PRIVATE_KEY")
    url_endpoint = config.get("IMAGEKIT_URL_ENDPOINT")
    if private_key and url_endpoint:
        return ImageKitUploader(
            private_key,
            url_endpoint,
            upload_url=config["IMAGEKIT_UPLOAD_URL"],
            timeout=config["COLLABORATOR_TIMEOUT_SECONDS"],
        )
    return LocalMediaStorage(config["UPLOAD_FOLDER"], config.get("MEDIA_BASE_URL") or None)
