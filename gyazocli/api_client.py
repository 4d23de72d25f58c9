# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Gyazo API client.
Thin wrapper over the REST endpoints used by gyazocli, with rate-limit retry.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from .config import ApiConfig

logger = logging.getLogger(__name__)


class GyazoApiError(Exception):
    """A Gyazo API request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def not_found(self) -> bool:
        return self.status_code == 404


@dataclass
class UploadRequest:
    """Image upload payload."""
    image_data: bytes
    filename: str = "upload.bin"
    title: Optional[str] = None
    app: Optional[str] = None
    referer_url: Optional[str] = None
    desc: Optional[str] = None
    timestamp: Optional[int] = None  # Unix seconds, becomes created_at


def validate_upload_timestamp(value: str, now: Optional[float] = None) -> int:
    """
    Parse an upload timestamp given on the command line.

    Raises:
        ValueError: If it is not integer seconds or lies in the future.
    """
    text = (value or "").strip()
    if not text.isdigit():
        raise ValueError("--timestamp must be a unix timestamp in seconds")
    timestamp = int(text)
    if timestamp > int(now if now is not None else time.time()):
        raise ValueError("--timestamp must be current time or in the past")
    return timestamp


class GyazoClient:
    """
    Client for the Gyazo REST API.

    Every failure surfaces as GyazoApiError. HTTP 429 responses are retried
    after the server-supplied Retry-After delay.
    """

    def __init__(self, config: ApiConfig, session: Optional[requests.Session] = None):
        """
        Initialize the client.

        Args:
            config: API settings, including the access token.
            session: Optional requests session (shared connection pool).
        """
        self.config = config
        self._session = session or requests.Session()

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.config.access_token or ''}"}

    def _retry_after(self, response: requests.Response) -> int:
        value = response.headers.get("Retry-After", "")
        try:
            return max(0, int(value))
        except (TypeError, ValueError):
            return self.config.default_retry_after

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET a JSON resource, retrying on 429."""
        url = f"{self.config.base_url.rstrip('/')}{path}"
        attempts = 0

        while True:
            try:
                response = self._session.get(
                    url,
                    params=params,
                    headers=self._headers,
                    timeout=self.config.timeout_seconds,
                )
            except requests.RequestException as e:
                raise GyazoApiError(f"Request to {path} failed: {e}") from e

            if response.status_code == 429 and attempts < self.config.max_retries:
                attempts += 1
                delay = self._retry_after(response)
                logger.warning(f"Rate limited. Retrying after {delay} seconds...")
                time.sleep(delay)
                continue

            return self._parse(response, path)

    def _parse(self, response: requests.Response, path: str) -> Any:
        if response.status_code >= 400:
            raise GyazoApiError(
                f"{path} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise GyazoApiError(f"{path} returned invalid JSON", status_code=response.status_code) from e

    @staticmethod
    def _as_list(data: Any, path: str) -> List[Any]:
        """The payload as a list. Items are returned unchecked so callers see the page size."""
        if not isinstance(data, list):
            raise GyazoApiError(f"{path} returned an unexpected payload")
        return data

    def list_images(self, page: int = 1, per_page: int = 20) -> List[Dict[str, Any]]:
        """List the user's images, newest first."""
        path = "/api/images"
        return self._as_list(self._get(path, {"page": page, "per_page": per_page}), path)

    def search_images(self, query: str, page: int = 1, per_page: int = 20) -> List[Dict[str, Any]]:
        """Full-text search over the user's images."""
        path = "/api/search"
        return self._as_list(self._get(path, {"query": query, "page": page, "per": per_page}), path)

    def get_image_detail(self, image_id: str) -> Dict[str, Any]:
        """Fetch a single image with OCR and full metadata."""
        data = self._get(f"/api/images/{image_id}")
        if not isinstance(data, dict):
            raise GyazoApiError(f"/api/images/{image_id} returned an unexpected payload")
        return data

    def get_current_user(self) -> Dict[str, Any]:
        """Return the authenticated user."""
        data = self._get("/api/users/me")
        return data if isinstance(data, dict) else {}

    def upload_image(self, upload: UploadRequest) -> Dict[str, Any]:
        """Upload an image and return the created image record."""
        form = {"access_token": self.config.access_token or ""}
        optional_fields = {
            "title": upload.title,
            "app": upload.app,
            "referer_url": upload.referer_url,
            "desc": upload.desc,
        }
        form.update({k: v for k, v in optional_fields.items() if v})
        if upload.timestamp is not None:
            form["created_at"] = str(upload.timestamp)

        try:
            response = self._session.post(
                self.config.upload_url,
                data=form,
                files={"imagedata": (upload.filename, upload.image_data)},
                timeout=self.config.timeout_seconds,
            )
        except requests.RequestException as e:
            raise GyazoApiError(f"Upload failed: {e}") from e

        data = self._parse(response, "upload")
        if not isinstance(data, dict):
            raise GyazoApiError("upload returned an unexpected payload")
        return data
