"""Graph API publisher and group listing over httpx."""

from __future__ import annotations

from dataclasses import dataclass
import json
import mimetypes
import os
from pathlib import Path
from typing import Any

import httpx

from groupcast.config import GraphConfig
from groupcast.logging import get_logger
from groupcast.models import CandidateEntity, PostPayload, PublishResult

logger = get_logger(__name__)

MISSING_TOKEN_ERROR = "Access token is not configured."
EMPTY_MESSAGE_ERROR = "Message is empty."
NO_ADMIN_GROUPS_GUIDANCE = (
    "The Graph API only returns groups where you are an administrator. "
    "Add other groups by ID or group URL with `groupcast groups import`."
)


@dataclass(frozen=True)
class GroupListing:
    groups: tuple[CandidateEntity, ...]
    error: str | None = None


class GraphPublisher:
    """Publish posts to groups through the Graph API.

    Platform errors never raise out of ``publish``; they come back as failed
    ``PublishResult`` values carrying the platform's own message.
    """

    def __init__(
        self,
        access_token: str | None,
        *,
        api_base: str = GraphConfig.api_base,
        timeout_seconds: float = GraphConfig.timeout_seconds,
        client: httpx.Client | None = None,
    ) -> None:
        self._token = (access_token or "").strip()
        self._api_base = api_base.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout_seconds)

    @classmethod
    def from_config(cls, config: GraphConfig, *, client: httpx.Client | None = None) -> GraphPublisher:
        return cls(
            os.getenv(config.access_token_env),
            api_base=config.api_base,
            timeout_seconds=config.timeout_seconds,
            client=client,
        )

    @property
    def has_token(self) -> bool:
        return bool(self._token)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> GraphPublisher:
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> bool:
        self.close()
        return False

    def check_connection(self) -> tuple[bool, str]:
        if not self._token:
            return False, MISSING_TOKEN_ERROR
        try:
            response = self._client.get(self._url("me"), params={"fields": "id,name"}, headers=self._headers())
            data = _json_body(response)
        except httpx.HTTPError as exc:
            return False, str(exc) or "Could not reach the Graph API."
        if response.is_error:
            return False, graph_error_message(data)
        name = data.get("name") or data.get("id") or "user"
        return True, f"Connected as {name}."

    def list_groups(self) -> GroupListing:
        if not self._token:
            return GroupListing(groups=(), error=MISSING_TOKEN_ERROR)
        try:
            response = self._client.get(
                self._url("me/groups"), params={"fields": "id,name"}, headers=self._headers()
            )
            data = _json_body(response)
        except httpx.HTTPError as exc:
            return GroupListing(groups=(), error=str(exc) or "Could not load groups.")
        if response.is_error:
            return GroupListing(groups=(), error=graph_error_message(data))

        entries = data.get("data") if isinstance(data.get("data"), list) else []
        groups = tuple(
            CandidateEntity(id=str(entry["id"]), name=str(entry.get("name") or f"Group {entry['id']}"))
            for entry in entries
            if isinstance(entry, dict) and entry.get("id")
        )
        if not groups:
            return GroupListing(groups=(), error=NO_ADMIN_GROUPS_GUIDANCE)
        return GroupListing(groups=groups)

    def publish(self, target_id: str, payload: PostPayload) -> PublishResult:
        if not self._token:
            return PublishResult(success=False, error=MISSING_TOKEN_ERROR)
        message = payload.message.strip()
        if not message:
            return PublishResult(success=False, error=EMPTY_MESSAGE_ERROR)

        urls = [url.strip() for url in payload.image_urls if url and url.strip().startswith("http")]
        files = list(payload.image_files)
        try:
            if not urls and not files:
                return self._post_feed(target_id, {"message": message})
            if len(urls) + len(files) == 1:
                return self._post_single_photo(target_id, message, urls[0] if urls else Path(files[0]))

            media_ids = self._upload_unpublished(target_id, urls, files)
            if not media_ids:
                logger.warning("No images uploaded for %s; posting text only.", target_id)
                return self._post_feed(target_id, {"message": message})
            return self._post_feed(
                target_id,
                {"message": message, "attached_media": [{"media_fbid": media_id} for media_id in media_ids]},
            )
        except (httpx.HTTPError, OSError) as exc:
            return PublishResult(success=False, error=str(exc) or "Publish request failed.")

    def _post_feed(self, target_id: str, body: dict[str, Any]) -> PublishResult:
        response = self._client.post(self._url(f"{target_id}/feed"), json=body, headers=self._headers())
        return _publish_result(response)

    def _post_single_photo(self, target_id: str, message: str, source: str | Path) -> PublishResult:
        endpoint = self._url(f"{target_id}/photos")
        if isinstance(source, str):
            response = self._client.post(
                endpoint, json={"url": source, "caption": message}, headers=self._headers()
            )
            return _publish_result(response)

        with source.open("rb") as handle:
            response = self._client.post(
                endpoint,
                data={"caption": message},
                files={"source": (source.name, handle, _content_type(source))},
                headers=self._headers(),
            )
        return _publish_result(response)

    def _upload_unpublished(self, target_id: str, urls: list[str], files: list[Path]) -> list[str]:
        endpoint = self._url(f"{target_id}/photos")
        media_ids: list[str] = []
        for url in urls:
            response = self._client.post(
                endpoint, json={"url": url, "published": False}, headers=self._headers()
            )
            media_id = _uploaded_id(response)
            if media_id is None:
                logger.info("Image upload skipped for %s: %s", target_id, url)
                continue
            media_ids.append(media_id)

        for path in files:
            try:
                with Path(path).open("rb") as handle:
                    response = self._client.post(
                        endpoint,
                        data={"published": "false"},
                        files={"source": (Path(path).name, handle, _content_type(path))},
                        headers=self._headers(),
                    )
            except OSError as exc:
                logger.info("Image file skipped for %s: %s", target_id, exc)
                continue
            media_id = _uploaded_id(response)
            if media_id is None:
                logger.info("Image upload skipped for %s: %s", target_id, path)
                continue
            media_ids.append(media_id)
        return media_ids

    def _url(self, path: str) -> str:
        return f"{self._api_base}/{path.lstrip('/')}"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}


def graph_error_message(data: dict[str, Any]) -> str:
    """Return the platform's error text: message, then user message, then the raw body."""
    error = data.get("error")
    if isinstance(error, dict):
        if error.get("message"):
            return str(error["message"])
        if error.get("error_user_msg"):
            return str(error["error_user_msg"])
    return json.dumps(error if error is not None else data, sort_keys=True)


def _publish_result(response: httpx.Response) -> PublishResult:
    data = _json_body(response)
    if response.is_error:
        return PublishResult(success=False, error=graph_error_message(data))
    post_id = data.get("post_id") or data.get("id")
    return PublishResult(success=True, post_id=str(post_id) if post_id else None)


def _uploaded_id(response: httpx.Response) -> str | None:
    if response.is_error:
        return None
    media_id = _json_body(response).get("id")
    return str(media_id) if media_id else None


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {"error": {"message": response.text or f"HTTP {response.status_code}"}}
    return data if isinstance(data, dict) else {"data": data}


def _content_type(path: Path) -> str:
    guessed, _ = mimetypes.guess_type(str(path))
    return guessed or "application/octet-stream"
