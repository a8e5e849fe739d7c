import asyncio
import json
import mimetypes
import os
import random
from asyncio import sleep
from typing import Any, Dict, List, Optional, Type, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .console import ConsoleLogger, Logger
from .errors import (
    MaxRetriesExceededError,
    RaindropError,
    RequestTimeoutError,
    SchemaValidationError,
    ValidationError,
    classify_status,
    classify_transport,
)
from .models import (
    Collection,
    CollectionCreate,
    CollectionUpdate,
    CoverGroup,
    ItemEnvelope,
    ItemsEnvelope,
    Raindrop,
    RaindropCreate,
    RaindropUpdate,
    ResultEnvelope,
    Suggestions,
    SuggestionsEnvelope,
    Tag,
    User,
    UserEnvelope,
    UserStats,
    parse_response,
)

M = TypeVar("M", bound=BaseModel)

MUTATING_METHODS = ("POST", "PUT", "DELETE")
DEFAULT_RETRY_AFTER = 10


def calculate_backoff(attempt: int, base: float = 1.0, max_delay: float = 30.0) -> float:
    """Delay in seconds before retry number `attempt`: base * 2^attempt plus up to 1s of jitter."""
    return min(base * 2 ** attempt + random.random(), max_delay)


def retry_after_seconds(response: httpx.Response) -> int:
    try:
        return int(response.headers.get("Retry-After", DEFAULT_RETRY_AFTER))
    except ValueError:
        return DEFAULT_RETRY_AFTER


def redact(payload: Dict[str, Any]) -> Dict[str, Any]:
    # never log tokens if they happen to be in payload
    return {k: v for k, v in payload.items() if "token" not in k.lower()}


def dry_run_response(method: str, path: str) -> Dict[str, Any]:
    """Placeholder envelope shaped like what a real call to `path` returns."""
    if method == "DELETE":
        return {"result": True}
    if path == "/user":
        return {"result": True, "user": {"_id": 0, "fullName": "Dry Run User"}}
    if path.startswith("/tags"):
        return {"result": True, "items": []}
    if path.startswith("/collection"):
        return {
            "result": True,
            "item": {"_id": 0, "title": "Dry Run Collection", "count": 0},
            "items": [],
        }
    if path.startswith("/raindrop"):
        return {
            "result": True,
            "item": {"_id": 0, "title": "Dry Run Item", "link": "http://dryrun.com", "tags": []},
            "items": [],
        }
    return {"result": True, "item": {"_id": 0}, "items": []}


class ClientConfig(BaseModel):
    """Read-only settings for one client instance."""

    model_config = ConfigDict(frozen=True)

    token: str
    dry_run: bool = False
    timeout: float = 60.0
    logger: Any = Field(default_factory=ConsoleLogger, exclude=True)


class RaindropAPI:
    BASE_URL = "https://api.raindrop.io/rest/v1"
    WAYBACK_URL = "https://archive.org/wayback/available"
    MAX_ATTEMPTS = 3
    PAGE_SIZE = 50

    def __init__(
        self,
        token: str,
        dry_run: bool = False,
        logger: Optional[Logger] = None,
        timeout: float = 60.0,
    ):
        self.config = ClientConfig(
            token=token,
            dry_run=dry_run,
            timeout=timeout,
            logger=logger or ConsoleLogger(),
        )
        self.client = httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_config(cls, config: ClientConfig) -> "RaindropAPI":
        return cls(config.token, config.dry_run, config.logger, config.timeout)

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.token}",
            "Content-Type": "application/json",
        }

    @property
    def logger(self) -> Logger:
        return self.config.logger

    async def close(self):
        await self.client.aclose()

    async def __aenter__(self) -> "RaindropAPI":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    def _dry_run(self, method: str, path: str, body: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        self.logger.log(f"[DRY RUN] {method} {path}")
        if body:
            self.logger.log(f"Payload: {json.dumps(redact(body), indent=2)}")
        return dry_run_response(method, path)

    def _transport_error(self, exc: BaseException) -> RaindropError:
        error_cls, hint = classify_transport(exc)
        if error_cls is RequestTimeoutError:
            return RequestTimeoutError(self.config.timeout, hint)
        return error_cls(f"Network Error: {exc}", 503, hint)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise SchemaValidationError(f"Invalid JSON response from API: {e}") from e

    async def _retry_later(self, method: str, path: str, reason: str, attempt: int, delay: float):
        self.logger.warn(
            f"[{method} {path}] {reason}. Retrying in {delay:.0f}s "
            f"(attempt {attempt}/{self.MAX_ATTEMPTS})"
        )
        await sleep(delay)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Perform one logical API call with rate limit handling, retries and a timeout guard.
        Returns the decoded JSON body of the first successful response.
        """
        if self.config.dry_run and method in MUTATING_METHODS:
            return self._dry_run(method, path, body)

        url = f"{self.BASE_URL}{path}"
        attempt = 0
        while attempt < self.MAX_ATTEMPTS:
            try:
                response = await asyncio.wait_for(
                    self.client.request(method, url, headers=self.headers, params=params, json=body),
                    timeout=self.config.timeout,
                )
            except (httpx.RequestError, asyncio.TimeoutError) as e:
                error = self._transport_error(e)
                # a slow request is not attempted again
                if isinstance(error, RequestTimeoutError):
                    raise error from e
                attempt += 1
                if attempt >= self.MAX_ATTEMPTS:
                    raise error from e
                await self._retry_later(method, path, "Network error", attempt, calculate_backoff(attempt))
                continue

            status = response.status_code

            if status == 429:
                attempt += 1
                delay = max(retry_after_seconds(response), calculate_backoff(attempt))
                if attempt >= self.MAX_ATTEMPTS:
                    error_cls, hint = classify_status(status)
                    raise error_cls("Rate limit exceeded. Maximum retries reached.", status, hint)
                await self._retry_later(method, path, "Rate limited", attempt, delay)
                continue

            if status >= 500:
                attempt += 1
                if attempt >= self.MAX_ATTEMPTS:
                    error_cls, hint = classify_status(status)
                    raise error_cls(f"Server Error: {status}", status, hint)
                await self._retry_later(
                    method, path, f"Server error {status}", attempt, calculate_backoff(attempt)
                )
                continue

            if not response.is_success:
                # Include the API's error message if available
                detail = response.text
                try:
                    detail = response.json().get("errorMessage") or detail
                except (ValueError, AttributeError):
                    pass
                error_cls, hint = classify_status(status)
                raise error_cls(f"API Error {status}: {detail}", status, hint)

            return self._decode(response)

        raise MaxRetriesExceededError()

    async def _call(
        self,
        envelope: Type[M],
        method: str,
        path: str,
        field: str,
        *,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Request, validate against `envelope` and return its `field`."""
        data = await self._request(method, path, body=body, params=params)
        return getattr(parse_response(envelope, data, f"{method} {path}"), field)

    async def check_wayback(self, url: str) -> Optional[str]:
        """
        Check if a URL is available in the Wayback Machine.
        Returns the snapshot URL if found, None otherwise.
        """
        try:
            response = await self.client.get(self.WAYBACK_URL, params={"url": url})
            if response.status_code == 200:
                snapshots = response.json().get("archived_snapshots") or {}
                closest = snapshots.get("closest") or {}
                return closest.get("url")
        except Exception:
            # best effort: an unreachable archive means no snapshot
            pass
        return None

    async def get_user(self) -> User:
        return await self._call(UserEnvelope, "GET", "/user", "user")

    async def get_stats(self) -> List[UserStats]:
        """Bookmark counts per collection; id 0 is the account total."""
        return await self._call(ItemsEnvelope[UserStats], "GET", "/user/stats", "items")

    async def get_collections(self) -> List[Collection]:
        return await self._call(ItemsEnvelope[Collection], "GET", "/collections/all", "items")

    async def get_root_collections(self) -> List[Collection]:
        return await self._call(ItemsEnvelope[Collection], "GET", "/collections", "items")

    async def get_child_collections(self) -> List[Collection]:
        return await self._call(ItemsEnvelope[Collection], "GET", "/collections/childrens", "items")

    async def get_collection(self, collection_id: int) -> Collection:
        return await self._call(ItemEnvelope[Collection], "GET", f"/collection/{collection_id}", "item")

    async def create_collection(self, collection: CollectionCreate) -> Collection:
        return await self._call(
            ItemEnvelope[Collection],
            "POST",
            "/collection",
            "item",
            body=collection.model_dump(exclude_none=True, by_alias=True),
        )

    async def update_collection(self, collection_id: int, update: CollectionUpdate) -> Collection:
        return await self._call(
            ItemEnvelope[Collection],
            "PUT",
            f"/collection/{collection_id}",
            "item",
            body=update.model_dump(exclude_none=True, by_alias=True),
        )

    async def delete_collection(self, collection_id: int) -> bool:
        return await self._call(ResultEnvelope, "DELETE", f"/collection/{collection_id}", "result")

    async def delete_collections(self, ids: List[int]) -> bool:
        if not ids:
            raise ValidationError("At least one collection ID is required")
        return await self._call(ResultEnvelope, "DELETE", "/collections", "result", body={"ids": ids})

    async def reorder_collections(self, sort: str) -> bool:
        return await self._call(ResultEnvelope, "PUT", "/collections", "result", body={"sort": sort})

    async def expand_all_collections(self, expanded: bool) -> bool:
        return await self._call(ResultEnvelope, "PUT", "/collections", "result", body={"expanded": expanded})

    async def merge_collections(self, ids: List[int], target_id: int) -> bool:
        if not ids:
            raise ValidationError("At least one collection ID is required")
        return await self._call(
            ResultEnvelope, "PUT", "/collections/merge", "result", body={"ids": ids, "to": target_id}
        )

    async def clean_empty_collections(self) -> int:
        count = await self._call(ResultEnvelope, "PUT", "/collections/clean", "count")
        return count or 0

    async def empty_trash(self) -> bool:
        return await self._call(ResultEnvelope, "DELETE", "/collection/-99", "result")

    async def search_covers(self, query: str) -> List[str]:
        """Search for cover icons by query, flattened to PNG URLs."""
        groups = await self._call(
            ItemsEnvelope[CoverGroup], "GET", f"/collections/covers/{quote(query, safe='')}", "items"
        )
        return [icon.png for group in groups for icon in group.icons or []]

    async def upload_collection_cover(self, collection_id: int, file_path: str) -> Collection:
        """Upload a cover image for a collection (multipart, not retried)."""
        path = f"/collection/{collection_id}/cover"
        if self.config.dry_run:
            self.logger.log(f"[DRY RUN] PUT {path}")
            self.logger.log(f"File: {file_path}")
            return Collection.model_validate({"_id": collection_id, "title": "Dry Run Icon", "count": 0})

        if not os.path.isfile(file_path):
            raise ValidationError(f"Cover file not found: {file_path}")

        name = os.path.basename(file_path)
        content_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
        with open(file_path, "rb") as f:
            try:
                # no Content-Type here: httpx sets the multipart boundary
                response = await asyncio.wait_for(
                    self.client.put(
                        f"{self.BASE_URL}{path}",
                        headers={"Authorization": self.headers["Authorization"]},
                        files={"cover": (name, f, content_type)},
                    ),
                    timeout=self.config.timeout,
                )
            except (httpx.RequestError, asyncio.TimeoutError) as e:
                raise self._transport_error(e) from e

        if not response.is_success:
            error_cls, hint = classify_status(response.status_code)
            raise error_cls(f"Upload failed: {response.status_code}", response.status_code, hint)

        data = self._decode(response)
        return parse_response(ItemEnvelope[Collection], data, f"PUT {path}").item

    async def get_tags(self, collection_id: int = 0) -> List[Tag]:
        return await self._call(ItemsEnvelope[Tag], "GET", f"/tags/{collection_id}", "items")

    async def delete_tags(self, tags: List[str], collection_id: int = 0) -> bool:
        """Delete tags globally (0) or from a specific collection."""
        if not tags:
            raise ValidationError("At least one tag is required")
        return await self._call(ResultEnvelope, "DELETE", f"/tags/{collection_id}", "result", body={"tags": tags})

    async def rename_tag(self, old_name: str, new_name: str, collection_id: int = 0) -> bool:
        """Rename a tag (merges if new_name exists)."""
        return await self._call(
            ResultEnvelope,
            "PUT",
            f"/tags/{collection_id}",
            "result",
            body={"replace": new_name, "tags": [old_name]},
        )

    async def search(self, query: str = "", collection_id: int = 0, limit: int = 50) -> List[Raindrop]:
        """
        Page through search results until `limit` bookmarks are collected
        or the server runs out of results.
        """
        if limit < 1:
            raise ValidationError(f"Invalid limit: {limit}. Must be at least 1.")

        per_page = min(limit, self.PAGE_SIZE)
        page = 0
        results: List[Raindrop] = []

        while len(results) < limit:
            params = {"search": query, "page": page, "perpage": per_page}
            items = await self._call(
                ItemsEnvelope[Raindrop], "GET", f"/raindrops/{collection_id}", "items", params=params
            )
            if not items:
                break

            results.extend(items[: limit - len(results)])

            if len(items) < per_page:
                break

            page += 1

        return results

    async def get_raindrop(self, raindrop_id: int) -> Raindrop:
        return await self._call(ItemEnvelope[Raindrop], "GET", f"/raindrop/{raindrop_id}", "item")

    async def add_raindrop(self, raindrop: RaindropCreate) -> Raindrop:
        return await self._call(
            ItemEnvelope[Raindrop],
            "POST",
            "/raindrop",
            "item",
            body=raindrop.model_dump(exclude_none=True, by_alias=True),
        )

    async def update_raindrop(self, raindrop_id: int, update: RaindropUpdate) -> Raindrop:
        return await self._call(
            ItemEnvelope[Raindrop],
            "PUT",
            f"/raindrop/{raindrop_id}",
            "item",
            body=update.model_dump(exclude_none=True, by_alias=True),
        )

    async def delete_raindrop(self, raindrop_id: int) -> bool:
        return await self._call(ResultEnvelope, "DELETE", f"/raindrop/{raindrop_id}", "result")

    async def batch_update_raindrops(self, collection_id: int, ids: List[int], update: RaindropUpdate) -> bool:
        """Batch update raindrops in a collection."""
        if not ids:
            raise ValidationError("At least one bookmark ID is required")
        payload = update.model_dump(exclude_none=True, by_alias=True)
        payload["ids"] = ids
        return await self._call(ResultEnvelope, "PUT", f"/raindrops/{collection_id}", "result", body=payload)

    async def batch_delete_raindrops(self, collection_id: int, ids: List[int]) -> bool:
        """Batch delete raindrops in a collection."""
        if not ids:
            raise ValidationError("At least one bookmark ID is required")
        return await self._call(ResultEnvelope, "DELETE", f"/raindrops/{collection_id}", "result", body={"ids": ids})

    async def get_suggestions(self, raindrop_id: int) -> Suggestions:
        item = await self._call(SuggestionsEnvelope, "GET", f"/raindrop/{raindrop_id}/suggest", "item")
        return item or Suggestions()
