"""Data source resolution for json-typed projects.

Priority is strict: remote URL, then inline literal, then whatever payload is
already on disk, then an empty object. Payloads are canonicalized before they
are written and described by a ``SourceMeta`` sidecar that carries the HTTP
validators used for conditional GETs.

Nothing is written until the new payload has been fetched, size-checked and
parsed, so a failed resolve leaves the previous payload and meta as they were.
"""

import asyncio
from dataclasses import dataclass
import hashlib
import json
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx
import structlog

from mcp_control.errors import PayloadTooLargeError, UpstreamError, ValidationError
from mcp_control.files import atomic_write_bytes, atomic_write_text
from mcp_control.models import SourceKind, SourceMeta, utcnow

logger = structlog.get_logger(__name__)

MAX_SOURCE_BYTES = 2_000_000
FETCH_TIMEOUT_SEC = 15.0

DATA_FILE_NAME = "data.json"
META_FILE_NAME = "source.meta.json"


def canonical_json(document: Any) -> bytes:
    """Stable pretty serialization with a trailing newline."""
    return (json.dumps(document, indent=2, ensure_ascii=False) + "\n").encode("utf-8")


def content_hash(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()


def _reject_constant(name: str) -> None:
    raise ValueError(f"{name} is not valid JSON")


def parse_json(text: str | bytes) -> Any:
    """Strict json.loads: NaN and Infinity are rejected."""
    return json.loads(text, parse_constant=_reject_constant)


@dataclass
class ResolvedSource:
    """Where the payload lives and how it got there."""

    data_path: Path
    meta: SourceMeta
    kind: SourceKind
    changed: bool


class SourceResolver:
    """Resolves and persists the payload of json projects."""

    def __init__(
        self,
        sources_dir: Path,
        timeout: float = FETCH_TIMEOUT_SEC,
        max_bytes: int = MAX_SOURCE_BYTES,
    ):
        self.sources_dir = Path(sources_dir)
        self.timeout = timeout
        self.max_bytes = max_bytes

    def data_path(self, project_id: str) -> Path:
        return self.sources_dir / project_id / DATA_FILE_NAME

    def meta_path(self, project_id: str) -> Path:
        return self.sources_dir / project_id / META_FILE_NAME

    def load_meta(self, project_id: str) -> SourceMeta | None:
        path = self.meta_path(project_id)
        if not path.exists():
            return None
        try:
            return SourceMeta.model_validate_json(path.read_text(encoding="utf-8"))
        except ValueError:
            logger.warning("source_meta_unreadable", project_id=project_id, path=str(path))
            return None

    async def resolve(
        self,
        project_id: str,
        source_url: str | None = None,
        source_inline: str | None = None,
    ) -> ResolvedSource:
        if source_url:
            return await self._resolve_url(project_id, source_url.strip())
        if source_inline is not None:
            return self._resolve_inline(project_id, source_inline)
        return self._resolve_existing(project_id)

    # URL

    async def _resolve_url(self, project_id: str, url: str) -> ResolvedSource:
        scheme = urlparse(url).scheme.lower()
        if scheme not in ("http", "https"):
            raise ValidationError(f"source url must be http or https, got {url!r}")

        data_path = self.data_path(project_id)
        prior = self.load_meta(project_id)
        headers: dict[str, str] = {"Accept": "application/json"}
        # Validators are only reusable for the very same URL
        if prior is not None and prior.source_url == url and data_path.exists():
            if prior.etag:
                headers["If-None-Match"] = prior.etag
            if prior.last_modified:
                headers["If-Modified-Since"] = prior.last_modified
        conditional = "If-None-Match" in headers or "If-Modified-Since" in headers

        logger.info("source_fetch_start", project_id=project_id, url=url, conditional=conditional)

        try:
            status_code, response_headers, body = await self._fetch(url, headers)
        except (TimeoutError, httpx.TimeoutException) as e:
            logger.error("source_fetch_timeout", project_id=project_id, url=url)
            raise UpstreamError(f"fetch of {url} timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            logger.error("source_fetch_error", project_id=project_id, url=url, error=str(e))
            raise UpstreamError(f"fetch of {url} failed: {e}") from e

        if status_code == httpx.codes.NOT_MODIFIED:
            if not conditional or prior is None:
                raise UpstreamError(f"{url} answered 304 to an unconditional request")
            meta = prior.model_copy(
                update={"fetched_at": utcnow(), "http_status": int(httpx.codes.NOT_MODIFIED)}
            )
            self._write_meta(project_id, meta)
            logger.info("source_not_modified", project_id=project_id, url=url)
            return ResolvedSource(
                data_path=data_path, meta=meta, kind=SourceKind.URL, changed=False
            )

        if not 200 <= status_code < 300:  # noqa: PLR2004
            raise UpstreamError(f"upstream {url} returned HTTP {status_code}")

        try:
            document = parse_json(body)
        except ValueError as e:
            raise UpstreamError(f"upstream did not return valid JSON: {url}") from e

        payload = canonical_json(document)
        meta = SourceMeta(
            provenance=SourceKind.URL,
            source_url=url,
            http_status=status_code,
            byte_size=len(payload),
            content_hash=content_hash(payload),
            etag=response_headers.get("etag"),
            last_modified=response_headers.get("last-modified"),
        )
        changed = prior is None or prior.content_hash != meta.content_hash
        self._write(project_id, payload, meta)
        logger.info(
            "source_fetched",
            project_id=project_id,
            url=url,
            byte_size=meta.byte_size,
            changed=changed,
        )
        return ResolvedSource(data_path=data_path, meta=meta, kind=SourceKind.URL, changed=changed)

    async def _fetch(self, url: str, headers: dict[str, str]) -> tuple[int, httpx.Headers, bytes]:
        """GET with a streaming size guard; the body is never buffered past the limit.

        ``self.timeout`` bounds the whole exchange, not just each socket read.
        """
        async with (
            asyncio.timeout(self.timeout),
            httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client,
            client.stream("GET", url, headers=headers) as response,
        ):
            if not response.is_success:
                return response.status_code, response.headers, b""

            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > self.max_bytes:
                raise PayloadTooLargeError(
                    f"payload too large: {url} declares {declared} bytes "
                    f"(limit {self.max_bytes})"
                )

            chunks: list[bytes] = []
            received = 0
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > self.max_bytes:
                    raise PayloadTooLargeError(
                        f"payload too large: {url} exceeds {self.max_bytes} bytes"
                    )
                chunks.append(chunk)
            return response.status_code, response.headers, b"".join(chunks)

    # Inline

    def _resolve_inline(self, project_id: str, source_inline: str) -> ResolvedSource:
        raw = source_inline.encode("utf-8")
        if len(raw) > self.max_bytes:
            raise PayloadTooLargeError(
                f"payload too large: inline source is {len(raw)} bytes (limit {self.max_bytes})"
            )
        try:
            document = parse_json(source_inline)
        except ValueError as e:
            raise ValidationError(f"inline source is not valid JSON: {e}") from e

        prior = self.load_meta(project_id)
        payload = canonical_json(document)
        meta = SourceMeta(
            provenance=SourceKind.INLINE,
            byte_size=len(payload),
            content_hash=content_hash(payload),
        )
        changed = prior is None or prior.content_hash != meta.content_hash
        self._write(project_id, payload, meta)
        logger.info("source_inline_written", project_id=project_id, byte_size=meta.byte_size)
        return ResolvedSource(
            data_path=self.data_path(project_id), meta=meta, kind=SourceKind.INLINE, changed=changed
        )

    # Fallback

    def _resolve_existing(self, project_id: str) -> ResolvedSource:
        data_path = self.data_path(project_id)
        if data_path.exists():
            meta = self.load_meta(project_id)
            if meta is None:
                payload = data_path.read_bytes()
                meta = SourceMeta(
                    provenance=SourceKind.EXISTING,
                    byte_size=len(payload),
                    content_hash=content_hash(payload),
                )
                self._write_meta(project_id, meta)
            logger.info("source_reused", project_id=project_id, provenance=meta.provenance.value)
            return ResolvedSource(
                data_path=data_path, meta=meta, kind=SourceKind.EXISTING, changed=False
            )

        payload = canonical_json({})
        meta = SourceMeta(
            provenance=SourceKind.EMPTY,
            byte_size=len(payload),
            content_hash=content_hash(payload),
        )
        self._write(project_id, payload, meta)
        logger.info("source_empty_materialized", project_id=project_id)
        return ResolvedSource(data_path=data_path, meta=meta, kind=SourceKind.EMPTY, changed=True)

    def _write(self, project_id: str, payload: bytes, meta: SourceMeta) -> None:
        atomic_write_bytes(self.data_path(project_id), payload)
        self._write_meta(project_id, meta)

    def _write_meta(self, project_id: str, meta: SourceMeta) -> None:
        atomic_write_text(
            self.meta_path(project_id),
            json.dumps(meta.to_json_dict(), indent=2) + "\n",
        )
