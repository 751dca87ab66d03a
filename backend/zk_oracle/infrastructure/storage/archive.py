"""
Content Archive — off-chain storage for proof packages.

Proof packages are immutable JSON envelopes. They are pushed to a
content-addressed store and referenced on-chain by content identifier.

Architecture:
    - Abstract base with two implementations:
        a) IPFSContentArchive — IPFS HTTP API (Kubo / pinning gateways)
        b) InMemoryContentArchive — development and testing
    - Explicit session value: the remote client re-authenticates only
      when its idle window has elapsed (``ensure_session``).
    - ``safe_upload_json`` is the soft-fail entry point used by the
      workflows: archive outages are logged and yield ``None``.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from zk_oracle.core.errors import ArchiveError, InputError

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_TEMPLATE = "https://{cid}.ipfs.w3s.link"

# CIDv0 is base58btc, CIDv1 is base32 lower-case by default: alphanumerics only
_CID_PATTERN = re.compile(r"^[A-Za-z0-9]{1,128}$")


# ═══════════════════════════════════════════════════════════════════════════════
# VALUE TYPES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ArchiveResult:
    """Reference to an uploaded package."""
    cid: str
    url: str
    filename: str
    size: int

    def to_dict(self) -> Dict[str, Any]:
        return {"cid": self.cid, "url": self.url, "filename": self.filename, "size": self.size}


@dataclass(frozen=True)
class ArchiveSession:
    """An authenticated archive session, valid until ``expires_at`` (epoch seconds)."""
    session_id: str
    node_version: str
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


async def ensure_session(
    session: Optional[ArchiveSession],
    now: float,
    open_session: Callable[[float], Awaitable[ArchiveSession]],
) -> ArchiveSession:
    """Return ``session`` unchanged unless it is missing or past its expiry."""
    if session is not None and not session.is_expired(now):
        return session
    return await open_session(now)


def _render_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, indent=2)


# ═══════════════════════════════════════════════════════════════════════════════
# ABSTRACT BASE
# ═══════════════════════════════════════════════════════════════════════════════

class BaseContentArchive(ABC):
    """Content-addressed JSON storage."""

    def __init__(self, gateway_template: str = DEFAULT_GATEWAY_TEMPLATE) -> None:
        self.gateway_template = gateway_template

    def gateway_url(self, cid: str) -> str:
        return self.gateway_template.format(cid=cid)

    @abstractmethod
    async def upload_json(self, data: Dict[str, Any], filename: str = "proof.json") -> ArchiveResult:
        """Upload ``data``; raises ArchiveError on failure."""
        ...

    @abstractmethod
    async def retrieve_json(self, cid: str) -> Dict[str, Any]:
        """Fetch a previously uploaded package; raises ArchiveError if unresolvable."""
        ...

    @abstractmethod
    def is_ready(self) -> bool:
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# IPFS HTTP API ARCHIVE
# ═══════════════════════════════════════════════════════════════════════════════

class IPFSContentArchive(BaseContentArchive):
    """
    Archive backed by an IPFS HTTP API endpoint.

    Upload:    POST {api_url}/api/v0/add?pin=true&cid-version=1   (multipart)
    Handshake: POST {api_url}/api/v0/version                      (on session open)
    Retrieve:  GET  gateway_template.format(cid=...)

    Every remote step is bounded by ``step_timeout`` seconds.
    """

    def __init__(
        self,
        api_url: str,
        api_token: Optional[str] = None,
        gateway_template: str = DEFAULT_GATEWAY_TEMPLATE,
        session_ttl: float = 15 * 60,
        step_timeout: float = 45.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(gateway_template)
        self.api_url = api_url.rstrip("/")
        self.session_ttl = session_ttl
        self.step_timeout = step_timeout
        self._api_token = api_token
        self._transport = transport
        self._clock = clock
        self._session: Optional[ArchiveSession] = None
        logger.info(f"[ARCHIVE] IPFSContentArchive initialized ({self.api_url})")

    @property
    def session(self) -> Optional[ArchiveSession]:
        return self._session

    def _client(self) -> httpx.AsyncClient:
        headers = {}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        return httpx.AsyncClient(
            timeout=self.step_timeout, headers=headers, transport=self._transport,
        )

    async def _open_session(self, now: float) -> ArchiveSession:
        logger.info("[ARCHIVE] Opening archive session...")
        async with self._client() as client:
            response = await client.post(f"{self.api_url}/api/v0/version")
            response.raise_for_status()
            version = response.json().get("Version", "unknown")

        session = ArchiveSession(
            session_id=secrets.token_hex(8),
            node_version=version,
            created_at=now,
            expires_at=now + self.session_ttl,
        )
        logger.info(f"[ARCHIVE] Session {session.session_id} ready (node {version})")
        return session

    async def upload_json(self, data: Dict[str, Any], filename: str = "proof.json") -> ArchiveResult:
        body = _render_json(data)
        try:
            self._session = await ensure_session(self._session, self._clock(), self._open_session)

            logger.info(f"[ARCHIVE] Uploading {filename} ({len(body)} bytes)...")
            async with self._client() as client:
                response = await client.post(
                    f"{self.api_url}/api/v0/add",
                    params={"pin": "true", "cid-version": "1"},
                    files={"file": (filename, body.encode("utf-8"), "application/json")},
                )
                response.raise_for_status()
                # /add streams one JSON object per line; the last names the root
                payload = json.loads(response.text.strip().splitlines()[-1])
            cid = payload["Hash"]
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as exc:
            raise ArchiveError(f"Upload of {filename} failed: {exc}") from exc

        result = ArchiveResult(cid=cid, url=self.gateway_url(cid), filename=filename, size=len(body))
        logger.info(f"[ARCHIVE] Upload complete → {cid}")
        return result

    async def retrieve_json(self, cid: str) -> Dict[str, Any]:
        if not cid or not _CID_PATTERN.match(cid):
            raise InputError(f"Invalid content identifier: {cid!r}")

        url = self.gateway_url(cid)
        logger.info(f"[ARCHIVE] Fetching package from {url}")
        try:
            async with self._client() as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            raise ArchiveError(f"Failed to fetch JSON: {exc}") from exc

        if response.status_code != 200:
            raise ArchiveError(
                f"Failed to fetch JSON: {response.status_code} {response.reason_phrase}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ArchiveError(f"Content {cid} is not JSON") from exc

    def is_ready(self) -> bool:
        return self._session is not None and not self._session.is_expired(self._clock())


# ═══════════════════════════════════════════════════════════════════════════════
# IN-MEMORY ARCHIVE (Development / Testing)
# ═══════════════════════════════════════════════════════════════════════════════

class InMemoryContentArchive(BaseContentArchive):
    """
    Process-local archive addressing packages by the SHA-256 of their JSON body.

    Identical packages map to identical identifiers, as with a real CAS.
    """

    def __init__(self, gateway_template: str = "memory://{cid}") -> None:
        super().__init__(gateway_template)
        self._objects: Dict[str, str] = {}
        logger.info("[ARCHIVE] InMemoryContentArchive initialized (development mode)")

    async def upload_json(self, data: Dict[str, Any], filename: str = "proof.json") -> ArchiveResult:
        body = _render_json(data)
        cid = "sha256-" + hashlib.sha256(body.encode("utf-8")).hexdigest()
        self._objects[cid] = body
        return ArchiveResult(cid=cid, url=self.gateway_url(cid), filename=filename, size=len(body))

    async def retrieve_json(self, cid: str) -> Dict[str, Any]:
        body = self._objects.get(cid)
        if body is None:
            raise ArchiveError(f"Failed to fetch JSON: content {cid!r} not found")
        return json.loads(body)

    def is_ready(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._objects)


# ═══════════════════════════════════════════════════════════════════════════════
# SOFT-FAIL WRAPPER
# ═══════════════════════════════════════════════════════════════════════════════

async def safe_upload_json(
    archive: BaseContentArchive,
    label: str,
    data: Dict[str, Any],
    filename: str,
) -> Optional[ArchiveResult]:
    """Upload and return the reference, or ``None`` if the archive is unavailable."""
    try:
        return await archive.upload_json(data, filename)
    except Exception as exc:
        logger.error(f"[ARCHIVE] {label} upload failed: {exc}")
        return None


def get_content_archive(
    api_url: Optional[str] = None,
    api_token: Optional[str] = None,
    gateway_template: str = DEFAULT_GATEWAY_TEMPLATE,
    session_ttl: float = 15 * 60,
    step_timeout: float = 45.0,
) -> BaseContentArchive:
    """Factory: IPFS when an API URL is configured, in-memory otherwise."""
    if api_url:
        return IPFSContentArchive(
            api_url,
            api_token=api_token,
            gateway_template=gateway_template,
            session_ttl=session_ttl,
            step_timeout=step_timeout,
        )
    logger.warning("[ARCHIVE] ARCHIVE_API_URL not set — using in-memory archive")
    return InMemoryContentArchive()
