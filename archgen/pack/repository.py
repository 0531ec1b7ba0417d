"""Template repository accessor: local packs and cached remote packs.

Remote packs are downloaded as an archive with ``httpx.AsyncClient``,
extracted into a staging directory, checked for the expected layout and
renamed into the cache.  A failed refresh falls back to the cached copy and
marks the returned pack ``stale``.

Typical usage::

    config = EngineConfig.from_env()
    repository = TemplateRepository(PackCache(config.cache_dir), config)
    pack = await repository.resolve_pack(SourceDescriptor(url="https://github.com/acme/templates"))
"""

from __future__ import annotations

import asyncio
import io
import logging
import tarfile
import threading
import zipfile
from collections.abc import Iterable
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import urlparse

import httpx

from archgen.config import EngineConfig
from archgen.errors import InvalidPackStructure, SourceUnavailable
from archgen.models import CachePolicy, CacheState, SourceDescriptor, TemplateEntry, TemplatePack
from archgen.pack.cache import PackCache
from archgen.pack.loader import ARCHITECTURES_DIR, check_pack_root, load_pack_directory
from archgen.scaffolder.templates import TemplateRenderer

logger = logging.getLogger(__name__)

_ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".zip")


def archive_url(source: SourceDescriptor) -> str:
    """Download URL for a remote source.

    Examples::

        https://host/packs/v1.tar.gz           -> unchanged
        https://github.com/acme/templates @ v2 -> https://github.com/acme/templates/archive/refs/heads/v2.tar.gz
        https://gitlab.acme.io/t/templates @ x -> https://gitlab.acme.io/t/templates/archive/x.tar.gz
    """
    url = (source.url or "").rstrip("/")
    if url.endswith(_ARCHIVE_SUFFIXES):
        return url
    if url.endswith(".git"):
        url = url[: -len(".git")]
    if urlparse(url).netloc.lower() in ("github.com", "www.github.com"):
        return f"{url}/archive/refs/heads/{source.ref}.tar.gz"
    return f"{url}/archive/{source.ref}.tar.gz"


# ---------------------------------------------------------------------------
# Archive extraction
# ---------------------------------------------------------------------------


def _safe_member(name: str, origin: str) -> PurePosixPath:
    path = PurePosixPath(name)
    if path.is_absolute() or ".." in path.parts:
        raise InvalidPackStructure(origin, f"archive member escapes the extraction root: {name}")
    return path


def extract_archive(data: bytes, url: str, destination: Path) -> None:
    """Extract a ``.zip`` or gzipped tarball into *destination*.

    Raises:
        InvalidPackStructure: Unreadable archive, or a member (or link target)
            that would land outside *destination*.
    """
    destination.mkdir(parents=True, exist_ok=True)
    try:
        if url.endswith(".zip") or data[:2] == b"PK":
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                for info in archive.infolist():
                    _safe_member(info.filename, url)
                archive.extractall(destination)
            return
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as archive:
            members = []
            for member in archive.getmembers():
                _safe_member(member.name, url)
                if member.issym() or member.islnk():
                    target = PurePosixPath(member.name).parent / member.linkname
                    _safe_member(str(target), url)
                members.append(member)
            archive.extractall(destination, members=members, filter="data")
    except (tarfile.TarError, zipfile.BadZipFile, EOFError, OSError) as exc:
        raise InvalidPackStructure(url, f"cannot extract archive: {exc}") from exc


def unwrap_single_directory(root: Path) -> Path:
    """Descend into a lone top-level directory (as produced by git host archives)."""
    if (root / ARCHITECTURES_DIR).is_dir():
        return root
    children = [child for child in root.iterdir() if not child.name.startswith(".")]
    if len(children) == 1 and children[0].is_dir():
        return children[0]
    return root


# ---------------------------------------------------------------------------
# TemplateRepository
# ---------------------------------------------------------------------------


class TemplateRepository:
    """Resolves a ``SourceDescriptor`` to a ``TemplatePack`` snapshot.

    Args:
        cache: Cache handle for remote packs.
        config: Engine configuration (fetch timeout).
        transport: Optional ``httpx`` transport, e.g. ``httpx.MockTransport`` in tests.
        renderer: Renderer whose static scan computes declared variables at load time.
    """

    def __init__(
        self,
        cache: PackCache,
        config: Optional[EngineConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        renderer: Optional[TemplateRenderer] = None,
    ) -> None:
        self.cache = cache
        self.config = config or EngineConfig()
        self.transport = transport
        self.renderer = renderer or TemplateRenderer()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        """Return a fresh ``AsyncClient`` configured with the fetch timeout."""
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.fetch_timeout, connect=10.0),
            follow_redirects=True,
            transport=self.transport,
        )

    async def _download(self, source: SourceDescriptor) -> bytes:
        url = archive_url(source)
        try:
            async with self._client() as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.content
        except httpx.TimeoutException as exc:
            raise SourceUnavailable(source.describe(), f"timed out after {self.config.fetch_timeout}s") from exc
        except httpx.HTTPStatusError as exc:
            raise SourceUnavailable(source.describe(), f"HTTP {exc.response.status_code} from {url}") from exc
        except httpx.HTTPError as exc:
            raise SourceUnavailable(source.describe(), str(exc) or type(exc).__name__) from exc

    def _load_cached(self, source: SourceDescriptor, slot: Path, state: CacheState) -> TemplatePack:
        return load_pack_directory(
            slot,
            source=source,
            cache_state=state,
            pack_id=self.cache.key(source.url or "", source.ref),
            renderer=self.renderer,
        )

    def _publish(self, source: SourceDescriptor, data: bytes, abandoned: Optional[threading.Event] = None) -> Path:
        """Extract *data*, check its layout and atomically move it into the cache.

        When *abandoned* is set before the snapshot is stored, nothing is
        published; the staging directory is removed either way.
        """
        url = source.url or ""
        staging = self.cache.staging_dir()
        try:
            extract_archive(data, archive_url(source), staging / "extract")
            pack_root = unwrap_single_directory(staging / "extract")
            check_pack_root(pack_root, source.describe())
            if abandoned is not None and abandoned.is_set():
                raise SourceUnavailable(source.describe(), "fetch was cancelled")
            return self.cache.store(url, source.ref, pack_root)
        finally:
            self.cache.discard(staging)

    async def _publish_in_thread(self, source: SourceDescriptor, data: bytes) -> Path:
        """Run ``_publish`` in a worker thread; on cancellation wait for its cleanup."""
        abandoned = threading.Event()
        publish = asyncio.ensure_future(asyncio.to_thread(self._publish, source, data, abandoned))
        try:
            return await asyncio.shield(publish)
        except asyncio.CancelledError:
            abandoned.set()
            await asyncio.wait([publish])
            if not publish.cancelled() and publish.exception() is None:
                logger.info("Fetch of %s was cancelled after it was cached", source.describe())
            raise

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve_pack(
        self, source: SourceDescriptor, cache_policy: CachePolicy = CachePolicy.USE_CACHE
    ) -> TemplatePack:
        """Return the pack for *source*.

        Local paths are loaded directly and are always ``fresh``.  Remote
        sources are served from cache under ``USE_CACHE`` when present;
        otherwise they are fetched.  A failed ``REFRESH`` with a cached copy
        returns that copy marked ``stale``.

        Raises:
            SourceUnavailable: The source cannot be reached and nothing is cached.
            InvalidPackStructure: The pack does not have the expected layout.
        """
        if source.is_local:
            path = Path(source.path)  # type: ignore[arg-type]
            if not path.is_dir():
                raise SourceUnavailable(source.describe(), "directory does not exist")
            return await asyncio.to_thread(load_pack_directory, path, source, CacheState.FRESH, None, self.renderer)

        url = source.url or ""
        cached = self.cache.lookup(url, source.ref)
        if cached is not None and cache_policy == CachePolicy.USE_CACHE:
            logger.debug("Cache hit for %s", source.describe())
            return await asyncio.to_thread(self._load_cached, source, cached, CacheState.FRESH)

        logger.info("Fetching template pack %s", source.describe())
        try:
            data = await self._download(source)
        except SourceUnavailable as exc:
            if cached is None:
                raise
            logger.warning("Refresh of %s failed (%s); using cached copy", source.describe(), exc.reason)
            return await asyncio.to_thread(self._load_cached, source, cached, CacheState.STALE)

        slot = await self._publish_in_thread(source, data)
        return await asyncio.to_thread(self._load_cached, source, slot, CacheState.FRESH)

    def list_entries(self, pack: TemplatePack, path_prefix: str = "") -> Iterable[TemplateEntry]:
        """Lazy, re-iterable view of the entries under *path_prefix*."""
        return pack.under(path_prefix)
