"""On-disk cache of fetched remote template packs.

One directory per (url, ref).  New snapshots are extracted into a staging
directory next to the cache slots and renamed into place, so a reader sees
either the previous snapshot or the complete new one, never a partial one.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from archgen.models import CacheState
from archgen.utils import slugify

logger = logging.getLogger(__name__)

MARKER_FILE = ".archgen-source.json"


class PackCache:
    """Explicit cache handle rooted at a directory (usually ``EngineConfig.cache_dir``)."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    @staticmethod
    def key(url: str, ref: str) -> str:
        """Stable, filesystem-safe slot name for a (url, ref) pair."""
        digest = hashlib.sha256(f"{url}@{ref}".encode("utf-8")).hexdigest()[:16]
        tail = slugify(url.rstrip("/").rsplit("/", 1)[-1])[:40] or "pack"
        return f"{tail}-{slugify(ref)[:20] or 'ref'}-{digest}"

    def slot(self, url: str, ref: str) -> Path:
        return self.root / self.key(url, ref)

    def lookup(self, url: str, ref: str) -> Optional[Path]:
        """Return the cached pack directory, or ``None`` on a miss."""
        slot = self.slot(url, ref)
        if (slot / MARKER_FILE).is_file():
            return slot
        return None

    def state(self, url: str, ref: str) -> CacheState:
        return CacheState.FRESH if self.lookup(url, ref) is not None else CacheState.MISSING

    def staging_dir(self) -> Path:
        """A fresh private directory to extract a download into before ``store``."""
        self.root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=".staging-", dir=str(self.root)))

    def store(self, url: str, ref: str, staged: Path) -> Path:
        """Atomically publish *staged* as the cache slot for (url, ref).

        *staged* must live on the same filesystem as the cache root, which is
        guaranteed for directories created by ``staging_dir``.
        """
        marker = {"url": url, "ref": ref, "fetched_at": datetime.now(timezone.utc).isoformat()}
        (staged / MARKER_FILE).write_text(json.dumps(marker, indent=2), encoding="utf-8")

        slot = self.slot(url, ref)
        retired: Optional[Path] = None
        if slot.exists():
            retired = Path(tempfile.mkdtemp(prefix=".retired-", dir=str(self.root)))
            os.replace(slot, retired / "pack")
        try:
            os.replace(staged, slot)
        except OSError:
            if retired is not None:
                os.replace(retired / "pack", slot)
            raise
        finally:
            if retired is not None:
                shutil.rmtree(retired, ignore_errors=True)
        logger.info("Cached template pack %s@%s at %s", url, ref, slot)
        return slot

    def discard(self, staged: Path) -> None:
        """Remove an unpublished staging directory."""
        shutil.rmtree(staged, ignore_errors=True)

    def invalidate(self, url: str, ref: str) -> None:
        """Drop the cache slot for (url, ref), if any."""
        slot = self.slot(url, ref)
        if slot.exists():
            shutil.rmtree(slot)
            logger.info("Invalidated cached pack %s@%s", url, ref)
