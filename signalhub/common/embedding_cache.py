"""
Embedding Cache

Content-hash keyed cache in front of the embedding provider so unchanged
content is never embedded twice.

Lookup order is memory -> durable store -> flat file, stopping at the first
hit. A hit counts only when both the stored content hash and the stored model
match; anything else is a miss and forces recomputation. There is no TTL.

Writes land in memory immediately, then go to the durable store. When the
store is missing or fails, the entry goes to the flat-file tier instead.
"""

import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .errors import CacheDegradedError, ContentValidationError, DimensionMismatchError
from .schemas.records import BatchSummary, EmbeddingEntry
from .store import DurableStore

logger = logging.getLogger("signalhub.common.embedding_cache")

CACHE_FILE_VERSION = 1


def hash_content(text: str) -> str:
    """MD5 hex digest of the exact text that is embedded"""
    return hashlib.md5(text.encode("utf-8")).hexdigest()


class EmbeddingCache:
    """
    Three-tier embedding cache.

    Construct once per process and pass it to every caller. The memory tier
    is process-local and not meant for concurrent writers; the durable tier
    relies on upsert atomicity instead of locks.
    """

    def __init__(
        self,
        model: str,
        store: Optional[DurableStore] = None,
        cache_dir: Optional[str] = None,
        dimensions: Optional[int] = None,
    ):
        """
        Initialize the cache.

        Args:
            model: Embedding model identifier; entries for other models are misses
            store: Durable store, or None to use memory and flat file only
            cache_dir: Directory for flat-file caches, or None to disable that tier
            dimensions: Expected vector length; None skips the length check
        """
        self._model = model
        self._store = store
        self._cache_dir = Path(cache_dir) if cache_dir else None
        self._dimensions = dimensions
        self._memory: Dict[str, EmbeddingEntry] = {}
        self._files: Dict[str, dict] = {}
        self._store_available: Optional[bool] = None

    @property
    def model(self) -> str:
        return self._model

    @property
    def durable_available(self) -> bool:
        """Probe the durable store once; later failures degrade per call"""
        if self._store is None:
            return False
        if self._store_available is None:
            self._store_available = self._store.is_available()
            if not self._store_available:
                logger.warning("Durable store unavailable, using flat-file cache")
        return self._store_available

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_vector(self, vector: List[float]) -> List[float]:
        if not vector:
            raise ContentValidationError("Cannot cache an empty embedding")
        if self._dimensions is not None and len(vector) != self._dimensions:
            raise DimensionMismatchError(self._dimensions, len(vector))
        return [float(v) for v in vector]

    def _is_valid(self, entry: Optional[EmbeddingEntry], content_hash: str) -> bool:
        if entry is None:
            return False
        if entry.content_hash != content_hash or entry.model != self._model:
            return False
        if self._dimensions is not None and len(entry.embedding) != self._dimensions:
            return False
        return True

    @staticmethod
    def _memory_key(kind: str, entity_id: str) -> str:
        return f"{kind}:{entity_id}"

    # ------------------------------------------------------------------
    # Flat-file tier
    # ------------------------------------------------------------------

    def _file_path(self, kind: str) -> Optional[Path]:
        if self._cache_dir is None:
            return None
        return self._cache_dir / f"{kind}-embeddings-cache.json"

    def _empty_file_cache(self) -> dict:
        return {"version": CACHE_FILE_VERSION, "model": self._model, "entries": {}}

    def _load_file(self, kind: str) -> dict:
        if kind in self._files:
            return self._files[kind]

        data = self._empty_file_cache()
        path = self._file_path(kind)
        if path is not None and path.exists():
            try:
                with open(path) as f:
                    loaded = json.load(f)
                if loaded.get("version") == CACHE_FILE_VERSION and loaded.get("model") == self._model:
                    data = loaded
                    data.setdefault("entries", {})
                else:
                    logger.info("Cache file %s is for another version or model, starting fresh", path.name)
            except (json.JSONDecodeError, IOError) as e:
                logger.warning("Failed to load cache file %s: %s", path, e)

        self._files[kind] = data
        return data

    def _save_file(self, kind: str) -> None:
        path = self._file_path(kind)
        if path is None:
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w") as f:
                json.dump(self._files.get(kind, self._empty_file_cache()), f)
        except IOError as e:
            logger.error("Failed to write cache file %s: %s", path, e)

    def _file_put(self, kind: str, entry: EmbeddingEntry) -> None:
        data = self._load_file(kind)
        data["entries"][entry.entity_id] = {
            "embedding": entry.embedding,
            "content_hash": entry.content_hash,
            "created_at": entry.created_at.isoformat(),
        }

    def _file_get(self, kind: str, entity_id: str) -> Optional[EmbeddingEntry]:
        raw = self._load_file(kind)["entries"].get(entity_id)
        if not raw:
            return None
        return EmbeddingEntry(
            kind=kind,
            entity_id=entity_id,
            embedding=raw["embedding"],
            content_hash=raw["content_hash"],
            model=self._model,
            created_at=raw.get("created_at") or datetime.now(timezone.utc),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, kind: str, entity_id: str, content_hash: str) -> Optional[List[float]]:
        """
        Look up a cached vector.

        Args:
            kind: Owning entity type (e.g. "issues", "discord", "features")
            entity_id: Owning entity ID
            content_hash: Hash of the entity's current content

        Returns:
            The vector, or None when absent or stale
        """
        key = self._memory_key(kind, entity_id)
        entry = self._memory.get(key)
        if self._is_valid(entry, content_hash):
            return entry.embedding

        if self.durable_available:
            try:
                entry = self._store.get_embedding(kind, entity_id)
            except Exception as e:
                logger.warning("%s", CacheDegradedError(f"Durable read failed for {key}: {e}"))
                entry = None
            if self._is_valid(entry, content_hash):
                self._memory[key] = entry
                return entry.embedding

        entry = self._file_get(kind, entity_id)
        if self._is_valid(entry, content_hash):
            self._memory[key] = entry
            return entry.embedding

        return None

    def set(self, kind: str, entity_id: str, content_hash: str, vector: List[float]) -> None:
        """
        Store a vector for the given content.

        Raises:
            ContentValidationError: empty vector or wrong dimensionality
        """
        self.set_many(kind, [(entity_id, content_hash, vector)], raise_on_invalid=True)

    def set_many(
        self,
        kind: str,
        items: List[Tuple[str, str, List[float]]],
        raise_on_invalid: bool = False,
    ) -> BatchSummary:
        """
        Store several vectors with one durable round trip.

        Each item succeeds or fails on its own: invalid vectors are skipped,
        and items the durable store rejects are written to the flat file.

        Args:
            kind: Owning entity type
            items: (entity_id, content_hash, vector) tuples

        Returns:
            BatchSummary with skipped items listed under ``errors``
        """
        summary = BatchSummary()
        entries: List[EmbeddingEntry] = []
        now = datetime.now(timezone.utc)

        for entity_id, content_hash, vector in items:
            summary.processed += 1
            try:
                embedding = self._validate_vector(vector)
            except ContentValidationError as e:
                if raise_on_invalid:
                    raise
                logger.error("Skipping embedding for %s/%s: %s", kind, entity_id, e)
                summary.skipped += 1
                summary.record_error(entity_id, e, kind="validation")
                continue

            entry = EmbeddingEntry(
                kind=kind,
                entity_id=entity_id,
                embedding=embedding,
                content_hash=content_hash,
                model=self._model,
                created_at=now,
                updated_at=now,
            )
            self._memory[self._memory_key(kind, entity_id)] = entry
            entries.append(entry)

        if not entries:
            return summary

        fallback = entries
        if self.durable_available:
            try:
                failed = set(self._store.upsert_embeddings(entries))
                fallback = [e for e in entries if e.entity_id in failed]
            except Exception as e:
                logger.warning("%s", CacheDegradedError(f"Durable write failed for {kind}: {e}"))

        if fallback:
            for entry in fallback:
                self._file_put(kind, entry)
            self._save_file(kind)

        summary.succeeded += len(entries)
        return summary

    def get_all(self, kind: str) -> Dict[str, List[float]]:
        """All cached vectors of a kind for the current model, keyed by entity ID"""
        result: Dict[str, List[float]] = {}

        for entity_id, raw in self._load_file(kind)["entries"].items():
            result[entity_id] = raw["embedding"]

        if self.durable_available:
            try:
                for entity_id, entry in self._store.get_all_embeddings(kind, self._model).items():
                    result[entity_id] = entry.embedding
            except Exception as e:
                logger.warning("%s", CacheDegradedError(f"Durable scan failed for {kind}: {e}"))

        prefix = f"{kind}:"
        for key, entry in self._memory.items():
            if key.startswith(prefix) and entry.model == self._model:
                result[entry.entity_id] = entry.embedding

        return result

    def clear(self, kind: str) -> None:
        """Drop every cached vector of a kind from all tiers"""
        if self.durable_available:
            try:
                removed = self._store.delete_embeddings(kind, self._model)
                logger.info("Cleared %d durable %s embeddings", removed, kind)
            except Exception as e:
                logger.warning("%s", CacheDegradedError(f"Durable clear failed for {kind}: {e}"))

        self._files[kind] = self._empty_file_cache()
        self._save_file(kind)

        prefix = f"{kind}:"
        for key in [k for k in self._memory if k.startswith(prefix)]:
            del self._memory[key]

    def invalidate(self, kind: str, entity_id: str) -> None:
        """Forget one entity in every tier (owning entity was deleted)"""
        self._memory.pop(self._memory_key(kind, entity_id), None)
        data = self._load_file(kind)
        if data["entries"].pop(entity_id, None) is not None:
            self._save_file(kind)
        if self.durable_available:
            try:
                self._store.delete_entity(kind, entity_id)
            except Exception as e:
                logger.warning("%s", CacheDegradedError(f"Durable delete failed for {kind}/{entity_id}: {e}"))

    def stats(self, kind: str) -> Dict[str, object]:
        """Entry counts per tier for one kind"""
        prefix = f"{kind}:"
        durable_count = None
        if self.durable_available:
            try:
                durable_count = len(self._store.get_all_embeddings(kind, self._model))
            except Exception as e:
                logger.warning("%s", CacheDegradedError(f"Durable scan failed for {kind}: {e}"))
        return {
            "kind": kind,
            "model": self._model,
            "memory": sum(1 for k in self._memory if k.startswith(prefix)),
            "durable": durable_count,
            "file": len(self._load_file(kind)["entries"]),
            "durable_available": self.durable_available,
        }

    async def get_or_compute(self, kind: str, entity_id: str, text: str, embedder) -> List[float]:
        """
        Return the cached vector for ``text`` or embed and cache it.

        Provider errors propagate so the caller can choose a fallback.
        """
        content_hash = hash_content(text)
        cached = self.get(kind, entity_id, content_hash)
        if cached is not None:
            return cached

        vector = await embedder.aembed_single(text)
        self.set(kind, entity_id, content_hash, vector)
        return vector
