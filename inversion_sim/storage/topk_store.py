"""
Bounded top-K ranking stores.

A TopKStore keeps at most K scored entries for one category. When full,
a newcomer replaces the lowest-scoring entry only if its score is
strictly greater; the replaced entry is reported so callers can delete
whatever they keep for it (run directories, caches).

Stores are plain caller-owned objects and are not safe for concurrent
mutation: inserts from parallel runs must be serialized by the caller.
"""

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Iterable, Iterator, List, Optional, TypeVar, Union
import logging
import math

from .json_storage import read_json, write_json

logger = logging.getLogger(__name__)

T = TypeVar("T")

EvictionCallback = Callable[[str, "TopKEntry"], None]


@dataclass
class TopKEntry(Generic[T]):
    """A scored payload owned by a store."""
    score: float
    payload: T

    def to_dict(self, category: Optional[str] = None) -> Dict[str, Any]:
        data: Dict[str, Any] = {"score": self.score, "payload": self.payload}
        if category is not None:
            data["category"] = category
        return data


@dataclass(frozen=True)
class InsertResult:
    """Outcome of TopKStore.try_insert."""
    accepted: bool
    evicted: Optional[TopKEntry] = None


def is_valid_score(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


class TopKStore(Generic[T]):
    """
    Score-ordered retention of the best K entries for one category.

    Example:
        store = TopKStore("randomness", capacity=3)
        store.try_insert(TopKEntry(0.7, {"run": 1}))
        result = store.try_insert(TopKEntry(0.9, {"run": 2}))
        if result.evicted is not None:
            remove_artifacts(result.evicted.payload)
        store.save("anomalies/randomness_top.json")
    """

    def __init__(
        self,
        category: str,
        capacity: int = 1000,
        path: Optional[Union[str, Path]] = None,
        on_evict: Optional[EvictionCallback] = None,
    ):
        """
        Initialize store.

        Args:
            category: Category name (restored entries must match it)
            capacity: Maximum number of entries K
            path: JSON file used by save()/load(); loaded now if it exists
            on_evict: Called with (category, evicted entry) on every eviction
        """
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")

        self.category = category
        self.capacity = int(capacity)
        self.path = Path(path) if path is not None else None
        self._items: List[TopKEntry[T]] = []
        self._evict_callbacks: List[EvictionCallback] = []
        if on_evict is not None:
            self._evict_callbacks.append(on_evict)

        if self.path is not None and self.path.is_file():
            self.load()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[TopKEntry[T]]:
        return iter(list(self._items))

    @property
    def is_full(self) -> bool:
        return len(self._items) >= self.capacity

    @property
    def entries(self) -> List[TopKEntry[T]]:
        """Entries in insertion/replacement order."""
        return list(self._items)

    def add_eviction_listener(self, callback: EvictionCallback) -> None:
        self._evict_callbacks.append(callback)

    def _worst_index(self) -> int:
        # First minimum wins on ties
        worst = 0
        for i in range(1, len(self._items)):
            if self._items[i].score < self._items[worst].score:
                worst = i
        return worst

    def min_score(self) -> Optional[float]:
        if not self._items:
            return None
        return self._items[self._worst_index()].score

    def try_insert(self, entry: TopKEntry[T]) -> InsertResult:
        """
        Insert if there is room or if the entry beats the current minimum.

        Equal-score newcomers are discarded when the store is full.

        Returns:
            InsertResult with the evicted entry, if any
        """
        if not is_valid_score(entry.score):
            raise ValueError(f"score must be a finite number, got {entry.score!r}")

        if len(self._items) < self.capacity:
            self._items.append(entry)
            return InsertResult(accepted=True)

        worst_idx = self._worst_index()
        worst = self._items[worst_idx]
        if not entry.score > worst.score:
            return InsertResult(accepted=False)

        self._items[worst_idx] = entry
        logger.debug(f"[{self.category}] evicted score={worst.score} for score={entry.score}")
        for callback in self._evict_callbacks:
            callback(self.category, worst)
        return InsertResult(accepted=True, evicted=worst)

    def insert(self, score: float, payload: T) -> InsertResult:
        """Shorthand for try_insert(TopKEntry(score, payload))."""
        return self.try_insert(TopKEntry(score, payload))

    def sorted_entries(self) -> List[TopKEntry[T]]:
        """Entries by score, best first."""
        return sorted(self._items, key=lambda e: e.score, reverse=True)

    def clear(self) -> None:
        self._items.clear()

    def to_list(self) -> List[Dict[str, Any]]:
        return [e.to_dict(self.category) for e in self.sorted_entries()]

    def save(self, path: Optional[Union[str, Path]] = None) -> Path:
        """
        Persist entries sorted by score, descending.

        Args:
            path: Target file, used exactly as given and gzipped when it
                ends in .gz (defaults to the store's path)

        Returns:
            Path to saved file
        """
        target = Path(path) if path is not None else self.path
        if target is None:
            raise ValueError(f"No path configured for store '{self.category}'")

        self._items = self.sorted_entries()
        saved = write_json(target, self.to_list())
        logger.info(f"[{self.category}] saved {len(self._items)} entries to {saved}")
        return saved

    def load(self, path: Optional[Union[str, Path]] = None) -> int:
        """
        Replace contents with entries restored from JSON.

        Malformed entries (missing or non-numeric score, other category)
        are dropped one by one; an unreadable file leaves the store empty.
        If more than K valid entries are restored, the best K are kept.

        Returns:
            Number of entries restored
        """
        source = Path(path) if path is not None else self.path
        if source is None:
            raise ValueError(f"No path configured for store '{self.category}'")

        self._items = []
        try:
            raw = read_json(source)
        except FileNotFoundError:
            return 0
        except (OSError, ValueError) as e:
            logger.warning(f"[{self.category}] could not read {source}: {e}")
            return 0

        if not isinstance(raw, list):
            logger.warning(f"[{self.category}] {source} does not contain a list of entries")
            return 0

        self._items = list(self._restore(raw))
        if len(self._items) > self.capacity:
            self._items = self.sorted_entries()[:self.capacity]
        return len(self._items)

    def _restore(self, raw: Iterable[Any]) -> Iterator[TopKEntry[T]]:
        for i, item in enumerate(raw):
            if not isinstance(item, dict):
                logger.warning(f"[{self.category}] dropping entry {i}: not an object")
                continue
            if not is_valid_score(item.get("score")):
                logger.warning(f"[{self.category}] dropping entry {i}: bad score {item.get('score')!r}")
                continue
            if item.get("category", self.category) != self.category:
                logger.warning(f"[{self.category}] dropping entry {i}: category {item['category']!r}")
                continue
            yield TopKEntry(score=item["score"], payload=item.get("payload"))


class StoreSet:
    """
    Independent per-category stores sharing one directory.

    Each category is ranked on its own; no cap is applied across
    categories.

    Example:
        stores = StoreSet.in_directory("anomalies", ["randomness", "structure"], capacity=100)
        stores["randomness"].insert(0.93, {"seed": 1, "runIndex": 4})
        stores.save_all()
    """

    def __init__(self, stores: Optional[Dict[str, TopKStore]] = None):
        self._stores: Dict[str, TopKStore] = dict(stores or {})

    @classmethod
    def in_directory(
        cls,
        base_path: Union[str, Path],
        categories: Iterable[str],
        capacity: int = 1000,
        on_evict: Optional[EvictionCallback] = None,
    ) -> "StoreSet":
        """One store per category at <base_path>/<category>_top.json, loading existing files."""
        base_path = Path(base_path)
        return cls({
            category: TopKStore(
                category,
                capacity=capacity,
                path=base_path / f"{category}_top.json",
                on_evict=on_evict,
            )
            for category in categories
        })

    def __getitem__(self, category: str) -> TopKStore:
        return self._stores[category]

    def __contains__(self, category: str) -> bool:
        return category in self._stores

    def __iter__(self) -> Iterator[str]:
        return iter(self._stores)

    def __len__(self) -> int:
        return len(self._stores)

    def items(self):
        return self._stores.items()

    def add(self, store: TopKStore) -> None:
        self._stores[store.category] = store

    def insert(self, category: str, score: float, payload: Any) -> InsertResult:
        return self._stores[category].insert(score, payload)

    def save_all(self) -> List[Path]:
        return [store.save() for store in self._stores.values() if store.path is not None]
