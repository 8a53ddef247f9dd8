"""Resolve free-text entity references against the canonical catalog."""

import asyncio
import logging
import re
import unicodedata
from collections.abc import Mapping
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import Protocol
from uuid import UUID

from plan_importer.domain.catalog import CanonicalEntity, CatalogKind
from plan_importer.domain.imports import (
    ImportMode,
    MatchCandidate,
    MatchResult,
    MatchStrategy,
)
from plan_importer.errors import MatchingError

_logger = logging.getLogger(__name__)

_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")

_EXACT_CONFIDENCE = 1.0
_NORMALIZED_CONFIDENCE = 0.95


class CatalogRepository(Protocol):
    """Persistence interface for the canonical catalog."""

    def find_by_name(self, name: str, kind: CatalogKind) -> list[CanonicalEntity]:
        """Return entities whose name or alias equals ``name`` ignoring case."""

    def list_entities(self, kind: CatalogKind) -> list[CanonicalEntity]:
        """Return all candidate entities of a kind."""

    def create_placeholder(self, name: str, kind: CatalogKind) -> CanonicalEntity:
        """Create an unapproved entity for an unmatched reference."""


def normalize_name(name: str) -> str:
    """Strip diacritics and punctuation, collapse whitespace, casefold."""
    decomposed = unicodedata.normalize("NFKD", name)
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    stripped = _NON_WORD.sub(" ", stripped)
    return _WHITESPACE.sub(" ", stripped).strip().casefold()


def similarity(left: str, right: str) -> float:
    """Score two normalized names by token overlap or edit similarity."""
    if not left or not right:
        return 0.0
    left_tokens = set(left.split())
    right_tokens = set(right.split())
    union = left_tokens | right_tokens
    overlap = len(left_tokens & right_tokens) / len(union) if union else 0.0
    ratio = SequenceMatcher(None, left, right).ratio()
    return max(overlap, ratio)


def _tie_break(entity: CanonicalEntity) -> tuple[int, str]:
    return (len(entity.name), entity.name)


@dataclass
class EntityResolver:
    """Match names to catalog entities: exact, normalized, then fuzzy."""

    catalog: CatalogRepository
    threshold: float = 0.7
    max_alternatives: int = 3

    def resolve(
        self,
        name: str,
        kind: CatalogKind,
        *,
        threshold: float | None = None,
        candidates: list[CanonicalEntity] | None = None,
    ) -> MatchResult:
        """Resolve one reference without creating anything."""
        query = name.strip()
        limit = self.threshold if threshold is None else threshold
        if not query:
            return _unmatched(name, kind, 0.0, [])

        folded = query.casefold()
        exact = [
            entity
            for entity in self.catalog.find_by_name(query, kind)
            if any(candidate.casefold() == folded for candidate in entity.names())
        ]
        pool = candidates if candidates is not None else self.catalog.list_entities(kind)
        if not exact:
            exact = [
                entity
                for entity in pool
                if any(candidate.casefold() == folded for candidate in entity.names())
            ]
        if exact:
            best = min(exact, key=_tie_break)
            return MatchResult(
                query=name,
                kind=kind,
                matched_id=best.id,
                confidence=_EXACT_CONFIDENCE,
                strategy=MatchStrategy.EXACT,
            )

        normalized = normalize_name(query)
        same = [
            entity
            for entity in pool
            if any(normalize_name(candidate) == normalized for candidate in entity.names())
        ]
        if same:
            best = min(same, key=_tie_break)
            return MatchResult(
                query=name,
                kind=kind,
                matched_id=best.id,
                confidence=_NORMALIZED_CONFIDENCE,
                strategy=MatchStrategy.NORMALIZED,
            )

        scored = sorted(
            (
                (
                    max(similarity(normalized, normalize_name(n)) for n in entity.names()),
                    entity,
                )
                for entity in pool
                if entity.names()
            ),
            key=lambda pair: (-pair[0], *_tie_break(pair[1])),
        )
        alternatives = [
            MatchCandidate(entity_id=entity.id, name=entity.name, score=round(score, 4))
            for score, entity in scored[: self.max_alternatives]
            if score > 0
        ]
        if scored and scored[0][0] >= limit:
            score, best = scored[0]
            return MatchResult(
                query=name,
                kind=kind,
                matched_id=best.id,
                confidence=score,
                strategy=MatchStrategy.FUZZY,
                alternatives=alternatives,
            )
        best_score = scored[0][0] if scored else 0.0
        return _unmatched(name, kind, best_score, alternatives)


@dataclass
class RunResolver:
    """Per-run resolution cache: each distinct name is resolved exactly once."""

    resolver: EntityResolver
    kind: CatalogKind
    mode: ImportMode
    threshold: float
    _tasks: dict[str, "asyncio.Future[MatchResult]"] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    _candidates: list[CanonicalEntity] | None = None

    async def resolve(self, name: str) -> MatchResult:
        """Return the shared result for ``name``, resolving it on first use."""
        key = cache_key(name)
        async with self._lock:
            future = self._tasks.get(key)
            if future is None:
                future = asyncio.ensure_future(self._resolve_once(name))
                self._tasks[key] = future
        return await asyncio.shield(future)

    async def settle(self, match: MatchResult) -> MatchResult:
        """Keep a decided match, or create its placeholder exactly once."""
        if match.is_matched:
            return match
        key = cache_key(match.query)
        async with self._lock:
            future = self._tasks.get(key)
            if future is None:
                future = asyncio.ensure_future(self._settle_once(match))
                self._tasks[key] = future
        return await asyncio.shield(future)

    def seed(self, matches: Mapping[str, MatchResult]) -> None:
        """Preload decided results, e.g. when resuming a reviewed run."""
        loop = asyncio.get_running_loop()
        for match in matches.values():
            if not match.is_matched:
                continue
            future: asyncio.Future[MatchResult] = loop.create_future()
            future.set_result(match)
            self._tasks[cache_key(match.query)] = future

    def results(self) -> dict[str, MatchResult]:
        """Return completed results keyed by normalized name."""
        return {
            key: future.result()
            for key, future in self._tasks.items()
            if future.done() and not future.cancelled() and future.exception() is None
        }

    async def _resolve_once(self, name: str) -> MatchResult:
        try:
            result = self.resolver.resolve(
                name,
                self.kind,
                threshold=self.threshold,
                candidates=self._load_candidates(),
            )
        except Exception as exc:
            _logger.warning("Catalog lookup failed for %r: %s", name, exc)
            result = _unmatched(name, self.kind, 0.0, [])
        if result.is_matched or self.mode is ImportMode.REVIEW:
            return result
        return self._create_placeholder(result)

    async def _settle_once(self, match: MatchResult) -> MatchResult:
        return self._create_placeholder(match)

    def _load_candidates(self) -> list[CanonicalEntity]:
        if self._candidates is None:
            self._candidates = self.resolver.catalog.list_entities(self.kind)
        return self._candidates

    def _create_placeholder(self, result: MatchResult) -> MatchResult:
        try:
            entity = self.resolver.catalog.create_placeholder(
                result.query.strip(), self.kind
            )
        except Exception as exc:
            raise MatchingError(
                f"Could not create {self.kind.value} '{result.query}': {exc}"
            ) from exc
        _logger.info("Created placeholder %s for %r", entity.id, result.query)
        return MatchResult(
            query=result.query,
            kind=self.kind,
            matched_id=entity.id,
            confidence=result.confidence,
            strategy=MatchStrategy.PLACEHOLDER,
            alternatives=result.alternatives,
            created=True,
        )


def cache_key(name: str) -> str:
    """Key used to deduplicate references within a run."""
    return normalize_name(name) or name.strip().casefold()


def apply_overrides(
    matches: Mapping[str, MatchResult], overrides: Mapping[str, UUID | None]
) -> dict[str, MatchResult]:
    """Apply caller decisions; ``None`` leaves the reference for a placeholder."""
    decided = {cache_key(name): entity_id for name, entity_id in overrides.items()}
    updated: dict[str, MatchResult] = {}
    for key, match in matches.items():
        if key not in decided:
            updated[key] = match
            continue
        entity_id = decided[key]
        if entity_id is None:
            updated[key] = _unmatched(
                match.query, match.kind, match.confidence, match.alternatives
            )
            continue
        updated[key] = MatchResult(
            query=match.query,
            kind=match.kind,
            matched_id=entity_id,
            confidence=_EXACT_CONFIDENCE,
            strategy=MatchStrategy.OVERRIDE,
            alternatives=match.alternatives,
        )
    return updated


def _unmatched(
    name: str, kind: CatalogKind, score: float, alternatives: list[MatchCandidate]
) -> MatchResult:
    return MatchResult(
        query=name,
        kind=kind,
        matched_id=None,
        confidence=score,
        strategy=MatchStrategy.UNMATCHED,
        alternatives=alternatives,
    )
