"""Pydantic models for the import HTTP API."""

from dataclasses import asdict
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from plan_importer.domain.imports import (
    ImportFile,
    ImportMode,
    ImportOptions,
    ImportResult,
    MatchResult,
)
from plan_importer.domain.plans import PlanKind


class ImportFilePayload(BaseModel):
    """Uploaded file with base64 content."""

    name: str
    mime_type: str = ""
    content: str

    def to_domain(self) -> ImportFile:
        return ImportFile(name=self.name, mime_type=self.mime_type, content=self.content)


class ImportOptionsPayload(BaseModel):
    """Options for one import run."""

    mode: ImportMode | None = None
    locale: str | None = None
    plan_kind: PlanKind = PlanKind.NUTRITION
    match_threshold: float | None = Field(default=None, ge=0.0, le=1.0)

    def to_domain(self, default_mode: ImportMode = ImportMode.AUTO) -> ImportOptions:
        """Build run options; an omitted mode falls back to ``default_mode``."""
        return ImportOptions(
            mode=self.mode or default_mode,
            locale=self.locale,
            plan_kind=self.plan_kind,
            match_threshold=self.match_threshold,
        )


class ImportRequest(BaseModel):
    """Body of ``POST /imports``."""

    user_id: UUID
    files: list[ImportFilePayload]
    options: ImportOptionsPayload = Field(default_factory=ImportOptionsPayload)


class ResumeRequest(BaseModel):
    """Body of ``POST /imports/reviews/{review_id}``.

    ``overrides`` maps a referenced name to a catalog id, or to null to create
    a new catalog entry for it.
    """

    user_id: UUID
    overrides: dict[str, UUID | None] = Field(default_factory=dict)


class MatchCandidateResponse(BaseModel):
    """Alternative catalog entity."""

    entity_id: UUID
    name: str
    score: float


class MatchResultResponse(BaseModel):
    """Resolution of one referenced name."""

    query: str
    kind: str
    matched_id: UUID | None
    confidence: float
    strategy: str
    alternatives: list[MatchCandidateResponse] = Field(default_factory=list)
    created: bool = False


class ImportStatsResponse(BaseModel):
    """Import counters."""

    files_processed: int
    entities_total: int
    entities_matched: int
    entities_created: int
    credits_used: int
    weeks_imported: int
    days_imported: int


class ImportResultResponse(BaseModel):
    """Serialized import result."""

    success: bool
    status: str
    plan_id: UUID | None = None
    plan: dict[str, Any] | None = None
    parse_result: dict[str, Any] | None = None
    review_id: UUID | None = None
    pending_matches: list[MatchResultResponse] = Field(default_factory=list)
    matches: list[MatchResultResponse] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    stats: ImportStatsResponse


def build_result_response(
    result: ImportResult,
    *,
    review_id: UUID | None = None,
    threshold: float | None = None,
) -> ImportResultResponse:
    """Convert a domain result to its API representation."""
    pending: list[MatchResult] = []
    if result.pending_review is not None:
        pending = (
            result.pending_review.needs_decision(threshold)
            if threshold is not None
            else list(result.pending_review.matches.values())
        )
    return ImportResultResponse(
        success=result.success,
        status=result.status.value,
        plan_id=result.plan_id,
        plan=asdict(result.plan) if result.plan is not None else None,
        parse_result=(
            result.parse_result.model_dump() if result.parse_result is not None else None
        ),
        review_id=review_id,
        pending_matches=[_match_response(match) for match in pending],
        matches=[_match_response(match) for match in result.matches.values()],
        warnings=result.warnings,
        errors=result.errors,
        stats=ImportStatsResponse(**asdict(result.stats)),
    )


def _match_response(match: MatchResult) -> MatchResultResponse:
    return MatchResultResponse(
        query=match.query,
        kind=match.kind.value,
        matched_id=match.matched_id,
        confidence=match.confidence,
        strategy=match.strategy.value,
        alternatives=[
            MatchCandidateResponse(
                entity_id=candidate.entity_id,
                name=candidate.name,
                score=candidate.score,
            )
            for candidate in match.alternatives
        ],
        created=match.created,
    )
