"""Domain models describing a single import run."""

import base64
import binascii
from dataclasses import dataclass, field
from enum import StrEnum
from uuid import UUID

from plan_importer.domain.catalog import CatalogKind
from plan_importer.domain.drafts import DraftPlan
from plan_importer.domain.plans import FinalPlan, PlanKind
from plan_importer.errors import ValidationError


class ImportMode(StrEnum):
    """How ambiguous entity matches are handled."""

    AUTO = "auto"
    REVIEW = "review"


class ImportStep(StrEnum):
    """Pipeline states, in the order they are entered."""

    VALIDATING = "validating"
    PARSING = "parsing"
    MATCHING = "matching"
    REVIEWING = "reviewing"
    CONVERTING = "converting"
    SAVING = "saving"
    COMPLETED = "completed"
    ERROR = "error"


class ImportStatus(StrEnum):
    """Terminal status of an import run."""

    COMPLETED = "completed"
    REVIEW_REQUIRED = "review_required"
    FAILED = "failed"


class MatchStrategy(StrEnum):
    """How a match result was obtained."""

    EXACT = "exact"
    NORMALIZED = "normalized"
    FUZZY = "fuzzy"
    OVERRIDE = "override"
    PLACEHOLDER = "placeholder"
    UNMATCHED = "unmatched"


@dataclass(frozen=True)
class ImportFile:
    """A user-supplied file; content is raw bytes or a base64 string."""

    name: str
    mime_type: str
    content: bytes | str

    def raw_bytes(self) -> bytes:
        """Return the file content as bytes, decoding base64 payloads."""
        if isinstance(self.content, bytes):
            return self.content
        payload = self.content
        if payload.startswith("data:") and "," in payload:
            payload = payload.split(",", 1)[1]
        try:
            return base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError(f"{self.name}: content is not valid base64") from exc

    @property
    def size_bytes(self) -> int:
        """Decoded size of the file content."""
        return len(self.raw_bytes())


@dataclass(frozen=True)
class ImportOptions:
    """Configuration for one import run."""

    mode: ImportMode = ImportMode.AUTO
    locale: str | None = None
    plan_kind: PlanKind = PlanKind.NUTRITION
    match_threshold: float | None = None


@dataclass(frozen=True)
class ProgressDetails:
    """Counters attached to a progress event."""

    files_processed: int | None = None
    total_files: int | None = None
    entities_matched: int | None = None
    total_entities: int | None = None
    unmatched_entity_names: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ImportProgress:
    """Progress event emitted while an import runs."""

    step: ImportStep
    step_number: int
    total_steps: int
    progress: float
    message: str
    details: ProgressDetails | None = None


@dataclass(frozen=True)
class MatchCandidate:
    """Alternative catalog entity considered for a query."""

    entity_id: UUID
    name: str
    score: float


@dataclass(frozen=True)
class MatchResult:
    """Outcome of resolving one distinct entity reference."""

    query: str
    kind: CatalogKind
    matched_id: UUID | None
    confidence: float
    strategy: MatchStrategy
    alternatives: list[MatchCandidate] = field(default_factory=list)
    created: bool = False

    @property
    def is_matched(self) -> bool:
        """Whether the reference points at a catalog entity."""
        return self.matched_id is not None


@dataclass
class ImportStats:
    """Counters reported with an import result."""

    files_processed: int = 0
    entities_total: int = 0
    entities_matched: int = 0
    entities_created: int = 0
    credits_used: int = 0
    weeks_imported: int = 0
    days_imported: int = 0


@dataclass(frozen=True)
class PendingReview:
    """Suspended run waiting for caller decisions on ambiguous matches."""

    draft: DraftPlan
    plan_kind: PlanKind
    matches: dict[str, MatchResult]
    cost: int
    source_files: list[str]
    files_processed: int
    options: ImportOptions
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def needs_decision(self, threshold: float) -> list[MatchResult]:
        """Return matches that are unmatched or below the acceptance threshold."""
        return [
            match
            for match in self.matches.values()
            if not match.is_matched or match.confidence < threshold
        ]


@dataclass(frozen=True)
class ImportResult:
    """Terminal artifact of an import run."""

    success: bool
    status: ImportStatus
    plan_id: UUID | None = None
    plan: FinalPlan | None = None
    parse_result: DraftPlan | None = None
    pending_review: PendingReview | None = None
    matches: dict[str, MatchResult] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    stats: ImportStats = field(default_factory=ImportStats)
