"""Import orchestrator: drives files through the pipeline state machine.

States are entered in order: validating, parsing, matching, reviewing
(review mode only), converting, saving, then completed or error. ``run``
never raises for pipeline failures; it always returns an ``ImportResult``.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import UUID

from pydantic import BaseModel

from plan_importer.domain.imports import (
    ImportFile,
    ImportMode,
    ImportOptions,
    ImportResult,
    ImportStats,
    ImportStatus,
    ImportStep,
    MatchResult,
    MatchStrategy,
    PendingReview,
    ProgressDetails,
)
from plan_importer.errors import (
    MatchingError,
    PlanImportError,
    RateLimitExceededError,
    ValidationError,
)
from plan_importer.services.credits import CreditService
from plan_importer.services.documents import ExtractionPayload, build_document_router
from plan_importer.services.extraction import ExtractionService
from plan_importer.services.matching import (
    EntityResolver,
    RunResolver,
    apply_overrides,
    cache_key,
)
from plan_importer.services.mime_router import MimeRouter
from plan_importer.services.plans import PlanWriter
from plan_importer.services.profiles import ImportProfile, get_profile
from plan_importer.services.progress import ProgressCallback, ProgressReporter
from plan_importer.services.rate_limits import ImportRateLimiter

_logger = logging.getLogger(__name__)

_MATCHED_STRATEGIES = {
    MatchStrategy.EXACT,
    MatchStrategy.NORMALIZED,
    MatchStrategy.FUZZY,
    MatchStrategy.OVERRIDE,
}

# Progress percentage at which each state starts.
_PARSING_START = 5.0
_MATCHING_START = 50.0
_REVIEWING_AT = 75.0
_CONVERTING_AT = 80.0
_SAVING_AT = 90.0


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True)
class ImportLimits:
    """Batch limits and tuning for import runs."""

    max_files: int = 10
    max_file_size_bytes: int = 10 * 1024 * 1024
    max_concurrency: int = 3
    match_threshold: float = 0.7


@dataclass
class _RunContext:
    user_id: UUID
    options: ImportOptions
    profile: ImportProfile
    threshold: float
    reporter: ProgressReporter
    cancel_event: asyncio.Event | None
    draft: BaseModel | None = None
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    stats: ImportStats = field(default_factory=ImportStats)

    def warn(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)


class _ImportCancelledError(PlanImportError):
    def __init__(self) -> None:
        super().__init__("Import cancelled")


@dataclass
class ImportService:
    """Run imports end to end and report progress."""

    extraction_service: ExtractionService
    resolver: EntityResolver
    credit_service: CreditService
    plan_writer: PlanWriter
    router: MimeRouter[ExtractionPayload] = field(default_factory=build_document_router)
    limits: ImportLimits = field(default_factory=ImportLimits)
    clock: Callable[[], datetime] = _utcnow
    rate_limiter: ImportRateLimiter | None = None

    async def run(  # noqa: PLR0913
        self,
        files: Sequence[ImportFile],
        user_id: UUID,
        options: ImportOptions | None = None,
        on_progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ImportResult:
        """Import a batch of files into a single plan."""
        resolved_options = options or ImportOptions()
        ctx = self._context(
            user_id,
            resolved_options,
            on_progress,
            cancel_event,
            total_steps=_planned_steps(len(files), resolved_options.mode),
        )
        _logger.info(
            "Import started: user=%s files=%s kind=%s mode=%s",
            user_id,
            len(files),
            resolved_options.plan_kind,
            resolved_options.mode,
        )
        try:
            return await self._run(ctx, files)
        except PlanImportError as exc:
            return self._fail(ctx, str(exc))
        except Exception as exc:
            _logger.exception("Import crashed for user %s", user_id)
            return self._fail(ctx, f"Unexpected error: {exc}")

    async def resume(  # noqa: PLR0913
        self,
        review: PendingReview,
        user_id: UUID,
        overrides: Mapping[str, UUID | None] | None = None,
        on_progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ImportResult:
        """Continue a suspended run with caller decisions for ambiguous matches.

        Overrides map a referenced name to a catalog id, or to ``None`` to
        create a placeholder. Anything still unmatched gets a placeholder.
        """
        ctx = self._context(
            user_id, review.options, on_progress, cancel_event, total_steps=4
        )
        ctx.warnings.extend(review.warnings)
        ctx.errors.extend(review.errors)
        ctx.draft = review.draft
        ctx.stats.files_processed = review.files_processed
        try:
            self._check_rate_limit(user_id)
            self.credit_service.ensure_affordable(user_id, review.cost)
            matches = await self._settle_review(ctx, review, overrides or {})
            return await self._finish(
                ctx, review.draft, matches, review.cost, review.source_files
            )
        except PlanImportError as exc:
            return self._fail(ctx, str(exc))
        except Exception as exc:
            _logger.exception("Import resume crashed for user %s", user_id)
            return self._fail(ctx, f"Unexpected error: {exc}")

    def _context(
        self,
        user_id: UUID,
        options: ImportOptions,
        on_progress: ProgressCallback | None,
        cancel_event: asyncio.Event | None,
        *,
        total_steps: int,
    ) -> _RunContext:
        threshold = (
            options.match_threshold
            if options.match_threshold is not None
            else self.limits.match_threshold
        )
        return _RunContext(
            user_id=user_id,
            options=options,
            profile=get_profile(options.plan_kind),
            threshold=threshold,
            reporter=ProgressReporter(on_progress, total_steps=total_steps),
            cancel_event=cancel_event,
        )

    async def _run(self, ctx: _RunContext, files: Sequence[ImportFile]) -> ImportResult:
        ctx.reporter.emit(
            ImportStep.VALIDATING,
            0.0,
            "Validating files",
            ProgressDetails(files_processed=0, total_files=len(files)),
        )
        self._validate(files)
        self._check_rate_limit(ctx.user_id)
        cost = self.credit_service.compute_cost(files)
        self.credit_service.ensure_affordable(ctx.user_id, cost)
        self._check_cancelled(ctx)

        parsed = await self._parse(ctx, files)
        self._check_cancelled(ctx)

        matches = await self._match(ctx, parsed)
        self._check_cancelled(ctx)

        source_files = [file.name for file, _ in parsed]
        draft = ctx.profile.combine([draft for _, draft in parsed])
        ctx.draft = draft

        if ctx.options.mode is ImportMode.REVIEW:
            review = PendingReview(
                draft=draft,
                plan_kind=ctx.profile.kind,
                matches=matches,
                cost=cost,
                source_files=source_files,
                files_processed=ctx.stats.files_processed,
                options=ctx.options,
                warnings=list(ctx.warnings),
                errors=list(ctx.errors),
            )
            pending = review.needs_decision(ctx.threshold)
            if pending:
                return self._suspend(ctx, review, pending)
            ctx.reporter.drop_steps(1)

        return await self._finish(ctx, draft, matches, cost, source_files)

    def _validate(self, files: Sequence[ImportFile]) -> None:
        if not files:
            raise ValidationError("No files provided")
        if len(files) > self.limits.max_files:
            raise ValidationError(
                f"Too many files: {len(files)} (max {self.limits.max_files})"
            )
        for file in files:
            if not file.mime_type or not file.mime_type.strip():
                raise ValidationError(f"{file.name}: missing MIME type")
            if file.size_bytes > self.limits.max_file_size_bytes:
                max_mb = self.limits.max_file_size_bytes / (1024 * 1024)
                raise ValidationError(f"{file.name}: file exceeds {max_mb:g} MB")

    def _check_rate_limit(self, user_id: UUID) -> None:
        if self.rate_limiter is None:
            return
        retry_after = self.rate_limiter.retry_after(user_id)
        if retry_after is not None:
            raise RateLimitExceededError(retry_after)

    async def _parse(
        self, ctx: _RunContext, files: Sequence[ImportFile]
    ) -> list[tuple[ImportFile, BaseModel]]:
        total = len(files)
        ctx.reporter.emit(
            ImportStep.PARSING,
            _PARSING_START,
            f"Reading {total} file(s)",
            ProgressDetails(files_processed=0, total_files=total),
        )
        semaphore = asyncio.Semaphore(max(1, self.limits.max_concurrency))
        failures: dict[int, str] = {}
        completed = 0

        async def parse_one(index: int, file: ImportFile) -> BaseModel | None:
            nonlocal completed
            async with semaphore:
                if _is_cancelled(ctx):
                    return None
                draft = await self._parse_file(ctx, file, index, failures)
            if draft is None:
                # A failed file never reaches the per-file matching event.
                ctx.reporter.drop_steps(1)
            completed += 1
            ctx.reporter.emit(
                ImportStep.PARSING,
                _PARSING_START
                + (_MATCHING_START - _PARSING_START) * completed / total,
                f"Processed {file.name}",
                ProgressDetails(files_processed=completed, total_files=total),
            )
            return draft

        drafts = await asyncio.gather(
            *(parse_one(index, file) for index, file in enumerate(files))
        )
        ctx.errors.extend(failures[index] for index in sorted(failures))
        self._check_cancelled(ctx)
        parsed = [
            (file, draft)
            for file, draft in zip(files, drafts, strict=True)
            if draft is not None
        ]
        if not parsed:
            raise PlanImportError("No plan could be extracted from the uploaded files")
        ctx.stats.files_processed = len(parsed)
        return parsed

    async def _parse_file(
        self,
        ctx: _RunContext,
        file: ImportFile,
        index: int,
        failures: dict[int, str],
    ) -> BaseModel | None:
        try:
            payload = await self.router.route(file.raw_bytes(), file.mime_type)
            return await self.extraction_service.extract(
                payload,
                ctx.profile.draft_model,
                prompt=ctx.profile.prompt,
                locale=ctx.options.locale,
            )
        except PlanImportError as exc:
            _logger.warning("Import file %s failed: %s", file.name, exc)
            failures[index] = f"{file.name}: {exc}"
        except Exception as exc:
            _logger.exception("Import file %s crashed", file.name)
            failures[index] = f"{file.name}: {exc}"
        return None

    async def _match(
        self, ctx: _RunContext, parsed: list[tuple[ImportFile, BaseModel]]
    ) -> dict[str, MatchResult]:
        names_per_file = [
            list(dict.fromkeys(ctx.profile.entity_names(draft))) for _, draft in parsed
        ]
        total_entities = len({cache_key(name) for names in names_per_file for name in names})
        ctx.reporter.emit(
            ImportStep.MATCHING,
            _MATCHING_START,
            f"Matching {total_entities} {ctx.profile.catalog_kind.value} reference(s)",
            ProgressDetails(entities_matched=0, total_entities=total_entities),
        )
        run_resolver = RunResolver(
            resolver=self.resolver,
            kind=ctx.profile.catalog_kind,
            mode=ctx.options.mode,
            threshold=ctx.threshold,
        )
        semaphore = asyncio.Semaphore(max(1, self.limits.max_concurrency))
        completed = 0

        async def resolve_name(name: str) -> MatchResult | None:
            try:
                return await run_resolver.resolve(name)
            except MatchingError as exc:
                _logger.warning("%s", exc)
                ctx.warn(str(exc))
                return None

        async def match_file(file: ImportFile, names: list[str]) -> None:
            nonlocal completed
            async with semaphore:
                if _is_cancelled(ctx):
                    return
                await asyncio.gather(*(resolve_name(name) for name in names))
            completed += 1
            resolved = run_resolver.results()
            ctx.reporter.emit(
                ImportStep.MATCHING,
                _MATCHING_START
                + (_REVIEWING_AT - _MATCHING_START) * completed / len(parsed),
                f"Matched references in {file.name}",
                ProgressDetails(
                    files_processed=completed,
                    total_files=len(parsed),
                    entities_matched=sum(
                        1 for match in resolved.values() if match.is_matched
                    ),
                    total_entities=total_entities,
                    unmatched_entity_names=sorted(
                        match.query for match in resolved.values() if not match.is_matched
                    ),
                ),
            )

        await asyncio.gather(
            *(
                match_file(file, names)
                for (file, _), names in zip(parsed, names_per_file, strict=True)
            )
        )
        matches = run_resolver.results()
        _record_match_stats(ctx.stats, matches)
        return matches

    async def _settle_review(
        self,
        ctx: _RunContext,
        review: PendingReview,
        overrides: Mapping[str, UUID | None],
    ) -> dict[str, MatchResult]:
        ctx.reporter.emit(
            ImportStep.MATCHING,
            _MATCHING_START,
            "Applying review decisions",
            ProgressDetails(total_entities=len(review.matches)),
        )
        decided = apply_overrides(review.matches, overrides)
        run_resolver = RunResolver(
            resolver=self.resolver,
            kind=ctx.profile.catalog_kind,
            mode=ImportMode.AUTO,
            threshold=ctx.threshold,
        )
        run_resolver.seed(decided)
        settled: dict[str, MatchResult] = {}
        for key, match in decided.items():
            self._check_cancelled(ctx)
            try:
                settled[key] = await run_resolver.settle(match)
            except MatchingError as exc:
                _logger.warning("%s", exc)
                ctx.warn(str(exc))
        _record_match_stats(ctx.stats, settled)
        return settled

    def _suspend(
        self, ctx: _RunContext, review: PendingReview, pending: list[MatchResult]
    ) -> ImportResult:
        names = sorted(match.query for match in pending)
        ctx.reporter.emit(
            ImportStep.REVIEWING,
            _REVIEWING_AT,
            f"{len(pending)} reference(s) need review",
            ProgressDetails(
                entities_matched=ctx.stats.entities_matched,
                total_entities=ctx.stats.entities_total,
                unmatched_entity_names=names,
            ),
        )
        _logger.info("Import suspended for review: user=%s pending=%s", ctx.user_id, names)
        return ImportResult(
            success=True,
            status=ImportStatus.REVIEW_REQUIRED,
            parse_result=review.draft,
            pending_review=review,
            matches=dict(review.matches),
            warnings=list(ctx.warnings),
            errors=list(ctx.errors),
            stats=ctx.stats,
        )

    async def _finish(  # noqa: PLR0913
        self,
        ctx: _RunContext,
        draft: BaseModel,
        matches: Mapping[str, MatchResult],
        cost: int,
        source_files: list[str],
    ) -> ImportResult:
        self._check_cancelled(ctx)
        ctx.reporter.emit(ImportStep.CONVERTING, _CONVERTING_AT, "Building plan")
        plan = ctx.profile.convert(
            draft,
            matches,
            user_id=ctx.user_id,
            source_files=source_files,
            now=self.clock(),
        )

        self._check_cancelled(ctx)
        ctx.reporter.emit(ImportStep.SAVING, _SAVING_AT, "Saving plan")
        plan_id = await self.plan_writer.commit(ctx.user_id, plan)
        ctx.stats.weeks_imported = len(plan.weeks)
        ctx.stats.days_imported = sum(len(week.days) for week in plan.weeks)
        if self.rate_limiter is not None:
            self.rate_limiter.record(ctx.user_id)

        try:
            entry = self.credit_service.charge(
                ctx.user_id, cost, reason=f"{ctx.profile.kind.value} plan import"
            )
        except Exception as exc:
            _logger.exception("Credit charge failed after commit of %s", plan_id)
            ctx.warn(f"Credit charge failed: {exc}")
        else:
            ctx.stats.credits_used = cost if entry else 0

        ctx.reporter.emit(
            ImportStep.COMPLETED,
            100.0,
            "Import completed",
            ProgressDetails(
                files_processed=ctx.stats.files_processed,
                entities_matched=ctx.stats.entities_matched,
                total_entities=ctx.stats.entities_total,
            ),
        )
        _logger.info("Import completed: user=%s plan=%s", ctx.user_id, plan_id)
        return ImportResult(
            success=True,
            status=ImportStatus.COMPLETED,
            plan_id=plan_id,
            plan=plan,
            parse_result=draft,
            matches=dict(matches),
            warnings=list(ctx.warnings),
            errors=list(ctx.errors),
            stats=ctx.stats,
        )

    def _fail(self, ctx: _RunContext, message: str) -> ImportResult:
        _logger.warning("Import failed for user %s: %s", ctx.user_id, message)
        ctx.errors.append(message)
        ctx.stats.credits_used = 0
        ctx.reporter.emit(ImportStep.ERROR, ctx.reporter.progress, message)
        return ImportResult(
            success=False,
            status=ImportStatus.FAILED,
            parse_result=ctx.draft,
            warnings=list(ctx.warnings),
            errors=list(ctx.errors),
            stats=ctx.stats,
        )

    @staticmethod
    def _check_cancelled(ctx: _RunContext) -> None:
        if _is_cancelled(ctx):
            raise _ImportCancelledError


def _is_cancelled(ctx: _RunContext) -> bool:
    return ctx.cancel_event is not None and ctx.cancel_event.is_set()


def _planned_steps(file_count: int, mode: ImportMode) -> int:
    """Planned number of progress events for a run."""
    # validating, parsing, matching, converting, saving, completed
    fixed = 6
    review = 1 if mode is ImportMode.REVIEW else 0
    return fixed + review + 2 * file_count


def _record_match_stats(stats: ImportStats, matches: Mapping[str, MatchResult]) -> None:
    stats.entities_total = len(matches)
    stats.entities_matched = sum(
        1 for match in matches.values() if match.strategy in _MATCHED_STRATEGIES
    )
    stats.entities_created = sum(1 for match in matches.values() if match.created)
