"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from plan_importer.adapters.openai_extraction_client import create_extraction_client
from plan_importer.adapters.supabase_catalog_repository import (
    SupabaseCatalogRepository,
)
from plan_importer.adapters.supabase_credit_ledger import SupabaseCreditLedger
from plan_importer.adapters.supabase_plan_store import SupabasePlanStore
from plan_importer.config import Settings
from plan_importer.services.credits import CreditService
from plan_importer.services.extraction import ExtractionService
from plan_importer.services.importer import ImportLimits, ImportService
from plan_importer.services.matching import EntityResolver
from plan_importer.services.plans import PlanWriter
from plan_importer.services.rate_limits import InMemoryImportRateLimiter
from plan_importer.services.reviews import InMemoryReviewStore, ReviewStore


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    import_service: ImportService
    review_store: ReviewStore
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    extraction_client = create_extraction_client(
        resolved_settings.ai_provider,
        resolved_settings.openai_api_key,
        base_url=(
            resolved_settings.openrouter_base_url
            if resolved_settings.ai_provider == "openrouter"
            else None
        ),
        timeout_seconds=resolved_settings.extraction_timeout_seconds,
    )
    extraction_service = ExtractionService(
        client=extraction_client,
        model=resolved_settings.openai_model,
        reasoning_effort=resolved_settings.openai_reasoning_effort,
        store=resolved_settings.openai_store,
    )
    resolver = EntityResolver(
        catalog=SupabaseCatalogRepository(supabase_client),
        threshold=resolved_settings.import_match_threshold,
    )
    credit_service = CreditService(
        ledger=SupabaseCreditLedger(supabase_client),
        cost_per_file=resolved_settings.credit_cost_per_file,
        cost_per_mb=resolved_settings.credit_cost_per_mb,
    )
    import_service = ImportService(
        extraction_service=extraction_service,
        resolver=resolver,
        credit_service=credit_service,
        plan_writer=PlanWriter(SupabasePlanStore(supabase_client)),
        limits=ImportLimits(
            max_files=resolved_settings.import_max_files,
            max_file_size_bytes=resolved_settings.import_max_file_size_bytes,
            max_concurrency=resolved_settings.import_max_concurrency,
            match_threshold=resolved_settings.import_match_threshold,
        ),
        rate_limiter=InMemoryImportRateLimiter(
            max_imports=resolved_settings.import_rate_limit,
            window_seconds=resolved_settings.import_rate_window_seconds,
        ),
    )

    async def close_resources() -> None:
        await extraction_client.close()

    return AppContainer(
        settings=resolved_settings,
        import_service=import_service,
        review_store=InMemoryReviewStore(resolved_settings.review_ttl_seconds),
        close_resources=close_resources,
    )
