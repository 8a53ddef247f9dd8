"""Tests for the import orchestrator."""

import asyncio
import base64

from plan_importer.domain.catalog import CatalogKind
from plan_importer.domain.imports import (
    ImportFile,
    ImportMode,
    ImportOptions,
    ImportProgress,
    ImportStatus,
    ImportStep,
)
from plan_importer.domain.plans import NutritionPlan, PlanKind, WorkoutProgram
from plan_importer.services.rate_limits import InMemoryImportRateLimiter
from tests.conftest import CHICKEN_PLAN, SlowExtractionClient, pdf_bytes


def _pdf(name: str, text: str) -> ImportFile:
    return ImportFile(name=name, mime_type="application/pdf", content=pdf_bytes(text))


def _plan_with_foods(*names: str) -> dict[str, object]:
    return {
        "name": "Plan",
        "weeks": [
            {
                "week_number": 1,
                "days": [
                    {
                        "day_number": 1,
                        "meals": [
                            {
                                "name": "Dinner",
                                "foods": [
                                    {
                                        "name": name,
                                        "quantity": 50,
                                        "macros": {"calories": 100, "protein_g": 5},
                                    }
                                    for name in names
                                ],
                            }
                        ],
                    }
                ],
            }
        ],
    }


def _assert_monotonic(events: list[ImportProgress]) -> None:
    numbers = [event.step_number for event in events]
    progress = [event.progress for event in events]
    assert numbers == sorted(set(numbers))
    assert numbers[0] == 1
    assert progress == sorted(progress)
    assert all(event.step_number <= event.total_steps for event in events)


def test_pdf_with_unknown_food_creates_placeholder_and_commits(
    import_service, catalog, ledger, plan_store, user_id
) -> None:
    events: list[ImportProgress] = []

    result = asyncio.run(
        import_service.run(
            [_pdf("plan.pdf", "chicken plan")],
            user_id,
            ImportOptions(mode=ImportMode.AUTO),
            on_progress=events.append,
        )
    )

    assert result.success is True
    assert result.status is ImportStatus.COMPLETED
    assert result.stats.entities_created == 1
    assert result.stats.entities_total == 1
    assert result.stats.entities_matched == 0
    assert result.stats.files_processed == 1
    assert result.stats.credits_used == 1
    assert len(catalog.placeholders) == 1
    assert catalog.placeholders[0].name == "Chicken"
    assert catalog.placeholders[0].is_approved is False

    plan = plan_store.plans[result.plan_id]
    assert isinstance(plan, NutritionPlan)
    meal = plan.weeks[0].days[0].meals[0]
    assert meal.foods[0].food_item_id == catalog.placeholders[0].id
    assert meal.total_macros.calories == 165
    assert meal.total_macros.protein_g == 31
    assert plan.weeks[0].days[0].total_macros == meal.total_macros
    assert ledger.balances[user_id] == 9
    assert ledger.entries[0].balance_after == 9

    _assert_monotonic(events)
    assert events[0].step is ImportStep.VALIDATING
    assert events[-1].step is ImportStep.COMPLETED
    assert events[-1].progress == 100.0
    assert events[-1].step_number == events[-1].total_steps
    assert ImportStep.REVIEWING not in {event.step for event in events}


def test_unsupported_file_is_reported_and_batch_continues(
    import_service, plan_store, user_id
) -> None:
    files = [
        ImportFile(name="notes.txt", mime_type="text/plain", content=b"hello"),
        _pdf("plan.pdf", "chicken plan"),
    ]

    result = asyncio.run(import_service.run(files, user_id))

    assert result.success is True
    assert result.stats.files_processed == 1
    assert len(result.errors) == 1
    assert result.errors[0].startswith("notes.txt: Unsupported MIME type")
    assert result.plan_id in plan_store.plans


def test_insufficient_credits_fails_before_extraction(
    import_service, ledger, extraction_client, plan_store, user_id
) -> None:
    ledger.balances[user_id] = 0

    result = asyncio.run(import_service.run([_pdf("plan.pdf", "chicken plan")], user_id))

    assert result.success is False
    assert result.status is ImportStatus.FAILED
    assert "Insufficient credits" in result.errors[0]
    assert extraction_client.calls == []
    assert result.stats.credits_used == 0
    assert plan_store.plans == {}
    assert ledger.entries == []


def test_unlimited_user_is_not_blocked_by_balance(
    import_service, ledger, user_id
) -> None:
    ledger.balances[user_id] = 0
    ledger.unlimited.add(user_id)

    result = asyncio.run(import_service.run([_pdf("plan.pdf", "chicken plan")], user_id))

    assert result.success is True


def test_review_mode_suspends_on_low_confidence_match(
    import_service, catalog, extraction_client, plan_store, ledger, user_id
) -> None:
    catalog.add("Chicken breast fillet")
    events: list[ImportProgress] = []

    result = asyncio.run(
        import_service.run(
            [_pdf("plan.pdf", "chicken plan")],
            user_id,
            ImportOptions(mode=ImportMode.REVIEW),
            on_progress=events.append,
        )
    )

    assert result.status is ImportStatus.REVIEW_REQUIRED
    assert result.plan_id is None
    assert plan_store.plans == {}
    assert catalog.placeholders == []
    assert ledger.entries == []
    review = result.pending_review
    assert review is not None
    pending = review.needs_decision(0.7)
    assert [match.query for match in pending] == ["Chicken"]
    assert pending[0].confidence == 0.5
    assert pending[0].matched_id is None
    assert pending[0].alternatives[0].name == "Chicken breast fillet"
    assert events[-1].step is ImportStep.REVIEWING
    assert events[-1].details.unmatched_entity_names == ["Chicken"]
    _assert_monotonic(events)


def test_review_mode_skips_review_when_everything_matches(
    import_service, catalog, user_id
) -> None:
    catalog.add("chicken")
    events: list[ImportProgress] = []

    result = asyncio.run(
        import_service.run(
            [_pdf("plan.pdf", "chicken plan")],
            user_id,
            ImportOptions(mode=ImportMode.REVIEW),
            on_progress=events.append,
        )
    )

    assert result.status is ImportStatus.COMPLETED
    assert result.stats.entities_matched == 1
    assert ImportStep.REVIEWING not in {event.step for event in events}
    assert events[-1].step_number == events[-1].total_steps
    _assert_monotonic(events)


def test_auto_mode_never_reviews_low_confidence(
    import_service, catalog, user_id
) -> None:
    catalog.add("Chicken breast fillet")
    events: list[ImportProgress] = []

    result = asyncio.run(
        import_service.run(
            [_pdf("plan.pdf", "chicken plan")], user_id, on_progress=events.append
        )
    )

    assert result.status is ImportStatus.COMPLETED
    assert result.stats.entities_created == 1
    assert ImportStep.REVIEWING not in {event.step for event in events}


def test_resume_applies_override_and_commits(
    import_service, catalog, plan_store, ledger, user_id
) -> None:
    fillet = catalog.add("Chicken breast fillet")
    suspended = asyncio.run(
        import_service.run(
            [_pdf("plan.pdf", "chicken plan")],
            user_id,
            ImportOptions(mode=ImportMode.REVIEW),
        )
    )
    events: list[ImportProgress] = []

    result = asyncio.run(
        import_service.resume(
            suspended.pending_review,
            user_id,
            {"chicken": fillet.id},
            on_progress=events.append,
        )
    )

    assert result.status is ImportStatus.COMPLETED
    plan = plan_store.plans[result.plan_id]
    assert plan.weeks[0].days[0].meals[0].foods[0].food_item_id == fillet.id
    assert result.stats.entities_matched == 1
    assert result.stats.entities_created == 0
    assert catalog.placeholders == []
    assert ledger.balances[user_id] == 9
    _assert_monotonic(events)
    assert events[-1].step is ImportStep.COMPLETED


def test_resume_without_decision_creates_placeholder(
    import_service, catalog, user_id
) -> None:
    catalog.add("Chicken breast fillet")
    suspended = asyncio.run(
        import_service.run(
            [_pdf("plan.pdf", "chicken plan")],
            user_id,
            ImportOptions(mode=ImportMode.REVIEW),
        )
    )

    result = asyncio.run(import_service.resume(suspended.pending_review, user_id))

    assert result.status is ImportStatus.COMPLETED
    assert result.stats.entities_created == 1
    assert [entity.name for entity in catalog.placeholders] == ["Chicken"]


def test_repeated_names_across_files_create_one_placeholder(
    import_service, catalog, extraction_client, user_id
) -> None:
    extraction_client.responses = {
        "first": _plan_with_foods("Oats", "Chicken"),
        "second": _plan_with_foods("chicken ", "OATS", "Rice"),
    }

    result = asyncio.run(
        import_service.run(
            [_pdf("a.pdf", "first"), _pdf("b.pdf", "second")], user_id
        )
    )

    assert result.success is True
    assert result.stats.entities_total == 3
    assert result.stats.entities_created == 3
    assert sorted(entity.name.casefold() for entity in catalog.placeholders) == [
        "chicken",
        "oats",
        "rice",
    ]
    plan = result.plan
    assert [week.week_number for week in plan.weeks] == [1, 2]
    first_chicken = plan.weeks[0].days[0].meals[0].foods[1]
    second_chicken = plan.weeks[1].days[0].meals[0].foods[0]
    assert first_chicken.food_item_id == second_chicken.food_item_id
    assert plan.metadata["source_files"] == ["a.pdf", "b.pdf"]


def test_all_files_failing_fails_the_run(
    import_service, extraction_client, ledger, user_id
) -> None:
    extraction_client.default = None

    result = asyncio.run(
        import_service.run(
            [_pdf("a.pdf", "one"), _pdf("b.pdf", "two")], user_id
        )
    )

    assert result.success is False
    assert result.errors[0].startswith("a.pdf: empty_response")
    assert result.errors[1].startswith("b.pdf: empty_response")
    assert "No plan could be extracted" in result.errors[-1]
    assert ledger.entries == []


def test_schema_mismatch_and_provider_failure_are_per_file(
    import_service, extraction_client, user_id
) -> None:
    extraction_client.responses = {
        "broken": {"weeks": "not-a-list"},
        "down": RuntimeError("503 from provider"),
    }

    result = asyncio.run(
        import_service.run(
            [
                _pdf("broken.pdf", "broken"),
                _pdf("down.pdf", "down"),
                _pdf("ok.pdf", "ok"),
            ],
            user_id,
        )
    )

    assert result.success is True
    assert result.stats.files_processed == 1
    assert result.errors[0].startswith("broken.pdf: schema_mismatch")
    assert result.errors[1].startswith("down.pdf: provider_failure")
    # one retry for the provider failure
    assert len(extraction_client.calls) == 4


def test_validation_failures_fail_fast(
    import_service, extraction_client, ledger, user_id
) -> None:
    too_many = [_pdf(f"{index}.pdf", "x") for index in range(4)]
    oversized = [_pdf("big.pdf", "x" * 2048)]
    untyped = [ImportFile(name="plan", mime_type=" ", content=b"data")]

    results = [
        asyncio.run(import_service.run(files, user_id))
        for files in (too_many, oversized, untyped, [])
    ]

    assert [result.success for result in results] == [False] * 4
    assert "Too many files" in results[0].errors[0]
    assert "exceeds" in results[1].errors[0]
    assert "missing MIME type" in results[2].errors[0]
    assert "No files provided" in results[3].errors[0]
    assert extraction_client.calls == []
    assert ledger.checks == []


def test_base64_content_is_accepted(import_service, user_id) -> None:
    encoded = base64.b64encode(pdf_bytes("chicken plan")).decode("ascii")

    result = asyncio.run(
        import_service.run(
            [ImportFile(name="plan.pdf", mime_type="application/pdf", content=encoded)],
            user_id,
        )
    )

    assert result.success is True


def test_persistence_failure_fails_run_without_charge(
    import_service, plan_store, ledger, user_id
) -> None:
    plan_store.fail_commits = True
    events: list[ImportProgress] = []

    result = asyncio.run(
        import_service.run(
            [_pdf("plan.pdf", "chicken plan")], user_id, on_progress=events.append
        )
    )

    assert result.success is False
    assert result.plan_id is None
    assert "Failed to save plan" in result.errors[-1]
    assert ledger.entries == []
    assert result.stats.credits_used == 0
    assert events[-1].step is ImportStep.ERROR
    _assert_monotonic(events)


def test_charge_failure_after_commit_is_a_warning(
    import_service, plan_store, ledger, user_id
) -> None:
    ledger.fail_charges = True

    result = asyncio.run(import_service.run([_pdf("plan.pdf", "chicken plan")], user_id))

    assert result.success is True
    assert result.plan_id in plan_store.plans
    assert result.stats.credits_used == 0
    assert any("Credit charge failed" in warning for warning in result.warnings)


def test_placeholder_failure_fails_conversion(import_service, catalog, user_id) -> None:
    catalog.fail_placeholders = True

    result = asyncio.run(import_service.run([_pdf("plan.pdf", "chicken plan")], user_id))

    assert result.success is False
    assert any("Could not create food" in warning for warning in result.warnings)
    assert "Unresolved catalog reference: Chicken" in result.errors[-1]


def test_failing_progress_consumer_does_not_break_run(import_service, user_id) -> None:
    def explode(event: ImportProgress) -> None:
        raise RuntimeError("consumer down")

    result = asyncio.run(
        import_service.run(
            [_pdf("plan.pdf", "chicken plan")], user_id, on_progress=explode
        )
    )

    assert result.success is True


def test_async_progress_consumer_is_not_awaited(import_service, user_id) -> None:
    received: list[ImportStep] = []

    async def consume(event: ImportProgress) -> None:
        received.append(event.step)
        raise RuntimeError("consumer down")

    async def scenario() -> None:
        result = await import_service.run(
            [_pdf("plan.pdf", "chicken plan")], user_id, on_progress=consume
        )
        assert result.success is True
        await asyncio.sleep(0)

    asyncio.run(scenario())

    assert received[0] is ImportStep.VALIDATING


def test_cancelled_before_parsing_makes_no_calls(
    import_service, extraction_client, ledger, user_id
) -> None:
    async def scenario():
        cancel = asyncio.Event()
        cancel.set()
        return await import_service.run(
            [_pdf("plan.pdf", "chicken plan")], user_id, cancel_event=cancel
        )

    result = asyncio.run(scenario())

    assert result.success is False
    assert result.errors == ["Import cancelled"]
    assert extraction_client.calls == []
    assert ledger.entries == []


def test_cancel_during_extraction_discards_result(
    import_service, extraction_client, plan_store, user_id
) -> None:
    async def scenario():
        cancel = asyncio.Event()
        original = extraction_client.extract

        async def extract_then_cancel(**kwargs):  # type: ignore[no-untyped-def]
            text = await original(**kwargs)
            cancel.set()
            return text

        extraction_client.extract = extract_then_cancel
        return await import_service.run(
            [_pdf("plan.pdf", "chicken plan")], user_id, cancel_event=cancel
        )

    result = asyncio.run(scenario())

    assert result.success is False
    assert result.errors == ["Import cancelled"]
    assert len(extraction_client.calls) == 1
    assert plan_store.plans == {}


def test_workout_import_uses_exercise_catalog(
    import_service, catalog, extraction_client, user_id
) -> None:
    squat = catalog.add("Back Squat", kind=CatalogKind.EXERCISE, aliases=("Squat",))
    extraction_client.default = {
        "name": "Strength block",
        "difficulty": "advanced",
        "weeks": [
            {
                "week_number": 1,
                "days": [
                    {
                        "day_number": 1,
                        "exercises": [
                            {"name": "squat", "sets": 3, "reps": "5", "weight": 100},
                            {"name": "Plank", "sets": 2, "reps": 1},
                        ],
                    }
                ],
            }
        ],
    }

    result = asyncio.run(
        import_service.run(
            [_pdf("program.pdf", "program")],
            user_id,
            ImportOptions(plan_kind=PlanKind.WORKOUT),
        )
    )

    assert result.success is True
    program = result.plan
    assert isinstance(program, WorkoutProgram)
    exercises = program.weeks[0].days[0].exercises
    assert exercises[0].catalog_exercise_id == squat.id
    assert exercises[0].total_volume == 1500
    assert program.weeks[0].days[0].total_volume == 1500
    assert program.difficulty == "ADVANCED"
    assert [entity.kind for entity in catalog.placeholders] == [CatalogKind.EXERCISE]
    assert result.stats.entities_matched == 1
    assert result.stats.entities_created == 1
    prompt = str(extraction_client.calls[0]["prompt"])
    assert "training program" in prompt
    assert extraction_client.calls[0]["schema_name"] == "draft_workout_program"


def test_locale_is_passed_to_prompt(import_service, extraction_client, user_id) -> None:
    asyncio.run(
        import_service.run(
            [_pdf("plan.pdf", "chicken plan")],
            user_id,
            ImportOptions(locale="it-IT"),
        )
    )

    assert "it-IT" in str(extraction_client.calls[0]["prompt"])


def test_fresh_ids_for_repeated_imports(
    import_service, catalog, plan_store, user_id
) -> None:
    files = [_pdf("plan.pdf", "chicken plan")]

    first = asyncio.run(import_service.run(files, user_id))
    second = asyncio.run(import_service.run(files, user_id))

    assert first.plan_id != second.plan_id
    first_food = first.plan.weeks[0].days[0].meals[0].foods[0]
    second_food = second.plan.weeks[0].days[0].meals[0].foods[0]
    assert first_food.id != second_food.id
    assert first_food.food_item_id == second_food.food_item_id
    assert len(catalog.placeholders) == 1
    assert len(plan_store.plans) == 2


def test_draft_is_returned_for_diagnostics(import_service, user_id) -> None:
    result = asyncio.run(import_service.run([_pdf("plan.pdf", "chicken plan")], user_id))

    assert result.parse_result is not None
    assert result.parse_result.model_dump()["name"] == CHICKEN_PLAN["name"]
    assert result.stats.entities_total == 1


def test_invalid_json_is_a_schema_mismatch(
    import_service, extraction_client, user_id
) -> None:
    extraction_client.default = "not json"

    result = asyncio.run(import_service.run([_pdf("plan.pdf", "chicken plan")], user_id))

    assert result.success is False
    assert result.errors[0].startswith("plan.pdf: schema_mismatch")


def test_resume_keeps_per_file_errors(import_service, catalog, user_id) -> None:
    fillet = catalog.add("Chicken breast fillet")
    files = [
        _pdf("plan.pdf", "chicken plan"),
        ImportFile(name="notes.zip", mime_type="application/zip", content=b"PK"),
    ]
    suspended = asyncio.run(
        import_service.run(files, user_id, ImportOptions(mode=ImportMode.REVIEW))
    )

    result = asyncio.run(
        import_service.resume(suspended.pending_review, user_id, {"Chicken": fillet.id})
    )

    assert suspended.errors == ["notes.zip: Unsupported MIME type: application/zip"]
    assert result.status is ImportStatus.COMPLETED
    assert result.errors == suspended.errors
    assert result.stats.files_processed == 1


def test_rate_limit_blocks_imports_before_extraction(
    import_service, extraction_client, ledger, user_id
) -> None:
    import_service.rate_limiter = InMemoryImportRateLimiter(
        max_imports=1, window_seconds=3600
    )
    files = [_pdf("plan.pdf", "chicken plan")]

    first = asyncio.run(import_service.run(files, user_id))
    second = asyncio.run(import_service.run(files, user_id))

    assert first.success is True
    assert second.success is False
    assert second.errors[0].startswith("Import limit reached")
    assert len(extraction_client.calls) == 1
    assert len(ledger.entries) == 1
    assert second.stats.credits_used == 0


def test_failed_imports_do_not_count_towards_rate_limit(
    import_service, plan_store, user_id
) -> None:
    import_service.rate_limiter = InMemoryImportRateLimiter(
        max_imports=1, window_seconds=3600
    )
    files = [_pdf("plan.pdf", "chicken plan")]
    plan_store.fail_commits = True

    failed = asyncio.run(import_service.run(files, user_id))
    plan_store.fail_commits = False
    retried = asyncio.run(import_service.run(files, user_id))

    assert failed.success is False
    assert retried.success is True


def test_weeks_and_days_are_counted(import_service, user_id) -> None:
    files = [_pdf("a.pdf", "chicken plan"), _pdf("b.pdf", "chicken plan")]

    result = asyncio.run(import_service.run(files, user_id))

    assert result.success is True
    assert result.stats.weeks_imported == 2
    assert result.stats.days_imported == 2


def test_extraction_concurrency_is_bounded(import_service, user_id) -> None:
    client = SlowExtractionClient()
    import_service.extraction_service.client = client
    files = [
        _pdf("a.pdf", "chicken plan"),
        _pdf("b.pdf", "chicken plan"),
        _pdf("c.pdf", "chicken plan"),
    ]

    result = asyncio.run(import_service.run(files, user_id))

    assert result.success is True
    assert len(client.calls) == 3
    assert client.peak == import_service.limits.max_concurrency


def test_failed_save_keeps_draft_for_diagnostics(
    import_service, plan_store, user_id
) -> None:
    plan_store.fail_commits = True

    result = asyncio.run(import_service.run([_pdf("plan.pdf", "chicken plan")], user_id))

    assert result.success is False
    assert result.parse_result is not None
    assert result.parse_result.model_dump()["name"] == CHICKEN_PLAN["name"]
