"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status

from plan_importer.api.models import (
    ImportRequest,
    ImportResultResponse,
    ResumeRequest,
    build_result_response,
)
from plan_importer.app_logging import configure_logging
from plan_importer.containers import AppContainer
from plan_importer.domain.imports import ImportStatus


def _get_api_token(request: Request) -> str:
    container: AppContainer = request.app.state.container
    return container.settings.api_token


async def require_token(
    x_api_token: str | None = Header(default=None),
    api_token: str = Depends(_get_api_token),
) -> None:
    """Ensure requests include a valid API token."""
    if not x_api_token or x_api_token != api_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.post("/imports", dependencies=[Depends(require_token)])
    async def create_import(
        body: ImportRequest, request: Request
    ) -> ImportResultResponse:
        """Run an import for the uploaded files."""
        state_container: AppContainer = request.app.state.container
        options = body.options.to_domain(
            state_container.settings.import_default_mode
        )
        result = await state_container.import_service.run(
            [file.to_domain() for file in body.files],
            body.user_id,
            options,
        )
        review_id = None
        if result.status is ImportStatus.REVIEW_REQUIRED and result.pending_review:
            review_id = state_container.review_store.save(
                body.user_id, result.pending_review
            )
            logger.info("Stored review %s for user %s", review_id, body.user_id)
        return build_result_response(
            result,
            review_id=review_id,
            threshold=_threshold(state_container, body.options.match_threshold),
        )

    @app.post(
        "/imports/reviews/{review_id}", dependencies=[Depends(require_token)]
    )
    async def resume_import(
        review_id: UUID, body: ResumeRequest, request: Request
    ) -> ImportResultResponse:
        """Finish a suspended import with the caller's decisions."""
        state_container: AppContainer = request.app.state.container
        review = state_container.review_store.get(review_id, body.user_id)
        if review is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
        result = await state_container.import_service.resume(
            review, body.user_id, body.overrides
        )
        if result.success:
            state_container.review_store.discard(review_id)
        return build_result_response(result)

    return app


def _threshold(container: AppContainer, override: float | None) -> float:
    if override is not None:
        return override
    return container.settings.import_match_threshold
