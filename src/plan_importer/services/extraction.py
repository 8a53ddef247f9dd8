"""AI extraction boundary with strict validation of model output."""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Protocol, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from plan_importer.errors import ExtractionError, ExtractionErrorKind
from plan_importer.services.documents import ExtractionPayload

_logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"^```\w*\s*|\s*```$")

ModelT = TypeVar("ModelT", bound=BaseModel)


class ExtractionClient(Protocol):
    """Interface for LLM structured extraction."""

    async def extract(  # noqa: PLR0913
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        store: bool,
        payload: ExtractionPayload,
        schema: dict[str, object],
        schema_name: str,
        prompt: str,
    ) -> str | None:
        """Return the raw text produced by the model, or None when empty."""


@dataclass
class ExtractionService:
    """Service that calls the extraction client and validates results."""

    client: ExtractionClient
    model: str
    reasoning_effort: str | None
    store: bool
    retry_attempts: int = 1
    retry_delay_seconds: float = 0.5

    async def extract(
        self,
        payload: ExtractionPayload,
        target_schema: type[ModelT],
        *,
        prompt: str,
        locale: str | None = None,
    ) -> ModelT:
        """Extract a value conforming to ``target_schema`` from the payload."""
        full_prompt = _with_locale(prompt, locale)
        schema = target_schema.model_json_schema()
        schema_name = _schema_name(target_schema)
        raw_text = await self._call_with_retry(
            payload=payload,
            schema=schema,
            schema_name=schema_name,
            prompt=full_prompt,
        )
        if raw_text is None or not raw_text.strip():
            raise ExtractionError(
                ExtractionErrorKind.EMPTY_RESPONSE, "model returned no content"
            )
        data = _parse_json_object(raw_text)
        try:
            return target_schema.model_validate(data)
        except PydanticValidationError as exc:
            raise ExtractionError(
                ExtractionErrorKind.SCHEMA_MISMATCH,
                f"output does not match {schema_name} ({exc.error_count()} errors)",
            ) from exc

    async def _call_with_retry(
        self,
        *,
        payload: ExtractionPayload,
        schema: dict[str, object],
        schema_name: str,
        prompt: str,
    ) -> str | None:
        """Call the client, retrying provider failures a bounded number of times."""
        attempt = 0
        while True:
            try:
                return await self.client.extract(
                    model=self.model,
                    reasoning_effort=self.reasoning_effort,
                    store=self.store,
                    payload=payload,
                    schema=schema,
                    schema_name=schema_name,
                    prompt=prompt,
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                attempt += 1
                _logger.warning(
                    "Extraction call failed (attempt %s/%s): %s",
                    attempt,
                    self.retry_attempts + 1,
                    exc,
                )
                if attempt > self.retry_attempts:
                    raise ExtractionError(
                        ExtractionErrorKind.PROVIDER_FAILURE, str(exc) or type(exc).__name__
                    ) from exc
                await asyncio.sleep(self.retry_delay_seconds)


def _parse_json_object(text: str) -> dict[str, object]:
    """Parse a JSON object, tolerating markdown code fences."""
    cleaned = _FENCE_PATTERN.sub("", text.strip())
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ExtractionError(
            ExtractionErrorKind.SCHEMA_MISMATCH, f"output is not valid JSON: {exc.msg}"
        ) from exc
    if not isinstance(data, dict):
        raise ExtractionError(
            ExtractionErrorKind.SCHEMA_MISMATCH, "output is not a JSON object"
        )
    return data


def _with_locale(prompt: str, locale: str | None) -> str:
    if not locale:
        return prompt
    return (
        f"{prompt}\nThe document may be written in locale '{locale}'. "
        "Keep food and exercise names as written in the document."
    )


def _schema_name(target_schema: type[BaseModel]) -> str:
    """Convert a model class name to a snake_case schema name."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", target_schema.__name__).lower()
