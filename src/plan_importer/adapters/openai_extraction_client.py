"""OpenAI Responses API client for structured plan extraction."""

from dataclasses import dataclass
from enum import StrEnum

from openai import AsyncOpenAI

from plan_importer.services.documents import ExtractionPayload, PayloadKind
from plan_importer.services.extraction import ExtractionClient


class AIProvider(StrEnum):
    """Supported extraction providers."""

    OPENAI = "openai"
    OPENROUTER = "openrouter"


@dataclass
class OpenAIExtractionClient(ExtractionClient):
    """Extraction client backed by an OpenAI-compatible Responses API."""

    client: AsyncOpenAI

    @classmethod
    def create(
        cls,
        api_key: str,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
    ) -> "OpenAIExtractionClient":
        """Create an extraction client."""
        return cls(
            client=AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=timeout_seconds,
                max_retries=0,
            )
        )

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
        """Call the Responses API with a JSON schema output format."""
        request_payload: dict[str, object] = {
            "model": model,
            "input": [
                {
                    "role": "user",
                    "content": [
                        {"type": "input_text", "text": prompt},
                        _content_part(payload),
                    ],
                }
            ],
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "strict": False,
                    "schema": schema,
                }
            },
            "store": store,
        }
        if reasoning_effort:
            request_payload["reasoning"] = {"effort": reasoning_effort}

        response = await self.client.responses.create(**request_payload)
        return response.output_text or None

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.client.close()


def create_extraction_client(
    provider: AIProvider | str,
    api_key: str,
    *,
    base_url: str | None = None,
    timeout_seconds: float | None = None,
) -> OpenAIExtractionClient:
    """Build the extraction client for a configured provider name."""
    resolved = AIProvider(provider)
    if resolved is AIProvider.OPENROUTER:
        return OpenAIExtractionClient.create(
            api_key,
            base_url=base_url or "https://openrouter.ai/api/v1",
            timeout_seconds=timeout_seconds,
        )
    return OpenAIExtractionClient.create(
        api_key, base_url=base_url, timeout_seconds=timeout_seconds
    )


def _content_part(payload: ExtractionPayload) -> dict[str, object]:
    """Build the input content part for a payload."""
    if payload.kind is PayloadKind.IMAGE:
        return {"type": "input_image", "image_url": payload.data}
    if payload.kind is PayloadKind.FILE:
        return {
            "type": "input_file",
            "filename": payload.filename or "document",
            "file_data": payload.data,
        }
    return {"type": "input_text", "text": payload.data}
