"""
Text generation capability (Gemini)

Every pipeline stage talks to the model through TextGenerator.generate(), which
returns a validated pydantic object or raises GenerationFailure. Null, empty or
schema-invalid output is treated exactly like an unavailable upstream. There is
no automatic retry: a failed call is reported and the caller decides.
"""

import asyncio
import json
import logging
from typing import Optional, Protocol, Type, TypeVar

import google.generativeai as genai
from pydantic import BaseModel, ValidationError

from charterx.config.config import Config
from charterx.services.errors import GenerationFailure
from charterx.services.llm_tracker import LLMUsageManager, usage_manager
from charterx.utils.logger import setup_logging

setup_logging(__name__)
logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class TextGenerator(Protocol):
    async def generate(
        self,
        operation: str,
        prompt: str,
        output_schema: Type[T],
        system: Optional[str] = None,
    ) -> T:
        ...


def clean_json_response(response_text: str) -> str:
    """Strip markdown code fences the model sometimes wraps JSON in"""
    json_text = (response_text or "").strip()

    if "```json" in json_text:
        json_text = json_text.split("```json", 1)[1].split("```", 1)[0]
    elif json_text.startswith("```"):
        parts = json_text.split("```")
        if len(parts) >= 2:
            json_text = parts[1]

    return json_text.strip()


def parse_structured_output(operation: str, response_text: str, output_schema: Type[T]) -> T:
    """
    Parse and validate a raw model response against the operation's output schema

    Raises:
        GenerationFailure: Empty text, invalid JSON, null/empty object, or schema mismatch
    """
    json_text = clean_json_response(response_text)
    if not json_text:
        raise GenerationFailure(operation, "model returned an empty response")

    try:
        data = json.loads(json_text)
    except json.JSONDecodeError as e:
        logger.error(f"✗ JSON parsing error for {operation}: {e}")
        logger.error(f"Response text (first 500 chars): {json_text[:500]}")
        raise GenerationFailure(operation, f"model returned invalid JSON: {e}") from e

    if not data:
        raise GenerationFailure(operation, "model returned null or empty structured output")

    try:
        return output_schema.model_validate(data)
    except ValidationError as e:
        logger.error(f"✗ Schema mismatch for {operation}: {e.error_count()} error(s)")
        raise GenerationFailure(operation, f"model output does not match {output_schema.__name__}") from e


def build_schema_instructions(output_schema: Type[BaseModel]) -> str:
    schema = json.dumps(output_schema.model_json_schema(by_alias=True), indent=2)
    return (
        "**OUTPUT FORMAT:** Return ONLY valid JSON (no markdown, no commentary) "
        f"conforming to this JSON schema:\n{schema}"
    )


class GeminiTextGenerator:
    """Structured text generation backed by Gemini"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        usage: Optional[LLMUsageManager] = None,
    ):
        api_key = api_key or Config.GEMINI_API_KEY
        if not api_key:
            raise ValueError("GEMINI_API_KEY not found in environment variables!")

        genai.configure(api_key=api_key)
        self.model_name = model_name or Config.GEMINI_MODEL
        self.model = genai.GenerativeModel(self.model_name)
        self.usage = usage or usage_manager

        self.request_delay = Config.GEMINI_REQUEST_DELAY
        self.timeout = Config.GENERATION_TIMEOUT
        self.generation_config = genai.GenerationConfig(
            temperature=Config.GEMINI_TEMPERATURE,
            top_p=0.95,
            max_output_tokens=Config.GEMINI_MAX_OUTPUT_TOKENS,
            response_mime_type="application/json",
        )

        logger.info("=" * 80)
        logger.info("GeminiTextGenerator Initialized")
        logger.info(f"Model: {self.model_name}")
        logger.info(f"Request Delay: {self.request_delay}s")
        logger.info(f"Timeout: {self.timeout}s")
        logger.info("=" * 80)

    async def generate(
        self,
        operation: str,
        prompt: str,
        output_schema: Type[T],
        system: Optional[str] = None,
    ) -> T:
        """
        Run one generation call and return the validated structured output

        Args:
            operation: Pipeline operation name, used in errors and usage tracking
            prompt: Fully rendered task prompt
            output_schema: Pydantic model the response must validate against
            system: Optional system/persona instruction prepended to the prompt

        Returns:
            An instance of output_schema

        Raises:
            GenerationFailure: Upstream error, timeout, or unusable output
        """
        full_prompt = "\n\n".join(
            part for part in (system, prompt, build_schema_instructions(output_schema)) if part
        )
        tracker = self.usage.get_tracker(operation)

        if self.request_delay > 0:
            await asyncio.sleep(self.request_delay)

        logger.info(f"Sending {operation} request to Gemini ({len(full_prompt)} chars)")
        request = tracker.start_request(full_prompt)
        try:
            response = await asyncio.wait_for(
                self.model.generate_content_async(
                    full_prompt,
                    generation_config=self.generation_config,
                ),
                timeout=self.timeout,
            )
            response_text = response.text
        except asyncio.TimeoutError as e:
            tracker.end_request(request, failed=True)
            logger.error(f"✗ {operation} timed out after {self.timeout}s")
            raise GenerationFailure(operation, f"generation timed out after {self.timeout}s") from e
        except asyncio.CancelledError:
            tracker.end_request(request, failed=True)
            logger.warning(f"{operation} generation cancelled")
            raise
        except Exception as e:
            tracker.end_request(request, failed=True)
            error_msg = str(e).lower()
            if any(kw in error_msg for kw in ['quota', 'rate limit', '429', 'resource exhausted', 'overloaded', '503']):
                logger.error(f"✗ Quota/overload error during {operation}: {e}")
                raise GenerationFailure(operation, "the model is overloaded or out of quota, try again later") from e
            logger.error(f"✗ Gemini error during {operation}: {e}")
            raise GenerationFailure(operation, f"upstream generation error: {e}") from e

        tracker.end_request(request, response)
        return parse_structured_output(operation, response_text, output_schema)
