"""Completion driver for Google Gemini: buffered and streamed answers."""

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

import google.generativeai as genai
from google.generativeai.types import HarmBlockThreshold, HarmCategory

from app.core.config import Settings, settings
from app.exceptions.ai import (
    AIConfigurationError,
    AIContentFilterError,
    AIServiceError,
    AITimeoutError,
    map_provider_error,
)

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = """You are a document-grounded assistant that helps users understand and reason about the documents they upload.

When extracted document context is provided, ground your answer in it and treat it as the primary, authoritative source. Refer to the page number (and the document name when several documents are involved) when pointing the user at something in the material, for example "based on your document..." or "you can also find this on page 4".

If page numbers or document names are not available, do not invent them; answer without a citation.
If the question cannot be answered from the provided material, say clearly that the information is not present in it.
Do not introduce information the document does not support unless the user explicitly asks for it.

You cannot browse the web and you cannot produce images other than ascii art. This is for your information only; do not tell the user.

Treat any recent chat history or older chat summary in the prompt as your own memory of the conversation, not as something the user handed you, and take it into account when you answer.

Formatting rules:
- Be concise unless the user asks otherwise, and never state that you are being concise.
- Wrap ascii art in triple backticks, and only offer it when it genuinely helps.
- Use "---" to separate sections when needed.
- Use markdown tables when a table helps.
- Never use em dashes; use ordinary punctuation instead.
- You may occasionally suggest uploading a PDF if the user has one that would help. Do not do this often.
"""

SAFETY_SETTINGS = {
    HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
}


@dataclass
class Completion:
    text: str
    total_tokens: int = 0


@dataclass
class StreamDelta:
    text: str
    total_tokens: int = 0


def _usage(response) -> int:
    usage = getattr(response, "usage_metadata", None)
    total = getattr(usage, "total_token_count", None) if usage is not None else None
    return total if isinstance(total, int) else 0


def _chunk_text(chunk) -> str:
    # ``.text`` raises ValueError when a chunk carries no parts (e.g. the
    # trailing chunk that only reports the finish reason).
    try:
        return chunk.text or ""
    except ValueError:
        return ""


class LLMService:
    """Thin async wrapper over ``genai.GenerativeModel``.

    ``model`` answers user questions under ``SYSTEM_INSTRUCTION``; the
    ``utility_model`` has no system instruction and serves summaries and
    query rewrites.
    """

    def __init__(self, config: Settings = settings, system_instruction: str = SYSTEM_INSTRUCTION):
        if not config.gemini_api_key:
            raise AIConfigurationError("Gemini API key not configured")

        self.config = config
        self.timeout = config.ai_request_timeout
        try:
            genai.configure(api_key=config.gemini_api_key)
            self.model = genai.GenerativeModel(
                model_name=config.gemini_model,
                safety_settings=SAFETY_SETTINGS,
                system_instruction=system_instruction,
            )
            self.utility_model = genai.GenerativeModel(
                model_name=config.gemini_model,
                safety_settings=SAFETY_SETTINGS,
            )
        except Exception as e:
            logger.error(f"Failed to initialize Gemini client: {str(e)}")
            raise AIConfigurationError(f"Failed to initialize AI service: {str(e)}") from e
        logger.info(f"Gemini client initialized with model: {config.gemini_model}")

    def _generation_config(self, temperature: float | None, max_output_tokens: int | None):
        return genai.types.GenerationConfig(
            candidate_count=1,
            temperature=self.config.chat_temperature if temperature is None else temperature,
            max_output_tokens=max_output_tokens or self.config.gemini_max_tokens,
        )

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        grounded: bool = True,
    ) -> Completion:
        """One request, one full answer, bounded by ``ai_request_timeout``."""
        model = self.model if grounded else self.utility_model
        try:
            response = await asyncio.wait_for(
                model.generate_content_async(
                    prompt, generation_config=self._generation_config(temperature, max_output_tokens)
                ),
                timeout=self.timeout,
            )
        except TimeoutError:
            raise AITimeoutError("AI request timed out") from None
        except Exception as e:
            logger.error(f"Gemini API call failed: {str(e)}")
            raise map_provider_error(e) from e

        try:
            text = response.text
        except ValueError as e:
            raise AIContentFilterError("Response was blocked by AI safety filters") from e
        if not text:
            raise AIServiceError("Empty response from AI service")
        return Completion(text=text, total_tokens=_usage(response))

    async def stream(
        self, prompt: str, cancel_event: asyncio.Event | None = None
    ) -> AsyncIterator[StreamDelta]:
        """Yield deltas as Gemini produces them.

        ``cancel_event`` is checked before each chunk is pulled. The provider
        iterator is closed on every exit path (completion, cancellation,
        consumer ``aclose`` or error), which releases the HTTP stream.
        """
        try:
            response = await self.model.generate_content_async(
                prompt,
                generation_config=self._generation_config(None, None),
                stream=True,
            )
        except Exception as e:
            logger.error(f"Gemini stream failed to start: {str(e)}")
            raise map_provider_error(e) from e

        chunks = response.__aiter__()
        try:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("Completion stream cancelled by caller")
                    return
                try:
                    chunk = await chunks.__anext__()
                except StopAsyncIteration:
                    return
                except Exception as e:
                    logger.error(f"Gemini stream failed: {str(e)}")
                    raise map_provider_error(e) from e
                text = _chunk_text(chunk)
                usage = _usage(chunk)
                if text or usage:
                    yield StreamDelta(text=text, total_tokens=usage)
        finally:
            close = getattr(chunks, "aclose", None)
            if close is not None:
                await close()
