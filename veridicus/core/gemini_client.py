"""Wrapper around the Google Gemini API for forensic reasoning.

Covers the four ways the backend talks to Gemini: a one-shot "thinking"
generation, raw generation with an explicit config (used by the tool loop),
context-cache creation, and Live API sessions for streamed audio.
"""

import asyncio
import base64
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Sequence

from google import genai
from google.genai import types

from veridicus.core.exceptions import APIClientError
from veridicus.utils.logging import get_logger

LOGGER = get_logger(__name__)

FORENSIC_SYSTEM_INSTRUCTION = (
    "You are Veridicus, a forensic reasoning engine. You analyze case evidence, "
    "cite the evidence ids you rely on, and report contradictions between "
    "evidence items. When you find contradictions, end your answer with a "
    "```json block shaped as {\"summary\": str, \"contradictions\": [{"
    "\"description\": str, \"severity\": \"low|medium|high|critical\", "
    "\"evidence_a_id\": uuid, \"evidence_b_id\": uuid, \"timestamps\": {}}]}."
)

VIBE_SYSTEM_INSTRUCTION = (
    "You are the Vibe Forensics module of Veridicus. Your role is to analyze audio "
    "streams for micro-tremors, tone shifts, and affective inconsistencies. Flag "
    "stress indicators and cognitive load anomalies. Reply with a JSON object "
    "{\"text\": str, \"confidence\": float, \"indicator\": str}."
)

LIVE_AUDIO_MIME_TYPE = "audio/pcm;rate=16000"


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens

    def add(self, other: "TokenUsage") -> None:
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens

    def to_dict(self) -> dict:
        return {"input_tokens": self.input_tokens, "output_tokens": self.output_tokens}


@dataclass
class GenerationResult:
    """Visible text, thought trace, and token usage of a generation call."""

    text: str = ""
    thoughts: List[str] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass
class ContextCacheInfo:
    cache_id: str
    token_count: int
    expires_at: datetime


def split_response_parts(response: Any) -> GenerationResult:
    """Separate thought parts from visible text across all candidates."""
    result = GenerationResult(usage=usage_of(response))
    for candidate in response.candidates or []:
        content = candidate.content
        if content is None:
            continue
        for part in content.parts or []:
            if getattr(part, "thought", False):
                result.thoughts.append(part.text or "")
            elif part.text:
                result.text += part.text
    return result


def usage_of(response: Any) -> TokenUsage:
    metadata = getattr(response, "usage_metadata", None)
    if metadata is None:
        return TokenUsage()
    return TokenUsage(
        input_tokens=metadata.prompt_token_count or 0,
        output_tokens=metadata.candidates_token_count or 0,
    )


class LiveAudioSession:
    """An open Gemini Live API session that answers batches of PCM audio."""

    def __init__(self, client: genai.Client, model: str, system_instruction: str):
        self._client = client
        self.model = model
        self.system_instruction = system_instruction
        self._stack: Optional[AsyncExitStack] = None
        self._session = None

    async def start(self) -> "LiveAudioSession":
        config = types.LiveConnectConfig(
            response_modalities=["TEXT"],
            system_instruction=self.system_instruction,
        )
        stack = AsyncExitStack()
        try:
            self._session = await stack.enter_async_context(
                self._client.aio.live.connect(model=self.model, config=config)
            )
        except Exception:
            await stack.aclose()
            raise
        self._stack = stack
        LOGGER.info("Live session opened", extra={"model": self.model})
        return self

    @property
    def is_open(self) -> bool:
        return self._session is not None

    async def analyze_audio(self, audio_chunks: Sequence[str]) -> str:
        """Send base64 PCM chunks as one turn and collect the text reply."""
        if self._session is None:
            raise APIClientError("Live session is not open")

        pcm = b"".join(base64.b64decode(chunk) for chunk in audio_chunks)
        await self._session.send_client_content(
            turns=types.Content(
                role="user",
                parts=[types.Part.from_bytes(data=pcm, mime_type=LIVE_AUDIO_MIME_TYPE)],
            ),
            turn_complete=True,
        )

        reply: List[str] = []
        async for message in self._session.receive():
            if message.text:
                reply.append(message.text)
            server_content = message.server_content
            if server_content is not None and server_content.turn_complete:
                break
        return "".join(reply)

    async def close(self) -> None:
        stack, self._stack, self._session = self._stack, None, None
        if stack is not None:
            await stack.aclose()
            LOGGER.info("Live session closed")


class GeminiForensicClient:
    """Async Gemini client used by extraction, reasoning and Vibe Forensics."""

    def __init__(
        self,
        api_key: str,
        pro_model: str,
        flash_model: str,
        live_model: str,
        temperature: float = 0.7,
        cached_temperature: float = 0.3,
        max_output_tokens: int = 65536,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        """Initialize Gemini client.

        Args:
            api_key: Gemini API key
            pro_model: Deep reasoning model
            flash_model: Fast analysis model
            live_model: Live API model for streamed audio
            temperature: Default temperature for thinking calls
            cached_temperature: Temperature for calls against a context cache
            max_output_tokens: Output token ceiling
            max_retries: Maximum attempts per generation call
            retry_delay: Base delay for exponential backoff
        """
        self.pro_model = pro_model
        self.flash_model = flash_model
        self.live_model = live_model
        self.temperature = temperature
        self.cached_temperature = cached_temperature
        self.max_output_tokens = max_output_tokens
        self.max_retries = max_retries
        self.retry_delay = retry_delay

        try:
            self.client = genai.Client(api_key=api_key)
            LOGGER.info(f"Initialized Gemini client with model {self.pro_model}")
        except Exception as e:
            LOGGER.error(f"Failed to initialize Gemini client: {e}")
            raise APIClientError(f"Failed to initialize Gemini client: {e}", original_error=e)

    def thinking_config(self, system_instruction: Optional[str] = None) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
            system_instruction=system_instruction,
            thinking_config=types.ThinkingConfig(include_thoughts=True),
        )

    def cached_tools_config(
        self, cache_id: str, function_declarations: List[types.FunctionDeclaration]
    ) -> types.GenerateContentConfig:
        """Config for a generation against a context cache with forensic tools."""
        return types.GenerateContentConfig(
            cached_content=cache_id,
            temperature=self.cached_temperature,
            thinking_config=types.ThinkingConfig(include_thoughts=True),
            tools=[types.Tool(function_declarations=function_declarations)],
            tool_config=types.ToolConfig(
                function_calling_config=types.FunctionCallingConfig(mode="AUTO")
            ),
            automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
        )

    async def generate(
        self,
        contents: List[types.Content],
        config: types.GenerateContentConfig,
        model: Optional[str] = None,
    ) -> types.GenerateContentResponse:
        """Run one generation call with retries and return the raw response.

        Raises:
            APIClientError: If every attempt fails
        """
        model = model or self.pro_model
        for attempt in range(self.max_retries):
            try:
                return await self.client.aio.models.generate_content(
                    model=model, contents=contents, config=config
                )
            except Exception as e:
                LOGGER.warning(
                    f"Gemini API error (Attempt {attempt + 1}/{self.max_retries}): {e}",
                    extra={"model": model},
                )
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(self.retry_delay * (2 ** attempt))
                else:
                    LOGGER.error(f"Gemini generation failed after retries: {e}", exc_info=True)
                    raise APIClientError(f"Gemini generation failed: {e}", original_error=e)

        raise APIClientError("Gemini generation failed")

    async def generate_with_thinking(
        self,
        prompt: str,
        contents: Optional[List[types.Content]] = None,
        system_instruction: Optional[str] = None,
    ) -> GenerationResult:
        """Deep reasoning call on the PRO model with thoughts included."""
        conversation = list(contents or [])
        conversation.append(types.Content(role="user", parts=[types.Part(text=prompt)]))
        response = await self.generate(conversation, self.thinking_config(system_instruction))
        return split_response_parts(response)

    async def create_context_cache(
        self,
        contents: List[types.Content],
        system_instruction: str,
        ttl_hours: int = 24,
    ) -> ContextCacheInfo:
        """Create a provider-side context cache on the PRO model."""
        try:
            cache = await self.client.aio.caches.create(
                model=self.pro_model,
                config=types.CreateCachedContentConfig(
                    contents=contents,
                    system_instruction=system_instruction,
                    ttl=f"{ttl_hours * 3600}s",
                ),
            )
        except Exception as e:
            LOGGER.error(f"Context cache creation failed: {e}", exc_info=True)
            raise APIClientError(f"Context cache creation failed: {e}", original_error=e)

        usage = cache.usage_metadata
        expires_at = cache.expire_time or (
            datetime.now(timezone.utc) + timedelta(hours=ttl_hours)
        )
        return ContextCacheInfo(
            cache_id=cache.name,
            token_count=(usage.total_token_count or 0) if usage else 0,
            expires_at=expires_at,
        )

    async def open_live_session(
        self, system_instruction: str = VIBE_SYSTEM_INSTRUCTION
    ) -> LiveAudioSession:
        session = LiveAudioSession(self.client, self.live_model, system_instruction)
        return await session.start()

    async def close(self) -> None:
        try:
            await self.client.aio.aclose()
        except Exception as e:
            LOGGER.warning(f"Error closing Gemini client: {e}")
