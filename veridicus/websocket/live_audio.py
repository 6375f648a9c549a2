"""Vibe Forensics: per-connection live audio session over ``/ws/vibe``.

A connection starts unauthenticated. The first useful message must be
``{"type": "auth", "token": ..., "caseId"?: ...}``; after that the client
streams base64 PCM chunks which are buffered and drained on a fixed interval,
either into a Gemini Live session or, when none could be opened, into a
canned insight generator.
"""

import asyncio
import json
import random
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional
from uuid import UUID

import jwt
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from veridicus.core.auth import authenticate_token
from veridicus.core.config import PolicySettings
from veridicus.core.exceptions import AuthenticationError
from veridicus.core.gemini_client import GeminiForensicClient, LiveAudioSession
from veridicus.core.jwt import JWTVerifier
from veridicus.repositories.case_repository import CaseRepository
from veridicus.utils.json_parser import parse_json_safely
from veridicus.utils.logging import get_logger
from veridicus.utils.validation import is_valid_uuid

LOGGER = get_logger(__name__)

CLOSE_AUTH_FAILED = 4001
CLOSE_CASE_ACCESS_DENIED = 4003

DEFAULT_CONFIDENCE = 0.5

FALLBACK_INSIGHTS = (
    {
        "text": "Vocal frequency variance detected. Micro-tremors suggesting high cognitive load.",
        "confidence": 0.92,
        "indicator": "cognitive_load",
    },
    {
        "text": "Tone shifted to defensive in lower registers. Baseline bypassed.",
        "confidence": 0.88,
        "indicator": "defensive_tone",
    },
    {
        "text": "Affective incongruence: Verbal content mismatched with vocal inflection.",
        "confidence": 0.91,
        "indicator": "affective_incongruence",
    },
    {
        "text": "Rapid pitch escalation observed. Likely autonomic nervous system response.",
        "confidence": 0.84,
        "indicator": "pitch_escalation",
    },
    {
        "text": "Truth density normalizing. Baseline vocal stability recovered.",
        "confidence": 0.95,
        "indicator": "baseline_recovered",
    },
)

SendJson = Callable[[Dict[str, Any]], Awaitable[Any]]
CloseSocket = Callable[[int, str], Awaitable[Any]]
CaseAccessCheck = Callable[[str, str], Awaitable[bool]]


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class SlidingWindowRateLimiter:
    """At most ``max_messages`` accepted within any ``window_seconds`` span."""

    def __init__(
        self,
        max_messages: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_messages = max_messages
        self.window_seconds = window_seconds
        self._clock = clock
        self._timestamps: Deque[float] = deque()

    def allow(self) -> bool:
        now = self._clock()
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()
        if len(self._timestamps) >= self.max_messages:
            return False
        self._timestamps.append(now)
        return True


class AudioChunkBuffer:
    """Bounded FIFO of base64 audio chunks; the oldest chunk drops on overflow."""

    def __init__(self, capacity: int):
        self._chunks: Deque[str] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._chunks)

    def append(self, chunk: str) -> None:
        self._chunks.append(chunk)

    def drain(self) -> List[str]:
        chunks = list(self._chunks)
        self._chunks.clear()
        return chunks


class FallbackInsightGenerator:
    """Emits a canned affect insight on a fraction of drain ticks."""

    def __init__(self, probability: float, rng: Optional[random.Random] = None):
        self.probability = probability
        self._rng = rng or random.Random()

    def maybe_generate(self) -> Optional[Dict[str, Any]]:
        if self._rng.random() >= self.probability:
            return None
        return dict(self._rng.choice(FALLBACK_INSIGHTS))


def parse_affect(reply: str) -> Dict[str, Any]:
    """Read a live model reply as ``{text, confidence, indicator?}``."""
    parsed = parse_json_safely(reply)
    if not isinstance(parsed, dict) or "text" not in parsed:
        return {"text": reply.strip(), "confidence": DEFAULT_CONFIDENCE}

    try:
        confidence = float(parsed.get("confidence", DEFAULT_CONFIDENCE))
    except (TypeError, ValueError):
        confidence = DEFAULT_CONFIDENCE

    affect: Dict[str, Any] = {"text": str(parsed["text"]), "confidence": confidence}
    if parsed.get("indicator"):
        affect["indicator"] = str(parsed["indicator"])
    return affect


class VibeSession:
    """State machine for one Vibe Forensics connection.

    The session is transport agnostic: it writes through ``send_json`` and
    ``close`` callables, so the FastAPI endpoint and tests drive it the same way.
    """

    def __init__(
        self,
        send_json: SendJson,
        close: CloseSocket,
        verifier: JWTVerifier,
        verify_case_access: CaseAccessCheck,
        gemini: Optional[GeminiForensicClient],
        policy: PolicySettings,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._send_json = send_json
        self._close = close
        self.verifier = verifier
        self.verify_case_access = verify_case_access
        self.gemini = gemini
        self.policy = policy

        self.state = "unauthenticated"
        self.user_id: Optional[str] = None
        self.case_id: Optional[str] = None

        self.rate_limiter = SlidingWindowRateLimiter(
            policy.max_messages_per_window, policy.rate_limit_window_ms / 1000, clock=clock
        )
        self.buffer = AudioChunkBuffer(policy.max_audio_buffer_size)
        self.fallback = FallbackInsightGenerator(policy.fallback_insight_probability, rng)
        self.live_session: Optional[LiveAudioSession] = None

        self._send_lock = asyncio.Lock()
        self._drain_task: Optional[asyncio.Task] = None
        self._ping_task: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self.state == "closed"

    @property
    def mode(self) -> str:
        return "live" if self.live_session is not None else "fallback"

    async def send(self, payload: Dict[str, Any]) -> bool:
        try:
            async with self._send_lock:
                await self._send_json(payload)
            return True
        except Exception as e:
            LOGGER.debug(f"Dropping outbound vibe message: {e}")
            return False

    async def send_error(self, message: str) -> None:
        await self.send({"type": "error", "text": message, "timestamp": utc_timestamp()})

    def start(self) -> None:
        """Begin the keep-alive ping loop for a freshly accepted connection."""
        self._ping_task = asyncio.create_task(self._ping_loop())

    async def handle_frame(self, frame: Dict[str, Any]) -> None:
        """Dispatch one ASGI ``websocket.receive`` frame; only text frames carry messages."""
        if self.closed:
            return
        if frame.get("text") is not None:
            await self.handle_message(frame["text"])
        else:
            await self.send_error("Binary frames are not supported")

    async def handle_message(self, raw: str) -> None:
        if self.closed:
            return

        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            message = None

        message_type = message.get("type") if isinstance(message, dict) else None

        if self.state == "unauthenticated":
            if message_type == "auth":
                await self._authenticate(message)
            else:
                await self.send({"type": "auth_required", "timestamp": utc_timestamp()})
            return

        if not self.rate_limiter.allow():
            LOGGER.debug("Vibe message dropped by rate limiter", extra={"user_id": self.user_id})
            return

        if not isinstance(message, dict):
            await self.send_error("Malformed message")
        elif message_type == "audio":
            await self._accept_audio(message.get("audio"))
        elif message_type == "ping":
            await self.send({"type": "pong", "timestamp": utc_timestamp()})
        elif message_type == "auth":
            await self.send_error("Already authenticated")
        else:
            await self.send_error(f"Unknown message type: {message_type}")

    async def _authenticate(self, message: Dict[str, Any]) -> None:
        token = message.get("token")
        if not isinstance(token, str) or not token:
            await self.shutdown(CLOSE_AUTH_FAILED, "Authentication failed")
            return

        try:
            user = await authenticate_token(self.verifier, token)
        except (AuthenticationError, jwt.PyJWTError) as e:
            LOGGER.warning(f"Vibe authentication failed: {e}")
            await self.shutdown(CLOSE_AUTH_FAILED, "Authentication failed")
            return

        case_id = message.get("caseId")
        if case_id is not None:
            if not isinstance(case_id, str) or not is_valid_uuid(case_id):
                await self.shutdown(CLOSE_CASE_ACCESS_DENIED, "Case access denied")
                return
            if not await self.verify_case_access(case_id, user.id):
                LOGGER.warning(
                    "Vibe case access denied", extra={"case_id": case_id, "user_id": user.id}
                )
                await self.shutdown(CLOSE_CASE_ACCESS_DENIED, "Case access denied")
                return

        self.state = "authenticated"
        self.user_id = user.id
        self.case_id = case_id

        if self.gemini is not None:
            try:
                self.live_session = await self.gemini.open_live_session()
            except Exception as e:
                LOGGER.warning(f"Live session unavailable, using fallback insights: {e}")
                self.live_session = None

        LOGGER.info(
            "Vibe session authenticated",
            extra={"user_id": user.id, "case_id": case_id, "mode": self.mode},
        )
        await self.send({"type": "auth_success", "mode": self.mode, "timestamp": utc_timestamp()})
        self._drain_task = asyncio.create_task(self._drain_loop())

    async def _accept_audio(self, audio: Any) -> None:
        if not isinstance(audio, str) or not audio:
            await self.send_error("Audio payload must be a base64 string")
            return
        # Decoded size of a base64 payload
        if len(audio) * 3 // 4 > self.policy.max_audio_payload_bytes:
            await self.send_error(
                f"Audio payload exceeds maximum size of {self.policy.max_audio_payload_mb}MB"
            )
            return
        self.buffer.append(audio)

    async def drain_once(self) -> None:
        """Flush buffered audio to the live model or the fallback generator."""
        chunks = self.buffer.drain()
        if not chunks:
            return

        if self.live_session is not None:
            try:
                reply = await self.live_session.analyze_audio(chunks)
            except Exception as e:
                LOGGER.error(f"Live audio analysis failed: {e}", exc_info=True)
                await self.send_error("Audio analysis failed")
                return
            affect = parse_affect(reply)
            await self.send(
                {"type": "affect", "source": "model", **affect, "timestamp": utc_timestamp()}
            )
            return

        insight = self.fallback.maybe_generate()
        if insight is not None:
            await self.send(
                {"type": "affect", "source": "fallback", **insight, "timestamp": utc_timestamp()}
            )

    async def _drain_loop(self) -> None:
        interval = self.policy.audio_batch_interval_ms / 1000
        while not self.closed:
            await asyncio.sleep(interval)
            await self.drain_once()

    async def _ping_loop(self) -> None:
        interval = self.policy.ws_ping_interval_ms / 1000
        while not self.closed:
            await asyncio.sleep(interval)
            await self.send({"type": "ping", "timestamp": utc_timestamp()})

    async def shutdown(self, code: Optional[int] = None, reason: str = "") -> None:
        """Stop timers, release the live session and optionally close the socket."""
        if self.closed:
            return
        self.state = "closed"

        current = asyncio.current_task()
        for task in (self._drain_task, self._ping_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._drain_task = self._ping_task = None

        live, self.live_session = self.live_session, None
        if live is not None:
            try:
                await live.close()
            except Exception as e:
                LOGGER.warning(f"Error closing live session: {e}")

        if code is not None:
            try:
                await self._close(code, reason)
            except Exception as e:
                LOGGER.debug(f"Socket already closed: {e}")


router = APIRouter()


@router.websocket("/ws/vibe")
async def vibe_socket(websocket: WebSocket) -> None:
    container = websocket.app.state.container
    await websocket.accept()
    LOGGER.info("Vibe session opened")

    async def verify_case_access(case_id: str, user_id: str) -> bool:
        if container.database is None:
            return False
        async with container.database.session() as session:
            case = await CaseRepository(session).get_owned(UUID(case_id), user_id)
        return case is not None

    async def close(code: int, reason: str) -> None:
        await websocket.close(code=code, reason=reason)

    session = VibeSession(
        send_json=websocket.send_json,
        close=close,
        verifier=container.jwt_verifier,
        verify_case_access=verify_case_access,
        gemini=container.gemini,
        policy=container.settings.policy,
    )
    session.start()

    try:
        while not session.closed:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                LOGGER.info("Vibe session disconnected", extra={"user_id": session.user_id})
                break
            await session.handle_frame(frame)
    except WebSocketDisconnect:
        LOGGER.info("Vibe session disconnected", extra={"user_id": session.user_id})
    except Exception as e:
        LOGGER.error(f"Vibe session error: {e}", exc_info=True)
    finally:
        await session.shutdown()
        LOGGER.info("Vibe session closed")
