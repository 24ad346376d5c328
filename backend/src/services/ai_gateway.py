import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, AsyncIterator, Dict, Optional

from backend.src.core.config import Settings
from backend.src.core.errors import ExternalServiceError
from backend.src.models.chatbot import DEFAULT_SETTINGS
from backend.src.services.context_builder import PromptContext
from backend.src.services.llm.factory import get_llm_model

logger = logging.getLogger(__name__)


@dataclass
class GeneratedReply:
    content: str
    fallback: bool = False
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def as_metadata(self) -> Dict[str, Any]:
        if self.fallback:
            return {"fallback": True, "reason": self.reason, **self.metadata}
        return dict(self.metadata)


def _setting(settings: Dict[str, Any], key: str):
    value = (settings or {}).get(key)
    return DEFAULT_SETTINGS[key] if value is None else value


def _text_of(content) -> str:
    # Some providers return a list of content parts instead of a plain string
    if isinstance(content, list):
        return "".join(part.get("text", "") if isinstance(part, dict) else str(part) for part in content)
    return content or ""


class ReplyStream:
    """
    Lazy, single-use sequence of reply fragments.
    The gateway timeout bounds the whole stream, not each fragment.
    After iteration `fallback` and `reason` say whether the fallback text was emitted.
    """

    def __init__(self, gateway: "AIGateway", context: PromptContext, settings: Dict[str, Any]):
        self._gateway = gateway
        self._context = context
        self._settings = settings
        self._iterator: Optional[AsyncGenerator[str, None]] = None
        self.fallback = False
        self.reason: Optional[str] = None

    def __aiter__(self) -> AsyncIterator[str]:
        if self._iterator is not None:
            raise RuntimeError("Reply stream can only be consumed once")
        self._iterator = self._run()
        return self._iterator

    async def aclose(self):
        """Stops the stream early and releases the provider connection."""
        if self._iterator is not None:
            await self._iterator.aclose()

    async def _run(self) -> AsyncGenerator[str, None]:
        await self._gateway.pace(self._settings)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._gateway.timeout
        fragments = self._gateway._stream(self._context, self._settings).__aiter__()
        emitted = False
        try:
            while True:
                remaining = deadline - loop.time()
                try:
                    if remaining <= 0:
                        raise asyncio.TimeoutError()
                    chunk = await asyncio.wait_for(fragments.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError:
                    self._gateway.log_failure(self._context, "timeout", TimeoutError("stream exceeded its time limit"))
                    self.reason = "timeout"
                    break
                except Exception as e:
                    self._gateway.log_failure(self._context, "ai_service_error", e)
                    self.reason = "ai_service_error"
                    break

                chunk = _text_of(chunk)
                if chunk:
                    emitted = True
                    yield chunk
        finally:
            aclose = getattr(fragments, "aclose", None)
            if aclose is not None:
                await aclose()

        if not emitted:
            self.fallback = True
            self.reason = self.reason or "empty_response"
            yield _setting(self._settings, "fallback_message")


class AIGateway:
    """
    Capability interface in front of the generative-language service.

    Subclasses implement `_complete` and `_stream`. The public methods add the
    timeout, the response-delay pacing and the fallback reply, so a failing
    provider never reaches the visitor as an error. One attempt per message.
    """

    model_name: str = "unknown"

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    async def _complete(self, context: PromptContext, settings: Dict[str, Any]) -> str:
        raise NotImplementedError

    def _stream(self, context: PromptContext, settings: Dict[str, Any]) -> AsyncIterator[str]:
        raise NotImplementedError

    async def pace(self, settings: Dict[str, Any]):
        # UX pacing only, the reply is already decided
        delay_ms = _setting(settings, "response_delay")
        if delay_ms and delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)

    def log_failure(self, context: PromptContext, reason: str, error: BaseException):
        logger.error(
            "AI generation failed (%s) chatbot=%s conversation=%s error=%s: %s",
            reason,
            context.chatbot_id,
            context.conversation_id,
            type(error).__name__,
            error,
        )

    async def _call(self, context: PromptContext, settings: Dict[str, Any]) -> str:
        try:
            return await asyncio.wait_for(self._complete(context, settings), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ExternalServiceError("AI service timed out", reason="timeout") from e
        except Exception as e:
            raise ExternalServiceError(str(e) or type(e).__name__, reason="ai_service_error") from e

    async def generate_reply(self, context: PromptContext, settings: Dict[str, Any]) -> GeneratedReply:
        try:
            text = _text_of(await self._call(context, settings)).strip()
        except ExternalServiceError as e:
            reason = e.context.get("reason", "ai_service_error")
            self.log_failure(context, reason, e.__cause__ or e)
            reply = GeneratedReply(_setting(settings, "fallback_message"), fallback=True, reason=reason)
        else:
            if text:
                reply = GeneratedReply(text, metadata={"model": self.model_name})
            else:
                logger.warning(
                    "AI returned an empty reply chatbot=%s conversation=%s",
                    context.chatbot_id,
                    context.conversation_id,
                )
                reply = GeneratedReply(_setting(settings, "fallback_message"), fallback=True, reason="empty_response")

        await self.pace(settings)
        return reply

    def generate_stream(self, context: PromptContext, settings: Dict[str, Any]) -> ReplyStream:
        return ReplyStream(self, context, settings)

    async def test_connection(self) -> Dict[str, Any]:
        ping = PromptContext(
            chatbot_id="-",
            conversation_id="-",
            system_instruction="Connectivity check.",
            grounding="",
            history=(("visitor", 'Hello, please respond with "Connection successful"'),),
        )
        try:
            text = _text_of(await self._call(ping, {"max_tokens": 50, "temperature": 0.1}))
        except ExternalServiceError as e:
            return {"success": False, "error": e.message}

        ok = "connection successful" in text.lower()
        return {"success": ok, "error": None if ok else "Unexpected response"}


class LangChainGateway(AIGateway):
    """Real gateway: Gemini (or any OpenAI-compatible model) through LangChain."""

    def __init__(self, settings: Settings):
        super().__init__(timeout=settings.LLM_TIMEOUT_SECONDS)
        self.settings = settings
        self.model_name = settings.LLM_MODEL_NAME

    def _model(self, settings: Dict[str, Any], streaming: bool = False):
        return get_llm_model(
            self.settings,
            max_tokens=_setting(settings, "max_tokens"),
            temperature=_setting(settings, "temperature"),
            streaming=streaming,
        )

    async def _complete(self, context: PromptContext, settings: Dict[str, Any]) -> str:
        llm = self._model(settings)
        response = await llm.ainvoke(context.to_messages())
        return _text_of(response.content)

    async def _stream(self, context: PromptContext, settings: Dict[str, Any]) -> AsyncIterator[str]:
        llm = self._model(settings, streaming=True)
        async for chunk in llm.astream(context.to_messages()):
            yield _text_of(chunk.content)
