"""
LLM client interface for toolmux.

This module is the only place that *directly* calls an LLM.  Everything else (agent loop, parser,
dispatch) stays model-agnostic: a client takes the ordered message list and a temperature and
returns the raw completion text.

We support three back-ends out of the box:

1. **OpenAI-compatible** chat completions (OpenAI itself, OpenRouter, ...) via the ``openai`` SDK.
2. **Anthropic** via the ``anthropic`` SDK.
3. **Ollama** for self-hosted models, via its REST API and ``httpx``.

Additional providers can be added by subclassing :class:`BaseLLMClient` and registering via
:func:`register_llm_client`.
"""

import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Callable,
    Dict,
    List,
    Sequence,
    Type,
)

import httpx

from toolmux.config import settings
from toolmux.core.schema import (
    ConversationMessage,
    Role,
)

logger = logging.getLogger(__name__)


class LLMCallError(RuntimeError):
    """Raised when the completion endpoint fails, times out or returns nothing."""


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_LLM_CLIENT_REGISTRY: dict[str, Type["BaseLLMClient"]] = {}


def register_llm_client(name: str) -> Callable:
    """Decorator to register an LLM client class under *name*."""

    def wrapper(cls: Type["BaseLLMClient"]) -> Type["BaseLLMClient"]:
        _LLM_CLIENT_REGISTRY[name] = cls
        return cls

    return wrapper


def load_llm_client(name: str | None = None) -> "BaseLLMClient":
    """
    Factory that returns an instantiated LLM client.

    Fallback order:
    1. *name* arg
    2. ``settings.LLM_PROVIDER`` env option
    """

    target = name or settings.LLM_PROVIDER
    cls = _LLM_CLIENT_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"LLM provider '{target}' is not registered.")
    return cls()


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseLLMClient(ABC):
    """Abstract chat-completion client: messages + temperature -> text."""

    @abstractmethod
    def complete(self, messages: Sequence[ConversationMessage], temperature: float) -> str:
        """Return the completion text or raise :class:`LLMCallError`."""

    @staticmethod
    def _chat_messages(messages: Sequence[ConversationMessage]) -> List[Dict[str, str]]:
        """
        Convert to the ``{"role", "content"}`` shape chat APIs expect.

        Tool results are not tied to native function calls here, so they travel as user turns.
        """
        out = []
        for msg in messages:
            role = Role.USER if msg.role == Role.TOOL else msg.role
            out.append({"role": role.value, "content": msg.content})
        return out


# ---------------------------------------------------------------------------
# Concrete clients
# ---------------------------------------------------------------------------
@register_llm_client("openai")
class OpenAIClient(BaseLLMClient):
    """OpenAI-compatible chat completions (set ``OPENAI_BASE_URL`` for OpenRouter & co)."""

    def __init__(self) -> None:
        import openai  # pylint: disable=import-outside-toplevel

        self._client = openai.OpenAI(
            api_key=settings.OPENAI_API_KEY,
            base_url=settings.OPENAI_BASE_URL,
            timeout=settings.LLM_TIMEOUT,
            max_retries=0,
        )

    def complete(self, messages: Sequence[ConversationMessage], temperature: float) -> str:
        try:
            resp = self._client.chat.completions.create(
                model=settings.OPENAI_MODEL,
                messages=self._chat_messages(messages),  # type: ignore[arg-type]
                temperature=temperature,
            )
        except Exception as e:  # pylint: disable=broad-except
            logger.error("OpenAI completion error: %s", str(e))
            raise LLMCallError(f"Error calling OpenAI: {str(e)}") from e

        content = resp.choices[0].message.content if resp.choices else None
        if not content:
            logger.error("OpenAI returned an empty completion")
            raise LLMCallError("Empty response from OpenAI")

        logger.debug("OpenAI completion: %s", content)
        return content


@register_llm_client("anthropic")
class AnthropicClient(BaseLLMClient):
    """Anthropic Claude client."""

    def __init__(self) -> None:
        import anthropic  # pylint: disable=import-outside-toplevel

        self._client = anthropic.Anthropic(
            api_key=settings.ANTHROPIC_API_KEY, timeout=settings.LLM_TIMEOUT, max_retries=0
        )

    @classmethod
    def _split_system(cls, messages: Sequence[ConversationMessage]) -> tuple[str, List[Dict]]:
        """Pull system text out and merge consecutive turns of the same role."""
        system_parts = [m.content for m in messages if m.role == Role.SYSTEM]
        turns: List[Dict[str, str]] = []
        for msg in cls._chat_messages([m for m in messages if m.role != Role.SYSTEM]):
            if turns and turns[-1]["role"] == msg["role"]:
                turns[-1]["content"] += "\n\n" + msg["content"]
            else:
                turns.append(msg)
        if not turns or turns[0]["role"] != Role.USER.value:
            turns.insert(0, {"role": Role.USER.value, "content": "(conversation start)"})
        return "\n\n".join(system_parts), turns

    def complete(self, messages: Sequence[ConversationMessage], temperature: float) -> str:
        system_prompt, turns = self._split_system(messages)
        try:
            response = self._client.messages.create(
                model=settings.ANTHROPIC_MODEL,
                max_tokens=8192,
                system=system_prompt,
                messages=turns,  # type: ignore[arg-type]
                temperature=temperature,
            )
        except Exception as e:  # pylint: disable=broad-except
            logger.error("Anthropic completion error: %s", str(e))
            raise LLMCallError(f"Error calling Anthropic: {str(e)}") from e

        # Handle different content block types from Anthropic API
        content = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if not content:
            logger.error("Anthropic returned an empty completion")
            raise LLMCallError("Empty response from Anthropic")

        logger.debug("Anthropic completion: %s", content)
        return content


@register_llm_client("ollama")
class OllamaClient(BaseLLMClient):
    """Ollama ``/api/chat`` client with httpx."""

    def __init__(self, client: httpx.Client | None = None) -> None:
        self._client = client or httpx.Client(
            base_url=settings.OLLAMA_BASE_URL, timeout=settings.LLM_TIMEOUT
        )

    def complete(self, messages: Sequence[ConversationMessage], temperature: float) -> str:
        payload = {
            "model": settings.OLLAMA_MODEL,
            "messages": self._chat_messages(messages),
            "stream": False,
            "options": {"temperature": temperature},
        }

        try:
            resp = self._client.post("/api/chat", json=payload)
            resp.raise_for_status()
            content = resp.json()["message"]["content"]
        except httpx.HTTPError as e:
            logger.error("Ollama request error: %s", str(e))
            raise LLMCallError(f"Error calling Ollama endpoint: {str(e)}") from e
        except (KeyError, TypeError, ValueError) as e:
            logger.error("Unexpected Ollama response: %s", str(e))
            raise LLMCallError(f"Error processing Ollama response: {str(e)}") from e

        if not content:
            raise LLMCallError("Empty response from Ollama")

        logger.debug("Ollama completion: %s", content)
        return content
