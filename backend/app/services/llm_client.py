"""
Vision LLM Client
Single entry point for all plan-reading AI calls in the portal.

Every provider is reached through litellm with an OpenAI-style message, so a
provider is just a model string plus the env var holding its key. Calls walk a
provider chain: the user's selected model first, then the endpoint's fallbacks.
"""
import os
import logging
from dataclasses import dataclass
from typing import Iterable, Optional
import litellm

from app.config import VISION_PROVIDERS

logger = logging.getLogger("landdev-vision")

# Suppress litellm verbose logging
litellm.set_verbose = False


class VisionUnavailable(Exception):
    """No vision provider has an API key configured."""


class VisionError(Exception):
    """Every provider in the chain failed or returned an empty reply."""


@dataclass
class VisionResult:
    content: str
    provider: str
    model_label: str


def provider_api_key(provider: str) -> Optional[str]:
    cfg = VISION_PROVIDERS.get(provider)
    if cfg is None:
        return None
    for var in cfg["env"]:
        value = os.getenv(var)
        if value:
            return value
    return None


def available_providers() -> list[str]:
    return [p for p in VISION_PROVIDERS if provider_api_key(p)]


def resolve_provider_chain(selected: Optional[str], fallbacks: Iterable[str]) -> list[str]:
    """Selected provider first (when configured), then configured fallbacks, no repeats."""
    configured = set(available_providers())
    chain = []
    for provider in [selected, *fallbacks]:
        if provider and provider in configured and provider not in chain:
            chain.append(provider)
    return chain


def provider_label(provider: str) -> str:
    return VISION_PROVIDERS.get(provider, {}).get("label", provider)


async def _complete_chain(
    chain: list[str],
    messages: list,
    max_tokens: int,
    temperature: float,
) -> VisionResult:
    if not chain:
        raise VisionUnavailable("No vision API keys configured")

    last_error: Optional[str] = None
    for provider in chain:
        cfg = VISION_PROVIDERS[provider]
        try:
            response = await litellm.acompletion(
                model=cfg["model"],
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                api_key=provider_api_key(provider),
            )
            content = response.choices[0].message.content or ""
            if content.strip():
                logger.info(f"Vision reply from {provider} ({len(content)} chars)")
                return VisionResult(content=content, provider=provider, model_label=provider_label(provider))
            last_error = f"{provider} returned an empty reply"
            logger.warning(f"{last_error}, trying next provider")
        except litellm.RateLimitError as e:
            last_error = f"{provider} rate limited: {e}"
            logger.warning(f"{provider} rate limit hit, trying next provider")
        except litellm.AuthenticationError as e:
            last_error = f"{provider} auth error: {e}"
            logger.warning(f"{provider} auth error, trying next provider")
        except Exception as e:
            last_error = f"{provider} error ({type(e).__name__}: {e})"
            logger.warning(f"{last_error}, trying next provider")

    logger.error(f"All vision providers failed. Last error: {last_error}")
    raise VisionError(last_error or "All vision providers failed")


async def complete_with_vision(
    prompt: str,
    image_b64: str,
    mime_type: str = "image/png",
    provider: Optional[str] = "gemini",
    fallbacks: Iterable[str] = ("gemini",),
    max_tokens: int = 8192,
    temperature: float = 0.1,
) -> VisionResult:
    """
    Send one image plus a prompt through the provider chain.
    image_b64: base64-encoded image bytes without a data-URI prefix.
    """
    messages = [{
        "role": "user",
        "content": [
            {"type": "text", "text": prompt},
            {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{image_b64}"}},
        ],
    }]
    chain = resolve_provider_chain(provider, fallbacks)
    return await _complete_chain(chain, messages, max_tokens, temperature)


async def complete_with_pdf(
    prompt: str,
    pdf_b64: str,
    max_tokens: int = 8192,
    temperature: float = 0.1,
) -> VisionResult:
    """Send a whole PDF to Gemini, which reads PDFs natively. Used when page rendering fails."""
    messages = [{
        "role": "user",
        "content": [
            {"type": "text", "text": prompt},
            {"type": "file", "file": {"file_data": f"data:application/pdf;base64,{pdf_b64}"}},
        ],
    }]
    chain = resolve_provider_chain("gemini", ())
    return await _complete_chain(chain, messages, max_tokens, temperature)
