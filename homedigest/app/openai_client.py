import asyncio
import json
import os
import logging
from typing import Any, Dict, Optional

from openai import AsyncOpenAI
from openai._exceptions import (
    OpenAIError,
    APIStatusError,
    APIConnectionError,
    APITimeoutError,
    BadRequestError,
)

from homedigest.app.errors import GenerationError, GenerationTimeoutError

logger = logging.getLogger("homedigest.openai")

KNOWN_MODELS = {
    "gpt-5", "gpt-5-mini", "gpt-5-nano",
    "gpt-4o", "gpt-4o-mini",
}
DEFAULT_MODEL = "gpt-4o-mini"


def _pick_model(cfg_model: Optional[str]) -> str:
    model = (cfg_model or os.getenv("OPENAI_MODEL") or DEFAULT_MODEL).strip()
    if model not in KNOWN_MODELS:
        logger.warning(
            "Unknown/untested model '%s'. Proceeding anyway; known models: %s",
            model, ", ".join(sorted(KNOWN_MODELS))
        )
    return model


def _make_messages(system: str, user: str):
    return [{"role": "system", "content": system}, {"role": "user", "content": user}]


def _token_param_for_model(model: str) -> str:
    # Newer models expect max_completion_tokens; older keep max_tokens
    return "max_completion_tokens" if model.startswith("gpt-5") else "max_tokens"


def _is_token_param_mismatch(e: BadRequestError) -> bool:
    body = getattr(e, "body", None)
    body_str = json.dumps(body) if body is not None else ""
    return "unsupported parameter" in str(e).lower() or "unsupported_parameter" in body_str


class OpenAIClient:
    """
    Async wrapper around OpenAI Chat Completions for digest generation:
      - JSON mode, fixed temperature and output cap
      - compatibility for token param name differences
      - one overall timeout; no retries (a failed digest is simply not stored)
    """

    def __init__(self, model: Optional[str] = None, timeout: float | None = None,
                 api_key: Optional[str] = None, client: Any = None):
        self.model = _pick_model(model)

        # Env-tunable defaults
        self.timeout = float(timeout if timeout is not None else os.getenv("OPENAI_TIMEOUT", "120"))
        self.temperature = float(os.getenv("OPENAI_TEMPERATURE", "0.4"))
        # large enough for reasoning tokens plus the full digest object
        self.max_output_tokens = int(os.getenv("OPENAI_MAX_TOKENS", "16384"))

        if client is None:
            api_key = api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise RuntimeError("OPENAI_API_KEY is not set")
            # SDK auto-retries off: generation is not retried
            client = AsyncOpenAI(api_key=api_key, timeout=self.timeout, max_retries=0)
        self._client = client

        self._token_param_name = _token_param_for_model(self.model)

        logger.info("OpenAI client ready. Model=%s timeout=%ss", self.model, int(self.timeout))

    async def close(self):
        close = getattr(self._client, "close", None)
        if close is not None:
            await close()

    # ---------- Public API ----------

    async def generate(self, prompt: str, system: str) -> str:
        """Raw model text for ``prompt``; raises GenerationError / GenerationTimeoutError."""
        try:
            return await asyncio.wait_for(
                self._chat(messages=_make_messages(system, prompt)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("OpenAI call timed out after %ss", self.timeout)
            raise GenerationTimeoutError(f"Generation timed out after {self.timeout:g}s") from e

    # ---------- Internals ----------

    async def _chat(self, *, messages) -> str:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
            self._token_param_name: self.max_output_tokens,
        }

        flipped = False
        while True:
            try:
                logger.debug("Calling OpenAI model=%s token_param=%s", self.model, self._token_param_name)
                r = await self._client.chat.completions.create(**kwargs)
                break

            except BadRequestError as e:
                if _is_token_param_mismatch(e) and not flipped:
                    # flip the param and retry once
                    old = self._token_param_name
                    new = "max_completion_tokens" if old == "max_tokens" else "max_tokens"
                    logger.warning("Server rejected %s; switching to %s and retrying once.", old, new)
                    kwargs.pop(old, None)
                    kwargs[new] = self.max_output_tokens
                    self._token_param_name = new
                    flipped = True
                    continue
                logger.error("OpenAI client error: %s", e)
                raise GenerationError(f"Model request rejected: {e}", status=e.status_code,
                                      body=str(getattr(e, "body", "") or "")) from e

            except APITimeoutError as e:
                raise GenerationTimeoutError(f"Generation timed out: {e}") from e

            except APIStatusError as e:
                logger.error("OpenAI API error %s: %s", e.status_code, e)
                raise GenerationError(f"Model API error {e.status_code}", status=e.status_code,
                                      body=str(getattr(e, "body", "") or "")) from e

            except APIConnectionError as e:
                logger.error("OpenAI connection error: %s", e)
                raise GenerationError(f"Could not reach model API: {e}") from e

            except OpenAIError as e:
                logger.error("OpenAIError: %s", e)
                raise GenerationError(str(e)) from e

        usage = getattr(r, "usage", None)
        if usage is not None:
            logger.debug(
                "OpenAI tokens: prompt=%s completion=%s",
                getattr(usage, "prompt_tokens", None),
                getattr(usage, "completion_tokens", None),
            )

        choices = getattr(r, "choices", None) or []
        text = ((choices[0].message.content if choices else None) or "").strip()
        if not text:
            finish = getattr(choices[0], "finish_reason", None) if choices else None
            raise GenerationError(f"Model returned no content (finish_reason={finish})")
        return text
