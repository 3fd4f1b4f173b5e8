# src/voice_todo/llm/client.py

from __future__ import annotations

import base64
import json
import logging
import mimetypes
import time
from typing import Any

import httpx
import openai
from openai import AsyncOpenAI

from ..config import Settings
from ..core.errors import ClassificationError, TranscriptionError
from ..core.ports import BlobStore
from ..enrichment.prompts import CLASSIFICATION_PROMPT, CLASSIFICATION_USER_TEMPLATE, extract_json

logger = logging.getLogger(__name__)

_BAD_MODELS: dict[str, float] = {}  # model -> retry_at (monotonic)


def _is_auth_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return True
    return exc.__class__.__name__ in {"UnauthorizedError"}


def _is_rate_limit_error(exc: Exception) -> bool:
    if isinstance(exc, openai.RateLimitError):
        return True
    return exc.__class__.__name__ in {"TooManyRequestsError"}


def _is_connection_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.APIConnectionError, httpx.TimeoutException)):
        return True
    return exc.__class__.__name__ in {"Timeout", "ConnectTimeout", "ReadTimeout", "WriteTimeout"}


def _is_not_found_error(exc: Exception) -> bool:
    return isinstance(exc, openai.NotFoundError)


def friendly_llm_error_message(err: Exception) -> str:
    msg = str(err).strip() or "LLM error."
    if "API key is not set" in msg:
        return "AI services are not configured (missing API key). Set VTODO_OPENAI_API_KEY in .env."
    if "model list is empty" in msg:
        return "AI services are not configured (no models). Set VTODO_LLM_MODELS in .env."
    if "authentication failed" in msg:
        return "AI authentication failed. Check VTODO_OPENAI_API_KEY."
    return msg


class OpenAIServices:
    """
    OpenAI-compatible speech-to-text, classification and completion.

    - Transcription: one call to the configured Whisper model.
    - Chat calls try models in order (VTODO_LLM_MODELS):
        404 -> model parked for an hour, try next
        rate limit / network -> try next
        auth -> fail fast
    - SDK retries are disabled so fallback stays quick.
    """

    def __init__(self, settings: Settings, *, blobs: BlobStore | None = None) -> None:
        api_key = (settings.openai_api_key or "").strip()
        if not api_key:
            raise RuntimeError("LLM API key is not set. Set VTODO_OPENAI_API_KEY in your .env.")

        self._models = [m.strip() for m in settings.llm_models if m.strip()]
        if not self._models:
            raise RuntimeError("LLM model list is empty. Set VTODO_LLM_MODELS in your .env.")

        timeout = httpx.Timeout(
            connect=settings.llm_connect_timeout_seconds,
            read=settings.llm_read_timeout_seconds,
            write=30.0,
            pool=settings.llm_connect_timeout_seconds,
        )
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=settings.openai_base_url or None,
            timeout=timeout,
            max_retries=0,
        )
        self._transcription_model = settings.transcription_model
        self._language = settings.transcription_language
        self._blobs = blobs

    # ---- speech-to-text ----

    async def transcribe(self, audio: bytes, *, mime_type: str) -> str:
        ext = (mimetypes.guess_extension(mime_type.split(";", 1)[0]) or ".webm").lstrip(".")
        extra: dict[str, Any] = {"language": self._language} if self._language else {}
        try:
            result = await self._client.audio.transcriptions.create(
                model=self._transcription_model,
                file=(f"audio.{ext}", audio, mime_type),
                **extra,
            )
        except Exception as e:
            if _is_auth_error(e):
                raise TranscriptionError("LLM authentication failed. Check your API key.") from e
            raise TranscriptionError(f"Speech-to-text failed: {e.__class__.__name__}: {e}") from e
        return str(getattr(result, "text", "") or "")

    # ---- classification ----

    async def _image_part(self, ref: str) -> dict[str, Any] | None:
        if self._blobs is None:
            return None
        try:
            data = await self._blobs.read(ref)
        except (OSError, ValueError):
            logger.warning("Image %s is unreadable; classifying without it", ref)
            return None
        mime = mimetypes.guess_type(ref)[0] or "image/png"
        b64 = base64.b64encode(data).decode("ascii")
        return {"type": "image_url", "image_url": {"url": f"data:{mime};base64,{b64}"}}

    async def classify(
            self,
            content: str,
            *,
            known_categories: list[str],
            image_refs: list[str],
    ) -> dict[str, Any]:
        text = CLASSIFICATION_USER_TEMPLATE.format(
            categories=", ".join(known_categories) if known_categories else "(none yet)",
            content=content or "(no text, see the attached images)",
        )
        user_content: str | list[dict[str, Any]] = text
        if image_refs:
            parts: list[dict[str, Any]] = [{"type": "text", "text": text}]
            for ref in image_refs:
                part = await self._image_part(ref)
                if part is not None:
                    parts.append(part)
            user_content = parts

        messages = [
            {"role": "system", "content": CLASSIFICATION_PROMPT},
            {"role": "user", "content": user_content},
        ]
        try:
            raw = await self._chat(messages, json_mode=True)
        except RuntimeError as e:
            raise ClassificationError(friendly_llm_error_message(e)) from e

        try:
            data = json.loads(extract_json(raw))
        except ValueError as e:
            raise ClassificationError(f"Classifier returned invalid JSON: {raw[:200]!r}") from e
        if not isinstance(data, dict):
            raise ClassificationError("Classifier returned a non-object JSON value")
        return data

    # ---- free-form completion ----

    async def complete(self, prompt: str, *, max_tokens: int = 150) -> str:
        return await self._chat([{"role": "user", "content": prompt}], max_tokens=max_tokens)

    async def _chat(
            self,
            messages: list[dict[str, Any]],
            *,
            max_tokens: int | None = None,
            json_mode: bool = False,
    ) -> str:
        last_error: Exception | None = None
        now = time.monotonic()

        for model in self._models:
            retry_at = _BAD_MODELS.get(model)
            if retry_at is not None and retry_at > now:
                continue

            kwargs: dict[str, Any] = {"model": model, "messages": messages}
            if max_tokens is not None:
                kwargs["max_tokens"] = max_tokens
            if json_mode:
                kwargs["response_format"] = {"type": "json_object"}

            t0 = time.monotonic()
            try:
                resp = await self._client.chat.completions.create(**kwargs)
            except Exception as e:
                last_error = e

                if _is_auth_error(e):
                    raise RuntimeError("LLM authentication failed. Check your API key.") from e

                if _is_not_found_error(e):
                    _BAD_MODELS[model] = time.monotonic() + 3600.0  # 1 hour
                    logger.info("LLM: model not available (404): %s", model)
                    continue

                if _is_rate_limit_error(e):
                    logger.info("LLM: rate-limited on model=%s, trying next", model)
                    continue

                if _is_connection_error(e):
                    logger.info("LLM: network/timeout error on model=%s, trying next", model)
                    continue

                logger.info("LLM: error on model=%s (%s), trying next", model, e.__class__.__name__)
                continue

            content = (resp.choices[0].message.content or "") if resp.choices else ""
            if content.strip():
                logger.debug("LLM: completed with model=%s (%.2fs)", model, time.monotonic() - t0)
                return content
            last_error = RuntimeError(f"Model returned no content: {model}")

        if last_error is not None:
            if _is_rate_limit_error(last_error):
                raise RuntimeError("LLM is rate-limited. Try again later.") from last_error
            if _is_connection_error(last_error):
                raise RuntimeError("LLM network/timeout error. Try again later or change models.") from last_error
            raise RuntimeError("All LLM models failed.") from last_error

        raise RuntimeError("All LLM models failed.")
