from __future__ import annotations

import base64
from pathlib import Path

import structlog
import httpx

from narrator.config import get_settings
from narrator.llm.prompts import load_prompt

logger = structlog.get_logger()


class VisionAPIError(Exception):
    """The vision API answered with an error payload."""


async def chat_completion(
    messages: list[dict],
    model: str,
    max_tokens: int = 150,
    temperature: float | None = None,
) -> dict:
    """Call an OpenAI-compatible chat completion API.

    Returns dict with keys: content, model, prompt_tokens, completion_tokens, total_tokens.
    """
    settings = get_settings()

    body: dict = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
    }
    if temperature is not None:
        body["temperature"] = temperature

    headers = {
        "Authorization": f"Bearer {settings.openai_api_key}",
        "Content-Type": "application/json",
    }

    url = f"{settings.openai_base_url.rstrip('/')}/chat/completions"
    async with httpx.AsyncClient(timeout=60.0) as client:
        resp = await client.post(url, json=body, headers=headers)
        data = resp.json()

    if "error" in data:
        error = data["error"]
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise VisionAPIError(message or f"HTTP {resp.status_code}")
    resp.raise_for_status()

    choice = data["choices"][0]
    usage = data.get("usage", {})

    return {
        "content": (choice["message"]["content"] or "").strip(),
        "model": data.get("model", model),
        "prompt_tokens": usage.get("prompt_tokens", 0),
        "completion_tokens": usage.get("completion_tokens", 0),
        "total_tokens": usage.get("total_tokens", 0),
    }


def _image_message(prompt: str, image_path: str) -> dict:
    encoded = base64.b64encode(Path(image_path).read_bytes()).decode("ascii")
    return {
        "role": "user",
        "content": [
            {"type": "text", "text": prompt},
            {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{encoded}"}},
        ],
    }


async def describe_screenshot(
    image_path: str,
    history: list[dict] | None = None,
    mode: str = "checkin",
    watch_for: str | None = None,
    alarm_marker: str = "ALARM:",
) -> str | None:
    """Describe a screenshot, trying each configured model in turn.

    ``history`` holds recent ``{"capture_number", "description"}`` entries used
    as context. Returns None when no model produced a description.
    """
    settings = get_settings()
    prompt = load_prompt(
        "describe",
        history=history or [],
        mode=mode,
        watch_for=watch_for,
        alarm_marker=alarm_marker,
    )
    messages = [_image_message(prompt, image_path)]

    for model in settings.vision_models:
        try:
            logger.info("vision_request", model=model)
            result = await chat_completion(messages, model=model, max_tokens=settings.vision_max_tokens)
        except (VisionAPIError, httpx.HTTPError, KeyError, IndexError, ValueError) as e:
            logger.warning("vision_model_failed", model=model, error=str(e)[:200])
            continue

        if not result["content"]:
            logger.warning("vision_empty_description", model=result["model"])
            return None

        logger.info(
            "vision_described",
            model=result["model"],
            total_tokens=result["total_tokens"],
        )
        return result["content"]

    logger.error("vision_all_models_failed", models=settings.vision_models)
    return None
