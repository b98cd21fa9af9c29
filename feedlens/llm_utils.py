from __future__ import annotations

from feedlens.constants import LLM_HTTP_REFERER, LLM_HTTP_TITLE, LLM_TEMPERATURE


def build_messages(prompt: str) -> list[dict[str, str]]:
    return [{"role": "user", "content": prompt}]


def build_payload(
    model: str,
    prompt: str,
    max_tokens: int | None = None,
    temperature: float = LLM_TEMPERATURE,
) -> dict[str, object]:
    """Chat-completions body for a single-turn prompt."""
    payload: dict[str, object] = {
        "model": model,
        "messages": build_messages(prompt),
        "temperature": temperature,
    }
    if max_tokens is not None and max_tokens > 0:
        payload["max_tokens"] = int(max_tokens)
    return payload


def build_headers(api_key: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
        "HTTP-Referer": LLM_HTTP_REFERER,
        "X-Title": LLM_HTTP_TITLE,
    }


def extract_message_content(data: object) -> str | None:
    """Pull the first choice's message text out of a chat completion body."""
    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    message = first.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    return content if isinstance(content, str) and content.strip() else None
