from typing import Any, Dict

DEFAULT_PROMPT = "Hello"
DEFAULT_MAX_TOKENS = 300
DEFAULT_TEMPERATURE = 0.2


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def normalize_payload(body: Dict[str, Any], default_model: str) -> Dict[str, Any]:
    """
    Map a frontend request body onto the chat-completions schema.

    Bodies that already look like a provider payload (`messages` or `model`
    present) go through untouched. Anything else is treated as the short form
    `{prompt, max_tokens?, temperature?, image_url?, image_base64?}`.
    """
    if "messages" in body or "model" in body:
        return body

    payload: Dict[str, Any] = {
        "model": default_model,
        "messages": [{"role": "user", "content": str(body.get("prompt") or DEFAULT_PROMPT)}],
        "max_tokens": body.get("max_tokens") or DEFAULT_MAX_TOKENS,
        "temperature": body["temperature"] if _is_number(body.get("temperature")) else DEFAULT_TEMPERATURE,
    }
    if body.get("image_url"):
        payload["image_url"] = body["image_url"]
    if body.get("image_base64"):
        payload["image_base64"] = body["image_base64"]
    return payload
