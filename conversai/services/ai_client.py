import httpx
from typing import Optional, Dict, Any, List
from conversai.config import settings


class AIServiceError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def is_ai_configured() -> bool:
    return bool(settings.openrouter_api_key)


class ChatClient:
    """Minimal OpenAI-compatible chat-completions client (OpenRouter by default)."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, timeout: float = 60.0):
        self.api_key = api_key or settings.openrouter_api_key
        if not self.api_key:
            raise AIServiceError("OPENROUTER_API_KEY is not set. Put it in .env or set it in the environment.")
        self.base_url = (base_url or settings.openrouter_base_url).rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {self.api_key}",
            "HTTP-Referer": settings.app_url,
            "X-Title": "ConversAI Social",
        }
        self.timeout = timeout

    def complete(self, model: str, messages: List[Dict[str, str]], max_tokens: int = 1000,
                 temperature: float = 0.7) -> str:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        with httpx.Client(timeout=self.timeout) as c:
            r = c.post(f"{self.base_url}/chat/completions", headers=self.headers, json=payload)
        try:
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            detail = r.text[:500]
            raise AIServiceError(f"AI API error {r.status_code}: {detail}", r.status_code) from e
        data = r.json()
        choices = data.get("choices") or []
        if choices:
            message = choices[0].get("message") or {}
            if message.get("content"):
                return message["content"].strip()
            if choices[0].get("text"):
                return choices[0]["text"].strip()
        raise AIServiceError("AI API returned no content")
