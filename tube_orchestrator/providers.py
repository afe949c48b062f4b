"""
Text generation providers.

Every provider exposes generate(prompt, temperature, max_tokens) and
analyze_image(url, prompt). HTTP providers classify failures into
TransientProviderError (timeouts, connection errors, 429 and 5xx) and
PermanentProviderError (other 4xx, malformed payloads). Providers never retry
on their own; the RetryExecutor owns retries.
"""

import base64
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from .errors import PermanentProviderError, TransientProviderError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0


def _should_retry(status: int) -> bool:
    return status >= 500 or status == 429


def request_json(
    session: requests.Session,
    method: str,
    url: str,
    provider: str,
    *,
    json: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Dict[str, Any]:
    """Single HTTP call with provider error classification"""
    try:
        resp = session.request(method=method.upper(), url=url, json=json, headers=headers, timeout=timeout)
    except (requests.Timeout, requests.ConnectionError) as e:
        raise TransientProviderError(f"{provider} request to {url} failed: {e}", provider) from e
    except requests.RequestException as e:
        raise PermanentProviderError(f"{provider} request to {url} failed: {e}", provider) from e

    if _should_retry(resp.status_code):
        raise TransientProviderError(f"{provider} returned HTTP {resp.status_code}", provider)
    if resp.status_code >= 400:
        raise PermanentProviderError(
            f"{provider} returned HTTP {resp.status_code}: {resp.text[:200]}", provider
        )
    try:
        return resp.json() if resp.content else {}
    except ValueError as e:
        raise PermanentProviderError(f"{provider} returned a non-JSON body", provider) from e


class TextGenerationProvider(ABC):
    """Contract for AI text generation"""

    name: str = "base"

    @abstractmethod
    def generate(self, prompt: str, temperature: float = 0.7, max_tokens: int = 2000) -> str:
        ...

    @abstractmethod
    def analyze_image(self, image_url: str, prompt: Optional[str] = None) -> str:
        ...


MOCK_SCRIPT = """[INTRO]
Welcome to our channel! Today we're diving into an exciting topic.

[MAIN CONTENT]
Here's what you need to know: This is a comprehensive look at the subject matter.
We'll explore the key points and provide valuable insights that you won't want to miss.

The story unfolds with interesting developments that keep viewers engaged.
Expert analysis shows that this topic has significant implications.

[CONCLUSION]
Thank you for watching! Don't forget to like and subscribe for more content.
Hit that notification bell to stay updated!"""

MOCK_TITLE = "🚀 Amazing Discovery: What You Need to Know Right Now! 🔥"

MOCK_DESCRIPTION = """In this video, we explore an important topic that matters to you.

Key Points:
• Comprehensive analysis
• Expert insights
• Actionable takeaways

🔔 Subscribe for more content
👍 Like if you found this helpful
💬 Comment your thoughts below

#trending #viral #educational"""

MOCK_TAGS = "trending, viral, educational, news, technology, informative, must watch, 2024, latest update"

MOCK_THUMBNAIL = (
    "Bold headline text over a high-contrast close-up of the key subject, "
    "with a surprised presenter on the right and a bright arrow pointing to the focal detail."
)

MOCK_IMAGE_PROMPT = (
    "A vibrant, eye-catching scene with dynamic composition, professional lighting, "
    "and engaging visual elements that capture the essence of the content"
)

MOCK_SUMMARY = (
    "This story marks a notable shift for the field. "
    "Experts say the effects will be felt over the coming months."
)

MOCK_IMAGE_ANALYSIS = (
    "Mock image analysis: The image shows a well-composed scene with good lighting and clear subject matter. "
    "Key features include balanced composition, appropriate color palette, and effective use of space."
)


class MockTextProvider(TextGenerationProvider):
    """Deterministic responses keyed on the prompt; no network"""

    name = "mock"

    # Checked in order; the first marker found in the prompt wins
    ROUTES = (
        ("generate only the title", MOCK_TITLE),
        ("generate only the description", MOCK_DESCRIPTION),
        ("generate only the tags", MOCK_TAGS),
        ("generate only the thumbnail", MOCK_THUMBNAIL),
        ("generate only the image prompt", MOCK_IMAGE_PROMPT),
        ("for this news headline", MOCK_SUMMARY),
        ("script", MOCK_SCRIPT),
    )

    def generate(self, prompt: str, temperature: float = 0.7, max_tokens: int = 2000) -> str:
        logger.info(f"[provider:mock] Generating text (temperature: {temperature})")
        lowered = prompt.lower()
        for marker, response in self.ROUTES:
            if marker in lowered:
                return response
        return (
            f"Mock AI response to prompt (length: {len(prompt)} chars). "
            "This is simulated content for testing purposes without consuming API tokens."
        )

    def analyze_image(self, image_url: str, prompt: Optional[str] = None) -> str:
        logger.info(f"[provider:mock] Analyzing image: {image_url}")
        return MOCK_IMAGE_ANALYSIS


class OllamaTextProvider(TextGenerationProvider):
    """Local Ollama server via /api/generate"""

    name = "ollama"

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:11434",
        model: str = "llama3.2:3b",
        timeout_sec: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.base = base_url.rstrip("/")
        self.model = model
        self.timeout = float(timeout_sec)
        self.sess = session or requests.Session()

    def _generate(self, body: Dict[str, Any]) -> str:
        data = request_json(
            self.sess, "POST", f"{self.base}/api/generate", self.name, json=body, timeout=self.timeout
        )
        text = data.get("response")
        if not isinstance(text, str):
            raise PermanentProviderError("Ollama response missing 'response' field", self.name)
        return text

    def generate(self, prompt: str, temperature: float = 0.7, max_tokens: int = 2000) -> str:
        logger.info(f"[provider:ollama] Generating text with {self.model} (temperature: {temperature})")
        text = self._generate(
            {
                "model": self.model,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": temperature, "num_predict": max_tokens},
            }
        )
        logger.info(f"[provider:ollama] Generated {len(text)} characters")
        return text

    def analyze_image(self, image_url: str, prompt: Optional[str] = None) -> str:
        logger.info(f"[provider:ollama] Analyzing image: {image_url}")
        try:
            resp = self.sess.get(image_url, timeout=self.timeout)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientProviderError(f"Failed to fetch image {image_url}: {e}", self.name) from e
        if resp.status_code >= 400:
            raise PermanentProviderError(f"Failed to fetch image {image_url}: HTTP {resp.status_code}", self.name)
        return self._generate(
            {
                "model": self.model,
                "prompt": prompt or "Analyze this image and describe what you see in detail.",
                "images": [base64.b64encode(resp.content).decode("ascii")],
                "stream": False,
            }
        )


class OpenAITextProvider(TextGenerationProvider):
    """OpenAI-compatible /chat/completions endpoint"""

    name = "openai"
    SYSTEM_PROMPT = "You are a helpful AI assistant specialized in content creation."

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        timeout_sec: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise ValueError("OpenAI provider requires an API key")
        self.api_key = api_key
        self.base = base_url.rstrip("/")
        self.model = model
        self.timeout = float(timeout_sec)
        self.sess = session or requests.Session()

    def _chat(self, messages, max_tokens: int, temperature: Optional[float] = None) -> str:
        body: Dict[str, Any] = {"model": self.model, "messages": messages, "max_tokens": max_tokens}
        if temperature is not None:
            body["temperature"] = temperature
        data = request_json(
            self.sess,
            "POST",
            f"{self.base}/chat/completions",
            self.name,
            json=body,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
        )
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise PermanentProviderError("OpenAI returned no choices in response", self.name) from e

    def generate(self, prompt: str, temperature: float = 0.7, max_tokens: int = 2000) -> str:
        logger.info(f"[provider:openai] Generating text with {self.model} (temperature: {temperature})")
        text = self._chat(
            [
                {"role": "system", "content": self.SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            max_tokens=max_tokens,
            temperature=temperature,
        )
        logger.info(f"[provider:openai] Generated {len(text)} characters")
        return text

    def analyze_image(self, image_url: str, prompt: Optional[str] = None) -> str:
        logger.info(f"[provider:openai] Analyzing image: {image_url}")
        return self._chat(
            [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt or "Analyze this image and describe what you see in detail."},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                }
            ],
            max_tokens=1000,
        )


def build_text_provider(config) -> TextGenerationProvider:
    """Construct the configured text provider"""
    provider = config.get("providers.text.provider", "mock")
    timeout = config.get("providers.text.timeout_sec", DEFAULT_TIMEOUT)
    if provider == "mock":
        return MockTextProvider()
    if provider == "ollama":
        return OllamaTextProvider(
            base_url=config.get("providers.text.ollama.base_url", "http://127.0.0.1:11434"),
            model=config.get("providers.text.ollama.model", "llama3.2:3b"),
            timeout_sec=timeout,
        )
    if provider == "openai":
        return OpenAITextProvider(
            api_key=config.get("providers.text.openai.api_key"),
            base_url=config.get("providers.text.openai.base_url", "https://api.openai.com/v1"),
            model=config.get("providers.text.openai.model", "gpt-4o-mini"),
            timeout_sec=timeout,
        )
    raise ValueError(f"Unknown text provider: {provider}")
