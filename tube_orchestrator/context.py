"""
Per-run typed store for intermediate stage outputs.

Each logical key declares the type it holds. Reads return None when the key is
missing or holds something else; stages that depend on an earlier output call
require(), which fails loudly instead of substituting a default.
"""

from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type

from .errors import MissingPrerequisiteError
from .models import AudioArtifact, ChannelConfig, JobRecord, NewsItem, SeoMetadata, VisualPrompt


class ContextKey(str, Enum):
    NEWS_ITEMS = "NewsItems"
    SCRIPT = "Script"
    SEO_METADATA = "SeoMetadata"
    VISUAL_PROMPTS = "VisualPrompts"
    AUDIO_ARTIFACT = "AudioArtifact"


# key -> (container type, element type for lists)
KEY_TYPES: Dict[ContextKey, Tuple[Type, Optional[Type]]] = {
    ContextKey.NEWS_ITEMS: (list, NewsItem),
    ContextKey.SCRIPT: (str, None),
    ContextKey.SEO_METADATA: (SeoMetadata, None),
    ContextKey.VISUAL_PROMPTS: (list, VisualPrompt),
    ContextKey.AUDIO_ARTIFACT: (AudioArtifact, None),
}


def _matches(key: ContextKey, value: Any) -> bool:
    expected, item_type = KEY_TYPES[key]
    if not isinstance(value, expected):
        return False
    if item_type is not None:
        return all(isinstance(item, item_type) for item in value)
    return True


class JobContext:
    """Ephemeral state for one pipeline run of one job"""

    def __init__(self, job: JobRecord, channel: ChannelConfig):
        self.job = job
        self.channel = channel
        self._values: Dict[ContextKey, Any] = {}

    def set(self, key: ContextKey, value: Any) -> None:
        if not _matches(key, value):
            expected, item_type = KEY_TYPES[key]
            shape = f"{expected.__name__}[{item_type.__name__}]" if item_type else expected.__name__
            raise TypeError(
                f"Context key {key.value} expects {shape}, got {type(value).__name__}"
            )
        self._values[key] = value

    def get(self, key: ContextKey) -> Optional[Any]:
        value = self._values.get(key)
        if value is None or not _matches(key, value):
            return None
        return value

    def require(self, key: ContextKey, stage: Optional[str] = None) -> Any:
        """Return the value for key, or raise MissingPrerequisiteError if absent or empty"""
        value = self.get(key)
        if value is None:
            raise MissingPrerequisiteError(key.value, stage)
        if isinstance(value, str):
            value_is_empty = not value.strip()
        else:
            value_is_empty = isinstance(value, list) and not value
        if value_is_empty:
            raise MissingPrerequisiteError(key.value, stage)
        return value

    def discard(self, *keys: ContextKey) -> None:
        for key in keys:
            self._values.pop(key, None)

    def clear(self) -> None:
        self._values.clear()
