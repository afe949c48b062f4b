import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import List

from .models import NewsItem, utcnow

logger = logging.getLogger(__name__)


class NewsSource(ABC):
    """Contract for news retrieval"""

    name: str = "base"

    @abstractmethod
    def fetch(self, topic: str, count: int = 5) -> List[NewsItem]:
        """Return up to count items for topic, most relevant first"""


class MockNewsSource(NewsSource):
    """Deterministic news items for development; at most 5 per topic"""

    name = "mock"
    MAX_ITEMS = 5

    def fetch(self, topic: str, count: int = 5) -> List[NewsItem]:
        logger.info(f"[news:mock] Fetching {count} news items for topic: {topic}")
        now = utcnow()
        slug = topic.lower().replace(" ", "-")
        items = []
        for i in range(1, min(count, self.MAX_ITEMS) + 1):
            items.append(
                NewsItem(
                    title=f"{topic}: Breaking Development #{i} - Important Update",
                    summary=(
                        f"This is a significant development in the {topic} space. "
                        "Industry experts are closely monitoring the situation as it unfolds. "
                        "This could have major implications for the future."
                    ),
                    source="Tech News Daily" if i % 2 == 0 else "Industry Insider",
                    url=f"https://example.com/news/{slug}/{i}",
                    published_at=now - timedelta(hours=i),
                    category=topic,
                    tags=[topic, "trending", "breaking news", f"update{i}"],
                )
            )
        return items


def build_news_source(config) -> NewsSource:
    provider = config.get("news.provider", "mock")
    if provider == "mock":
        return MockNewsSource()
    raise ValueError(f"Unknown news provider: {provider}")
