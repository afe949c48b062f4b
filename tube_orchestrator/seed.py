import logging

from .db import Database
from .models import ChannelConfig, Niche, PromptTemplate

logger = logging.getLogger(__name__)


def seed_database(db: Database) -> bool:
    """Create the sample niches and channels; no-op once any niche exists"""
    if db.count_niches() > 0:
        logger.info("[seed] Database already seeded")
        return False

    tech = db.create_niche(
        Niche(
            name="Tech News",
            description="Technology and innovation news",
            templates=[
                PromptTemplate(
                    stage_type="Script",
                    template_text=(
                        "Create a video script about {{NEWS_DATA}} for a tech-savvy audience. "
                        "Make it engaging and informative."
                    ),
                ),
                PromptTemplate(
                    stage_type="Title",
                    template_text="Generate a catchy YouTube title for: {{NEWS_DATA}}",
                ),
                PromptTemplate(
                    stage_type="Description",
                    template_text="Write a YouTube description for a video about: {{NEWS_DATA}}",
                ),
            ],
        )
    )
    meditation = db.create_niche(
        Niche(
            name="Meditation",
            description="Mindfulness and meditation content",
            templates=[
                PromptTemplate(
                    stage_type="Script",
                    template_text="Create a calming meditation script focused on {{TOPIC}}. Duration: 10 minutes.",
                ),
            ],
        )
    )

    db.create_channel(ChannelConfig(name="Tech Daily", platform="YouTube", niche_id=tech.id))
    db.create_channel(
        ChannelConfig(
            name="Mindful Moments",
            platform="YouTube",
            niche_id=meditation.id,
            require_approval=True,
            tone="calm and soothing",
        )
    )
    db.create_channel(
        ChannelConfig(name="Tech Shorts", platform="TikTok", niche_id=tech.id, is_active=False)
    )
    logger.info("[seed] Seeded 2 niches and 3 channels")
    return True
