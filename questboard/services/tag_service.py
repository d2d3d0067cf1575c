"""Tag normalization, validation, search and persistence."""

import re
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.logging_config import get_logger
from questboard.models import QuestTag, Tag

logger = get_logger(__name__)

MIN_TAGS = 1
MAX_TAGS = 10
MIN_TAG_LENGTH = 2
MAX_TAG_LENGTH = 30
MAX_SEARCH_RESULTS = 10
MAX_SUGGESTIONS = 5

_WHITESPACE = re.compile(r"\s+")
_TAG_CHARSET = re.compile(r"^[a-z0-9-]+$")

POPULAR_TAGS: list[str] = [
    "frontend",
    "backend",
    "smart-contracts",
    "zk-proofs",
    "defi",
    "nft",
    "dao",
    "web3",
    "solidity",
    "rust",
    "javascript",
    "typescript",
    "react",
    "nextjs",
    "ethereum",
    "polygon",
    "arbitrum",
    "optimism",
    "testing",
    "documentation",
]


def normalize_tags(tags: Iterable[str]) -> list[str]:
    """Lowercase, trim and hyphenate tags, dropping empties and duplicates."""
    normalized: list[str] = []
    for raw in tags:
        tag = _WHITESPACE.sub("-", raw.strip().lower())
        if tag and tag not in normalized:
            normalized.append(tag)
    return normalized


def validate_tags(tags: Iterable[str]) -> list[str]:
    """Return every rule the (normalized) tag list breaks; empty means valid."""
    errors: list[str] = []
    normalized = normalize_tags(tags)

    if len(normalized) < MIN_TAGS:
        errors.append("At least one tag is required")
    if len(normalized) > MAX_TAGS:
        errors.append(f"Maximum {MAX_TAGS} tags allowed per quest")

    for tag in normalized:
        if len(tag) < MIN_TAG_LENGTH:
            errors.append(
                f'Tag "{tag}" is too short (minimum {MIN_TAG_LENGTH} characters)'
            )
        if len(tag) > MAX_TAG_LENGTH:
            errors.append(
                f'Tag "{tag}" is too long (maximum {MAX_TAG_LENGTH} characters)'
            )
        if not _TAG_CHARSET.match(tag):
            errors.append(
                f'Tag "{tag}" contains invalid characters '
                "(only lowercase letters, numbers, and hyphens allowed)"
            )
    return errors


def search_tags(query: str, available: Iterable[str]) -> list[str]:
    """Substring search ranked exact match, then prefix, then alphabetical."""
    needle = query.strip().lower()
    if not needle:
        return []

    def rank(tag: str) -> tuple[int, str]:
        lowered = tag.lower()
        if lowered == needle:
            return (0, lowered)
        if lowered.startswith(needle):
            return (1, lowered)
        return (2, lowered)

    matches = [tag for tag in available if needle in tag.lower()]
    return sorted(matches, key=rank)[:MAX_SEARCH_RESULTS]


def suggest_tags(title: str, description: str) -> list[str]:
    """Popular tags any of whose hyphen-separated words appear in the text."""
    text = f"{title} {description}".lower()
    suggestions = [
        tag
        for tag in POPULAR_TAGS
        if any(word in text for word in tag.split("-"))
    ]
    return suggestions[:MAX_SUGGESTIONS]


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


async def ensure_tags(db: AsyncSession, names: list[str]) -> list[Tag]:
    """Fetch or create Tag rows for already-normalized names, preserving order."""
    if not names:
        return []

    result = await db.execute(select(Tag).where(Tag.name.in_(names)))
    existing = {tag.name: tag for tag in result.scalars().all()}

    tags: list[Tag] = []
    for name in names:
        tag = existing.get(name)
        if tag is None:
            tag = Tag(name=name)
            db.add(tag)
            existing[name] = tag
            logger.info("tag_created", tag=name)
        tags.append(tag)
    await db.flush()
    return tags


async def list_tags_with_counts(db: AsyncSession) -> list[dict]:
    """All tags with the number of quests using them, most used first."""
    quest_count = func.count(QuestTag.quest_id)
    result = await db.execute(
        select(Tag.name, quest_count.label("quest_count"))
        .outerjoin(QuestTag, QuestTag.tag_id == Tag.id)
        .group_by(Tag.id, Tag.name)
        .order_by(quest_count.desc(), Tag.name.asc())
    )
    return [
        {"name": name, "quest_count": count} for name, count in result.all()
    ]


async def search_stored_tags(db: AsyncSession, query: str) -> list[str]:
    """Rank stored tag names against a query."""
    if not query.strip():
        return []
    result = await db.execute(select(Tag.name).order_by(Tag.name.asc()))
    return search_tags(query, result.scalars().all())
