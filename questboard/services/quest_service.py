"""Quest lifecycle: creation, listing, status transitions and fund release."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from questboard.config import get_settings
from questboard.datetime_utils import ensure_utc, utcnow
from questboard.errors import NotFoundError, ValidationError
from questboard.logging_config import get_logger
from questboard.models import Claim, Quest, QuestStatus, QuestType, Tag, User
from questboard.schemas import QuestCreate
from questboard.services.tag_service import ensure_tags, normalize_tags, validate_tags
from questboard.services.user_service import UserService, generated_username
from questboard.state_machine import validate_quest_transition

logger = get_logger(__name__)

SORT_OPTIONS = ("newest", "oldest", "reward", "expiry")
PRIORITY_HORIZON_MINUTES = 10000


# ---------------------------------------------------------------------------
# Derived fields
# ---------------------------------------------------------------------------


def _seconds_left(quest: Quest, now: datetime) -> float | None:
    if quest.type != QuestType.TIME_BASED.value or quest.expiry is None:
        return None
    return (ensure_utc(quest.expiry) - now).total_seconds()


def funds_releasable(funds_released: bool, supplied_funds: Decimal, status: str) -> bool:
    return not funds_released and supplied_funds > 0 and status == QuestStatus.OPEN.value


def is_quest_expired(quest: Quest, now: datetime | None = None) -> bool:
    left = _seconds_left(quest, now or utcnow())
    return left is not None and left < 0


def format_time_remaining(quest: Quest, now: datetime | None = None) -> str | None:
    """Human countdown such as ``"2d 3h remaining"``; None for regular quests."""
    left = _seconds_left(quest, now or utcnow())
    if left is None:
        return None
    if left <= 0:
        return "Expired"

    total = int(left)
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)
    if days > 0:
        return f"{days}d {hours}h remaining"
    if hours > 0:
        return f"{hours}h {minutes}m remaining"
    if minutes > 0:
        return f"{minutes}m {seconds}s remaining"
    return f"{seconds}s remaining"


def calculate_priority(quest: Quest, now: datetime | None = None) -> float:
    """reward x 10, plus an urgency bonus for open time-based quests."""
    score = float(quest.reward_amount) * 10
    if quest.status == QuestStatus.OPEN.value:
        left = _seconds_left(quest, now or utcnow())
        if left is not None and left > 0:
            minutes_remaining = int(left // 60)
            score += max(0, PRIORITY_HORIZON_MINUTES - minutes_remaining)
    return score


def validate_quest_data(data: QuestCreate, now: datetime | None = None) -> list[str]:
    """Every quest rule the input breaks, in a stable order."""
    now = now or utcnow()
    errors: list[str] = []

    if not data.title or not data.title.strip():
        errors.append("Title is required")
    if not data.description or not data.description.strip():
        errors.append("Description is required")
    if data.reward_amount <= 0:
        errors.append("Reward amount must be greater than 0")
    if data.supplied_funds <= 0:
        errors.append("Supplied funds must be greater than 0")
    if data.supplied_funds < data.reward_amount:
        errors.append("Supplied funds must be at least equal to reward amount")

    if data.type == QuestType.TIME_BASED:
        if data.expiry is None:
            errors.append("Expiry date is required for time-based quests")
        elif ensure_utc(data.expiry) <= now:
            errors.append("Expiry date must be in the future")
    elif data.expiry is not None:
        errors.append("Expiry date is only allowed for time-based quests")
    return errors


@dataclass
class QuestFilters:
    status: QuestStatus | None = None
    type: QuestType | None = None
    tags: list[str] = field(default_factory=list)
    creator: str | None = None  # user id or wallet address
    limit: int | None = None
    offset: int = 0
    sort: str | None = None


def _quest_load_options() -> tuple:
    return (
        selectinload(Quest.creator),
        selectinload(Quest.tags),
        selectinload(Quest.claims).selectinload(Claim.user),
    )


class QuestService:
    """Quest persistence and lifecycle.

    Public operations commit their own transaction. ``lock_quest``,
    ``apply_status`` and ``mark_funds_released`` only flush, so the claim
    approval flow can compose them into a single transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    # -- reads ---------------------------------------------------------------

    async def find_quest(self, quest_id: UUID) -> Quest | None:
        result = await self.db.execute(
            select(Quest)
            .where(Quest.id == quest_id)
            .options(*_quest_load_options())
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_quest(self, quest_id: UUID) -> Quest:
        quest = await self.find_quest(quest_id)
        if quest is None:
            raise NotFoundError("Quest", quest_id)
        return quest

    async def list_quests(self, filters: QuestFilters | None = None) -> list[Quest]:
        filters = filters or QuestFilters()
        if filters.sort is not None and filters.sort not in SORT_OPTIONS:
            raise ValidationError(
                [f"Unknown sort '{filters.sort}' (expected one of {', '.join(SORT_OPTIONS)})"]
            )

        limit = filters.limit or self.settings.default_page_size
        limit = max(1, min(limit, self.settings.max_page_size))
        offset = max(0, filters.offset)

        query = select(Quest).options(*_quest_load_options())
        if filters.status is not None:
            query = query.where(Quest.status == QuestStatus(filters.status).value)
        if filters.type is not None:
            query = query.where(Quest.type == QuestType(filters.type).value)
        if filters.tags:
            query = query.where(Quest.tags.any(Tag.name.in_(normalize_tags(filters.tags))))
        if filters.creator:
            query = query.where(self._creator_clause(filters.creator))

        if filters.sort is None:
            # Priority depends on "now", so rank every match before paging.
            result = await self.db.execute(query)
            now = utcnow()
            quests = sorted(
                result.scalars().all(),
                key=lambda q: (calculate_priority(q, now), ensure_utc(q.created_at)),
                reverse=True,
            )
            return quests[offset : offset + limit]

        order_by = {
            "newest": (Quest.created_at.desc(),),
            "oldest": (Quest.created_at.asc(),),
            "reward": (Quest.reward_amount.desc(), Quest.created_at.desc()),
            "expiry": (Quest.expiry.is_(None), Quest.expiry.asc(), Quest.created_at.desc()),
        }[filters.sort]
        result = await self.db.execute(query.order_by(*order_by).limit(limit).offset(offset))
        return list(result.scalars().all())

    @staticmethod
    def _creator_clause(creator: str) -> Any:
        try:
            return Quest.creator_id == UUID(creator)
        except ValueError:
            return Quest.creator.has(User.wallet_address == creator)

    async def can_release_funds(self, quest_id: UUID) -> bool:
        result = await self.db.execute(
            select(Quest.funds_released, Quest.supplied_funds, Quest.status).where(
                Quest.id == quest_id
            )
        )
        row = result.one_or_none()
        if row is None:
            return False
        return funds_releasable(*row)

    async def get_quest_stats(self) -> dict[str, Any]:
        result = await self.db.execute(
            select(
                Quest.status,
                func.count(Quest.id),
                func.coalesce(func.sum(Quest.reward_amount), 0),
            ).group_by(Quest.status)
        )
        stats: dict[str, Any] = {
            "total": 0,
            "open": 0,
            "completed": 0,
            "expired": 0,
            "total_rewards": Decimal("0"),
        }
        for status, count, rewards in result.all():
            stats[status.lower()] = count
            stats["total"] += count
            stats["total_rewards"] += Decimal(str(rewards))
        return stats

    # -- writes --------------------------------------------------------------

    async def create_quest(self, data: QuestCreate) -> Quest:
        """Validate, then persist an OPEN quest with its creator and tags."""
        errors = validate_quest_data(data) + validate_tags(data.tags)
        if errors:
            raise ValidationError(errors)

        creator = await UserService(self.db).get_or_create_user(
            data.creator_wallet, username=generated_username(data.creator_wallet)
        )
        tags = await ensure_tags(self.db, normalize_tags(data.tags))

        quest = Quest(
            title=data.title.strip(),
            description=data.description.strip(),
            github_url=data.github_url.strip() if data.github_url else None,
            type=QuestType(data.type).value,
            status=QuestStatus.OPEN.value,
            expiry=ensure_utc(data.expiry) if data.expiry else None,
            reward_amount=data.reward_amount,
            supplied_funds=data.supplied_funds,
            funds_released=False,
            transaction_hash=data.transaction_hash,
            creator_id=creator.id,
            tags=tags,
        )
        self.db.add(quest)
        await self.db.commit()

        logger.info(
            "quest_created",
            quest_id=str(quest.id),
            creator_id=str(creator.id),
            quest_type=quest.type,
            reward_amount=str(quest.reward_amount),
        )
        return await self.get_quest(quest.id)

    async def lock_quest(self, quest_id: UUID) -> Quest:
        """Load the quest row FOR UPDATE within the current transaction."""
        result = await self.db.execute(
            select(Quest)
            .where(Quest.id == quest_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        quest = result.scalar_one_or_none()
        if quest is None:
            raise NotFoundError("Quest", quest_id)
        return quest

    async def apply_status(self, quest: Quest, status: QuestStatus | str) -> bool:
        """Validate and apply a transition. Returns False for a same-state no-op."""
        target = QuestStatus(status).value
        validate_quest_transition(quest.status, target)
        if quest.status == target:
            return False
        previous = quest.status
        quest.status = target
        await self.db.flush()
        logger.info(
            "quest_status_changed",
            quest_id=str(quest.id),
            from_status=previous,
            to_status=target,
        )
        return True

    async def update_status(self, quest_id: UUID, status: QuestStatus | str) -> Quest:
        quest = await self.lock_quest(quest_id)
        try:
            await self.apply_status(quest, status)
        except Exception:
            await self.db.rollback()
            raise
        await self.db.commit()
        return await self.get_quest(quest_id)

    async def mark_funds_released(self, quest: Quest) -> bool:
        """Record the release authorization; False when it was already recorded."""
        if quest.funds_released:
            return False
        validate_quest_transition(quest.status, QuestStatus.COMPLETED.value)
        quest.status = QuestStatus.COMPLETED.value
        quest.funds_released = True
        await self.db.flush()
        logger.info("quest_funds_released", quest_id=str(quest.id))
        return True

    async def release_funds(self, quest_id: UUID, user_id: UUID | None = None) -> Quest:
        """Idempotently mark funds released and the quest COMPLETED.

        Only authorizes the release; the transfer itself happens on-chain.
        """
        quest = await self.lock_quest(quest_id)
        try:
            released = await self.mark_funds_released(quest)
        except Exception:
            await self.db.rollback()
            raise
        await self.db.commit()
        if released:
            logger.info(
                "quest_release_recorded",
                quest_id=str(quest_id),
                user_id=str(user_id) if user_id else None,
            )
        return await self.get_quest(quest_id)

    async def sweep_expired_quests(self) -> int:
        """Move every overdue OPEN time-based quest to EXPIRED in one statement."""
        now = utcnow()
        result = await self.db.execute(
            update(Quest)
            .where(
                Quest.status == QuestStatus.OPEN.value,
                Quest.type == QuestType.TIME_BASED.value,
                Quest.expiry < now,
            )
            .values(status=QuestStatus.EXPIRED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        count = result.rowcount or 0
        if count:
            logger.info("quests_expired", count=count)
        return count
