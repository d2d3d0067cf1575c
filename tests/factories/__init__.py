"""Test data factories for QuestBoard."""

from tests.factories.quest_factory import QuestFactory, wallet

__all__ = [
    "QuestFactory",
    "wallet",
]
