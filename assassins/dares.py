"""Dare text helpers: template personalization and carry-over policies."""

import random
import re
from typing import List, Optional

from .config import DEFAULT_DARE, TARGET_PLACEHOLDER
from .models import Assignment, DareTemplate
from .storage import RingStorage

_PLACEHOLDER_PATTERN = re.compile(r"\b" + re.escape(TARGET_PLACEHOLDER) + r"\b", re.IGNORECASE)


def personalize(template_text: str, target_name: Optional[str]) -> str:
    """Substitute the target's name for every 'your target' in a template."""
    if not target_name:
        return template_text
    return _PLACEHOLDER_PATTERN.sub(lambda _: target_name, template_text)


def pick_dare(templates: List[DareTemplate], target_name: Optional[str], rng: random.Random = None) -> str:
    """Pick a random template personalized for the target, or the default dare."""
    texts = [t.text for t in templates if t.text and t.text.strip()]
    if not texts:
        return DEFAULT_DARE
    rng = rng or random
    return personalize(rng.choice(texts), target_name)


def elimination_dare(policy: str, victim_edge: Assignment, fresh_dare: str) -> str:
    """Dare for the assassin's new edge after eliminating the victim."""
    if policy == "inherit":
        return victim_edge.dare_text
    return fresh_dare


def removal_dare(policy: str, hunter_edge: Assignment, removed_edge: Assignment) -> str:
    """Dare for the hunter's new edge after their target was removed from the ring."""
    if policy == "inherit" and removed_edge.dare_text and removed_edge.dare_text.strip():
        return removed_edge.dare_text
    return hunter_edge.dare_text


class DareTemplates:
    """A group's pool of dare templates used when seeding."""

    def __init__(self, storage: RingStorage, group_id: str):
        self.storage = storage
        self.group_id = group_id

    async def add(self, text: str) -> DareTemplate:
        text = text.strip()
        if not text:
            raise ValueError("Dare template text cannot be empty")
        async with self.storage.transaction() as tx:
            return await tx.insert_dare_template(self.group_id, text)

    async def list(self, active_only: bool = True) -> List[DareTemplate]:
        async with self.storage.read() as tx:
            return await tx.get_dare_templates(self.group_id, active_only)

    async def deactivate(self, template_id: int) -> bool:
        async with self.storage.transaction() as tx:
            return await tx.deactivate_dare_template(self.group_id, template_id)
