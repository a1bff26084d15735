from __future__ import annotations

from typing import List, Tuple

from ..schemas import ReactionEntry


def has_reaction(reactions: List[ReactionEntry], emoji: str, user_id) -> bool:
    uid = str(user_id)
    return any(r.emoji == emoji and r.user_id == uid for r in reactions)


def add_reaction(
    reactions: List[ReactionEntry], emoji: str, user_id, user_name: str = ""
) -> Tuple[List[ReactionEntry], bool]:
    """Return ``reactions`` with ``(emoji, user_id)`` present.

    Adding a pair that already exists is a no-op, so a local toggle followed by
    its server echo leaves a single entry.
    """
    if has_reaction(reactions, emoji, user_id):
        return reactions, False
    entry = ReactionEntry(emoji=emoji, user_id=str(user_id), user_name=user_name)
    return [*reactions, entry], True


def remove_reaction(
    reactions: List[ReactionEntry], emoji: str, user_id
) -> Tuple[List[ReactionEntry], bool]:
    uid = str(user_id)
    kept = [r for r in reactions if not (r.emoji == emoji and r.user_id == uid)]
    return kept, len(kept) != len(reactions)


def summarize(reactions: List[ReactionEntry]) -> dict[str, int]:
    """Count reactions per emoji, preserving first-seen order."""
    counts: dict[str, int] = {}
    for r in reactions:
        counts[r.emoji] = counts.get(r.emoji, 0) + 1
    return counts
