import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "flocksync"))

from flocksync.schemas import IncomingMessage
from flocksync.store import reactions
from flocksync.store.conversations import ConversationRef, ConversationStore


def test_add_is_idempotent():
    once, changed_once = reactions.add_reaction([], "🔥", 3, "Sam")
    twice, changed_twice = reactions.add_reaction(once, "🔥", "3", "Sam")
    assert changed_once and not changed_twice
    assert twice == once
    assert len(twice) == 1


def test_remove_after_add_restores_original():
    added, _ = reactions.add_reaction([], "❤️", 3, "Sam")
    removed, changed = reactions.remove_reaction(added, "❤️", 3)
    assert changed
    assert removed == []


def test_remove_missing_is_noop():
    added, _ = reactions.add_reaction([], "👍", 1, "Alex")
    same, changed = reactions.remove_reaction(added, "👍", 2)
    assert not changed
    assert same == added


def test_same_emoji_different_users():
    first, _ = reactions.add_reaction([], "😂", 1, "Alex")
    both, _ = reactions.add_reaction(first, "😂", 2, "Sam")
    assert reactions.summarize(both) == {"😂": 2}


def test_store_applies_reaction_to_message():
    ref = ConversationRef.dm(4)
    store = ConversationStore("1")
    store.reconcile_incoming(
        ref,
        IncomingMessage.model_validate(
            {"id": 8, "sender_id": 4, "receiver_id": 1, "message_text": "yo"}
        ),
    )
    assert store.apply_reaction(ref, 8, "🔥", 1, "Me")
    assert not store.apply_reaction(ref, "8", "🔥", "1", "Me")
    assert [r.emoji for r in store.find_message(ref, 8).reactions] == ["🔥"]
    assert store.apply_reaction(ref, 8, "🔥", 1, add=False)
    assert store.find_message(ref, 8).reactions == []


def test_reaction_on_unknown_message():
    store = ConversationStore("1")
    assert not store.apply_reaction(ConversationRef.flock(1), 99, "🔥", 1)
