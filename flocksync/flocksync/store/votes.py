from __future__ import annotations

import logging
from typing import Iterable, List

from ..schemas import VenueVote

logger = logging.getLogger(__name__)


class VoteBoard:
    """Venue leaderboard for one conversation.

    A voter holds at most one active vote. Entries that drop to zero votes are
    pruned unless they name the pinned venue, which stays as a placeholder.
    """

    def __init__(self, voter: str) -> None:
        self.voter = voter
        self.votes: List[VenueVote] = []
        self.pinned: str | None = None
        self.pinned_id: str | None = None

    def _entry(self, venue_name: str) -> VenueVote | None:
        for vote in self.votes:
            if vote.venue_name == venue_name:
                return vote
        return None

    def my_vote(self) -> str | None:
        for vote in self.votes:
            if self.voter in vote.voters:
                return vote.venue_name
        return None

    def cast_vote(self, venue_name: str, venue_id: str | None = None) -> bool:
        """Move the local voter's single vote to ``venue_name``.

        Returns ``False`` when the voter already backs that venue.
        """
        target = self._entry(venue_name)
        if target is not None and self.voter in target.voters:
            return False

        self._withdraw(exclude=venue_name)

        if target is None:
            self.votes.append(
                VenueVote(
                    venue_name=venue_name,
                    venue_id=venue_id,
                    vote_count=1,
                    voters=[self.voter],
                )
            )
        else:
            target.voters.append(self.voter)
            target.vote_count += 1
            if venue_id and not target.venue_id:
                target.venue_id = venue_id
        self._prune()
        logger.debug("Vote cast voter=%s venue=%s", self.voter, venue_name)
        return True

    def _withdraw(self, exclude: str) -> None:
        for vote in self.votes:
            if vote.venue_name == exclude or self.voter not in vote.voters:
                continue
            vote.voters = [v for v in vote.voters if v != self.voter]
            vote.vote_count = max(vote.vote_count - 1, 0)

    def _prune(self) -> None:
        self.votes = [
            v for v in self.votes if v.vote_count > 0 or v.venue_name == self.pinned
        ]

    def replace_all(self, votes: Iterable[VenueVote]) -> None:
        """Adopt the server's authoritative tallies wholesale."""
        self.votes = [v.model_copy(deep=True) for v in votes]

    def pin(self, venue_name: str | None, venue_id: str | None = None) -> None:
        previous = self.pinned
        self.pinned = venue_name
        self.pinned_id = venue_id
        if venue_name and self._entry(venue_name) is None:
            self.votes.append(
                VenueVote(venue_name=venue_name, venue_id=venue_id, vote_count=0)
            )
        if previous and previous != venue_name:
            self._prune()

    def ranked(self) -> List[VenueVote]:
        """Display order: pinned venue first, then by voter count descending.

        ``sorted`` is stable, so ties keep their prior relative order.
        """
        entries = list(self.votes)
        pinned: List[VenueVote] = []
        if self.pinned:
            match = self._entry(self.pinned)
            if match is None:
                match = VenueVote(
                    venue_name=self.pinned, venue_id=self.pinned_id, vote_count=0
                )
            else:
                entries.remove(match)
            pinned.append(match)
        rest = sorted(entries, key=lambda v: len(v.voters), reverse=True)
        return pinned + rest
