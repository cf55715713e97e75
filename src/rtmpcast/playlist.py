"""Playlist sequencing for stream jobs.

The sequencer yields one video at a time in the order dictated by the
job's PlaylistMode. Shuffled modes use random.shuffle (Fisher-Yates);
SHUFFLE_LOOP draws a fresh permutation at the start of every pass.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence
from dataclasses import dataclass

from rtmpcast.exceptions import EmptyPlaylistError
from rtmpcast.models import PlaylistMode, VideoReference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlaylistItem:
    """A video selected by the sequencer."""

    video: VideoReference
    index: int
    """Position within the current pass order."""
    is_last_of_pass: bool


class PlaylistSequencer:
    """Produces the next video to play for one job.

    Not thread-safe; each sequencer is owned by a single supervisor.
    """

    def __init__(
        self,
        videos: Sequence[VideoReference],
        mode: PlaylistMode,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the sequencer.

        Args:
            videos: Playlist in its stored order.
            mode: Traversal policy.
            rng: Random source for shuffled modes (tests inject a seeded one).

        Raises:
            EmptyPlaylistError: If videos is empty.
        """
        if not videos:
            raise EmptyPlaylistError("Playlist must contain at least one video")

        self._mode = mode
        self._rng = rng or random.Random()
        self._order: list[VideoReference] = list(videos)
        self._index = 0
        self._passes_completed = 0
        self._finished = False

        if mode.shuffles:
            self._rng.shuffle(self._order)

    @property
    def mode(self) -> PlaylistMode:
        return self._mode

    @property
    def order(self) -> tuple[VideoReference, ...]:
        """Order of the current pass."""
        return tuple(self._order)

    @property
    def passes_completed(self) -> int:
        return self._passes_completed

    def next(self) -> PlaylistItem | None:
        """Return the next video, or None once a non-looping traversal ends."""
        if self._finished:
            return None

        if self._index >= len(self._order):
            self._passes_completed += 1
            if not self._mode.loops:
                self._finished = True
                return None
            self._start_new_pass()

        index = self._index
        self._index += 1
        return PlaylistItem(
            video=self._order[index],
            index=index,
            is_last_of_pass=self._index == len(self._order),
        )

    def _start_new_pass(self) -> None:
        self._index = 0
        if self._mode is PlaylistMode.SHUFFLE_LOOP:
            self._rng.shuffle(self._order)
        logger.debug(
            "Playlist restarting (pass %d, mode=%s)",
            self._passes_completed + 1,
            self._mode.name,
        )
