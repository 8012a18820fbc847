"""StaveFormatter: places the notes of one measure horizontally on its stave."""

from __future__ import annotations

from abc import ABC, abstractmethod
from itertools import accumulate
from typing import Final

from sheetroll.errors import LayoutError
from sheetroll.musicxml_parser import KEY_SIGNATURES
from sheetroll.score_models import DURATION_BEATS, StavePlacement

# Number of accidentals drawn for each key signature.
_KEY_ACCIDENTAL_COUNT: Final[dict[str, int]] = {
    name: abs(fifths) for fifths, name in KEY_SIGNATURES.items()
}


class StaveFormatter(ABC):
    """
    Abstract note formatter.

    Implementations play the part of the notation library's formatter: given a
    stave and its notes they return the final absolute x coordinate of every
    note, in note order.
    """

    def is_ready(self) -> bool:
        """False while the formatter cannot place notes yet (e.g. metrics still loading)."""
        return True

    @abstractmethod
    def format_measure(self, stave: StavePlacement, beats_per_measure: int) -> list[float]:
        """
        Return one absolute x coordinate per note in ``stave.notes``.

        Raises:
            LayoutError: If the measure cannot be formatted.
        """


class ProportionalFormatter(StaveFormatter):
    """
    Space notes proportionally to their onset inside the measure.

    The first measure of a part reserves room for its clef, key signature and
    time signature before the first note. A measure whose notes add up to less
    than the time signature still spreads over the full capacity, so a lone
    quarter note sits at the start of the stave rather than in its middle.
    """

    LEFT_PADDING: int = 15
    RIGHT_PADDING: int = 20
    CLEF_WIDTH: int = 30
    KEY_ACCIDENTAL_WIDTH: int = 10
    TIME_SIGNATURE_WIDTH: int = 25

    def _decoration_width(self, stave: StavePlacement) -> float:
        width = 0.0
        if stave.is_first:
            width += self.CLEF_WIDTH
        if stave.key_signature is not None:
            width += self.KEY_ACCIDENTAL_WIDTH * _KEY_ACCIDENTAL_COUNT.get(stave.key_signature, 0)
        if stave.time_signature is not None:
            width += self.TIME_SIGNATURE_WIDTH
        return width

    def format_measure(self, stave: StavePlacement, beats_per_measure: int) -> list[float]:
        if not stave.notes:
            return []

        lengths: list[float] = []
        for note in stave.notes:
            if not note.keys:
                raise LayoutError(f"Note without keys in measure {stave.measure_index + 1}.")
            if note.duration not in DURATION_BEATS:
                raise LayoutError(f"Unknown duration '{note.duration}'.")
            lengths.append(DURATION_BEATS[note.duration])

        start = stave.x + self.LEFT_PADDING + self._decoration_width(stave)
        available = stave.x + stave.width - self.RIGHT_PADDING - start
        if available <= 0:
            raise LayoutError(
                f"Stave of width {stave.width} leaves no room for notes in measure {stave.measure_index + 1}."
            )

        total = max(sum(lengths), float(beats_per_measure))
        onsets = [0.0, *accumulate(lengths[:-1])]
        return [start + available * onset / total for onset in onsets]
