"""PlaybackEngine: scrolls a laid-out score past a guide line in real time."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Final, Sequence

import numpy as np

from sheetroll.audio import NoteTrigger, Synth, build_trigger
from sheetroll.errors import PlaybackError
from sheetroll.scheduler import FrameScheduler
from sheetroll.score_models import LayoutResult, NoteRenderInfo

logger = logging.getLogger(__name__)

PIXELS_PER_BEAT: Final[int] = 100

# Highlight windows around the guide line, in pixels.
NOTE_WINDOW: Final[float] = 50.0
BEAM_WINDOW: Final[float] = 100.0
SLUR_WINDOW: Final[float] = 150.0

JUMP_INSET: Final[float] = 20.0
GUIDE_OFFSET: Final[float] = 20.0
GUIDE_FALLBACK_X: Final[float] = 200.0
DEFAULT_GRACE_DELAY: Final[float] = 0.5


class ScrollMode(str, Enum):
    SMOOTH = "smooth"
    JUMPING = "jumping"
    CENTER = "center"


class PlaybackState(str, Enum):
    STOPPED = "stopped"
    PLAYING = "playing"
    PAUSED = "paused"
    FINISHED = "finished"


class HighlightListener:
    """
    Receives highlight changes; the renderer decides what "near" looks like.

    ``on_note_proximity`` fires whenever a note enters or leaves the highlight
    window during playback. ``on_note_far`` fires on reset for every note that
    was still highlighted, returning it to its original look. ``on_color_change``
    hands over the colour near glyphs should take.
    """

    def on_color_change(self, color: str) -> None:
        pass

    def on_note_proximity(self, note_index: int, is_near: bool) -> None:
        pass

    def on_note_far(self, note_index: int) -> None:
        pass

    def on_beam_proximity(self, beam_index: int, is_near: bool) -> None:
        pass

    def on_slur_proximity(self, slur_index: int, is_near: bool) -> None:
        pass


class PlaybackObserver:
    """Receives state, progress, measure and trigger notifications."""

    def on_state_change(self, state: PlaybackState) -> None:
        pass

    def on_progress(self, played: int, total: int) -> None:
        pass

    def on_measure_change(self, measure_index: int) -> None:
        pass

    def on_trigger(self, trigger: NoteTrigger) -> None:
        pass


def pixels_per_second(bpm: float) -> float:
    """Scroll speed: one beat is :data:`PIXELS_PER_BEAT` pixels."""
    return (bpm / 60.0) * PIXELS_PER_BEAT


def guide_line_x(
    notes: Sequence[NoteRenderInfo], mode: ScrollMode, viewport_width: float
) -> float:
    """
    Screen x of the guide line.

    Center mode pins it to the middle of the viewport. Otherwise it sits just
    left of the first rendered notes (sampling the first 3 to 8 of them).
    """
    if mode is ScrollMode.CENTER:
        return viewport_width / 2
    sample_size = min(8, max(3, len(notes)))
    xs = [info.x for info in notes[:sample_size] if info.x > 0]
    if not xs:
        return GUIDE_FALLBACK_X
    return float(round(min(xs) - GUIDE_OFFSET))


class PlaybackEngine:
    """
    Drive highlight, audio and progress from a virtual scroll position.

    State machine
    -------------
    ``STOPPED -> PLAYING`` (start), ``PLAYING <-> PAUSED`` (pause/resume),
    ``PLAYING -> FINISHED`` (every note passed, after a short grace delay) and
    any state ``-> STOPPED`` (reset). A finished engine must be reset before
    it plays again, and rejects tempo changes until then.

    Per frame
    ---------
    1. Read the tempo and advance ``scroll_pos`` by the elapsed time.
    2. Project ``scroll_pos`` to the visible offset for the scroll mode.
    3. Count the notes whose projected x has passed the guide line.
    4. Fire a trigger for each passed note above the watermark.
    5. Update note, beam and slur highlights.
    6. Report progress, check for completion, request the next frame.

    Triggers fire in ascending note-index order. ``last_fired_index`` is a
    watermark: a passed note fires only when its index is above it, so each
    note fires at most once. A note that passes after a higher-indexed note
    already fired (another part's staff) counts as played but does not sound.
    """

    def __init__(
        self,
        layout: LayoutResult,
        scheduler: FrameScheduler,
        *,
        bpm: int = 100,
        scroll_mode: ScrollMode | str = ScrollMode.SMOOTH,
        viewport_width: float = 1000.0,
        highlight_listener: HighlightListener | None = None,
        observer: PlaybackObserver | None = None,
        synth: Synth | None = None,
        sound_enabled: bool = False,
        grace_delay: float = DEFAULT_GRACE_DELAY,
        min_bpm: int = 1,
        max_bpm: int = 400,
    ) -> None:
        self.layout = layout
        self.scheduler = scheduler
        self.min_bpm = min_bpm
        self.max_bpm = max_bpm
        self.bpm = bpm
        self.scroll_mode = ScrollMode(scroll_mode)
        self.viewport_width = viewport_width
        self.highlight_listener = highlight_listener or HighlightListener()
        self.observer = observer or PlaybackObserver()
        self.synth = synth
        self.sound_enabled = sound_enabled
        self.grace_delay = grace_delay

        self._xs = np.array([info.x for info in layout.notes], dtype=float)
        self._measure_starts = np.array([m.x_start for m in layout.measures], dtype=float)
        self._measure_ends = np.array([m.x_end for m in layout.measures], dtype=float)
        self._beam_xs = np.array([span.x_start for span in layout.beams], dtype=float)
        self._slur_xs = np.array([span.x_start for span in layout.slurs], dtype=float)

        self.guide_x = guide_line_x(layout.notes, self.scroll_mode, viewport_width)
        self.state = PlaybackState.STOPPED
        self._frame_handle: int | None = None
        self._finish_handle: int | None = None
        self._clear_position()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _clear_position(self) -> None:
        self.scroll_pos = 0.0
        self.visible_offset = 0.0
        self.played = 0
        self.current_measure = 0
        self._last_fired = -1
        self._last_time: float | None = None
        self._note_near = np.zeros(len(self._xs), dtype=bool)
        self._beam_near = np.zeros(len(self._beam_xs), dtype=bool)
        self._slur_near = np.zeros(len(self._slur_xs), dtype=bool)

    def _set_state(self, state: PlaybackState) -> None:
        if state is self.state:
            return
        logger.info("Playback %s -> %s", self.state.value, state.value)
        self.state = state
        self.observer.on_state_change(state)

    def _cancel_pending(self) -> None:
        self.scheduler.cancel(self._frame_handle)
        self.scheduler.cancel(self._finish_handle)
        self._frame_handle = None
        self._finish_handle = None

    def _request_frame(self) -> None:
        self._frame_handle = self.scheduler.request_tick(self._on_frame)

    def _project(self) -> None:
        if self.scroll_mode is not ScrollMode.JUMPING:
            self.visible_offset = self.scroll_pos
            return

        # Binary search over measure starts: O(log measures) per frame.
        starts = self._measure_starts - self.guide_x
        index = int(np.searchsorted(starts, self.scroll_pos, side="right")) - 1
        if index < 0 or self.scroll_pos >= self._measure_ends[index] - self.guide_x:
            return

        measure = self.layout.measures[index]
        if measure.index != self.current_measure:
            logger.debug("Jumping to measure %d", measure.index + 1)
            self.current_measure = measure.index
            self.observer.on_measure_change(measure.index)
        self.visible_offset = measure.x_start - self.guide_x + JUMP_INSET

    def _passed(self) -> np.ndarray:
        return self._xs < self.scroll_pos + self.guide_x

    def _fire_triggers(self, passed: np.ndarray) -> None:
        first = self._last_fired + 1
        for offset in np.flatnonzero(passed[first:]):
            note_index = first + int(offset)
            self._last_fired = note_index
            trigger = build_trigger(note_index, self.layout.notes[note_index].note)
            self.observer.on_trigger(trigger)
            if not (self.sound_enabled and self.synth is not None):
                continue
            try:
                self.synth.trigger_attack_release(trigger.pitches, trigger.duration)
            except Exception:
                logger.exception("Error playing note %d", note_index)

    def _update_window(
        self,
        xs: np.ndarray,
        near_state: np.ndarray,
        window: float,
        notify: Callable[[int, bool], None],
    ) -> None:
        if not len(xs):
            return
        near = np.abs(xs - self.scroll_pos - self.guide_x) < window
        for index in np.flatnonzero(near != near_state):
            notify(int(index), bool(near[index]))
        near_state[:] = near

    def _update_highlights(self) -> None:
        listener = self.highlight_listener
        self._update_window(self._xs, self._note_near, NOTE_WINDOW, listener.on_note_proximity)
        self._update_window(self._beam_xs, self._beam_near, BEAM_WINDOW, listener.on_beam_proximity)
        self._update_window(self._slur_xs, self._slur_near, SLUR_WINDOW, listener.on_slur_proximity)

    def _clear_highlights(self) -> None:
        for index in np.flatnonzero(self._note_near):
            self.highlight_listener.on_note_far(int(index))
        for index in np.flatnonzero(self._beam_near):
            self.highlight_listener.on_beam_proximity(int(index), False)
        for index in np.flatnonzero(self._slur_near):
            self.highlight_listener.on_slur_proximity(int(index), False)

    def _on_frame(self, timestamp: float) -> None:
        self._frame_handle = None
        if self.state is not PlaybackState.PLAYING:
            return

        bpm = self.bpm
        delta = 0.0 if self._last_time is None else max(0.0, timestamp - self._last_time)
        self._last_time = timestamp
        self.scroll_pos += pixels_per_second(bpm) * delta

        self._project()
        passed = self._passed()
        played = max(self.played, int(np.count_nonzero(passed)))
        progressed = played != self.played
        self.played = played
        self._fire_triggers(passed)
        self._update_highlights()
        if progressed:
            self.observer.on_progress(self.played, self.total)

        if self.total and self.played >= self.total and self._finish_handle is None:
            self._finish_handle = self.scheduler.call_later(self.grace_delay, self._finish)

        self._request_frame()

    def _finish(self) -> None:
        self._finish_handle = None
        if self.state is not PlaybackState.PLAYING:
            return
        self.scheduler.cancel(self._frame_handle)
        self._frame_handle = None
        self._set_state(PlaybackState.FINISHED)
        logger.info("Playback complete: %d note(s)", self.total)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def total(self) -> int:
        return len(self._xs)

    @property
    def counter_text(self) -> str:
        return f"{self.played} / {self.total}"

    @property
    def last_fired_index(self) -> int:
        """Note index of the most recent trigger, or -1 before the first one."""
        return self._last_fired

    def start(self) -> bool:
        """
        Begin playback from the current position.

        Returns:
            True if playback started or resumed; False when there is no score,
            playback is already running, or the engine is finished (reset first).
        """
        if not self.total:
            logger.warning("No score loaded; start ignored")
            return False
        if self.state is PlaybackState.FINISHED:
            logger.warning("Playback finished; reset before playing again")
            return False
        if self.state is PlaybackState.PAUSED:
            return self.resume()
        if self.state is PlaybackState.PLAYING:
            return False

        self._last_time = self.scheduler.now()
        self._set_state(PlaybackState.PLAYING)
        self._request_frame()
        return True

    def pause(self) -> bool:
        if self.state is not PlaybackState.PLAYING:
            return False
        self._cancel_pending()
        self._set_state(PlaybackState.PAUSED)
        return True

    def resume(self) -> bool:
        if self.state is not PlaybackState.PAUSED:
            return False
        self._last_time = self.scheduler.now()
        self._set_state(PlaybackState.PLAYING)
        self._request_frame()
        return True

    def toggle_pause(self) -> bool:
        """Pause when playing, resume when paused."""
        if self.state is PlaybackState.PLAYING:
            return self.pause()
        return self.resume()

    def reset(self) -> None:
        """Stop, rewind to the beginning and clear every highlight."""
        self._cancel_pending()
        self._clear_highlights()
        self._clear_position()
        self._set_state(PlaybackState.STOPPED)
        self.observer.on_progress(0, self.total)

    def set_tempo(self, bpm: int) -> None:
        """
        Change the tempo; the next frame scrolls at the new speed.

        Raises:
            PlaybackError: If playback is finished or ``bpm`` is out of range.
        """
        if self.state is PlaybackState.FINISHED:
            raise PlaybackError("Tempo is locked until playback is reset.")
        if not self.min_bpm <= bpm <= self.max_bpm:
            raise PlaybackError(f"Tempo {bpm} BPM is outside {self.min_bpm}-{self.max_bpm} BPM.")
        self.bpm = bpm

    def set_scroll_mode(self, mode: ScrollMode | str) -> None:
        """Switch scroll mode and re-place the guide line; rewinds unless playing."""
        mode = ScrollMode(mode)
        if mode is self.scroll_mode:
            return
        self.scroll_mode = mode
        self.guide_x = guide_line_x(self.layout.notes, mode, self.viewport_width)
        logger.info("Scroll mode %s, guide line at %.0f px", mode.value, self.guide_x)
        if self.state is not PlaybackState.PLAYING:
            self.reset()
