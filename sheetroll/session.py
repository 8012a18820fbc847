"""ScoreSession: one loaded score with its layout, playback engine and settings."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Callable, Final

from sheetroll.audio import Synth
from sheetroll.config import PlaybackSettings
from sheetroll.errors import PlaybackError, ResourceUnavailable, ScoreParseError
from sheetroll.measure_layout import MeasureLayoutEngine
from sheetroll.musicxml_parser import DEFAULT_COMPOSER, DEFAULT_TITLE, load_musicxml, parse_musicxml
from sheetroll.notation_renderers import SheetRenderer
from sheetroll.playback import (
    HighlightListener,
    PlaybackEngine,
    PlaybackObserver,
    PlaybackState,
    ScrollMode,
)
from sheetroll.scheduler import FrameScheduler
from sheetroll.score_models import LayoutResult, MusicData
from sheetroll.stave_formatter import StaveFormatter

logger = logging.getLogger(__name__)

#: ``status_callback(level, message)``; level is one of info, success, warning, error.
StatusCallback = Callable[[str, str], None]

_HEX_COLOR: Final = re.compile(r"^#(?:[0-9a-fA-F]{3,4}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")
_FUNCTIONAL_COLOR: Final = re.compile(r"^(?:rgba?|hsla?)\(\s*[-+0-9.%,\s/a-z]+\)$", re.IGNORECASE)

_NAMED_COLORS: Final[frozenset[str]] = frozenset(
    """
    aliceblue antiquewhite aqua aquamarine azure beige bisque black blanchedalmond blue
    blueviolet brown burlywood cadetblue chartreuse chocolate coral cornflowerblue cornsilk
    crimson cyan darkblue darkcyan darkgoldenrod darkgray darkgreen darkgrey darkkhaki
    darkmagenta darkolivegreen darkorange darkorchid darkred darksalmon darkseagreen
    darkslateblue darkslategray darkslategrey darkturquoise darkviolet deeppink deepskyblue
    dimgray dimgrey dodgerblue firebrick floralwhite forestgreen fuchsia gainsboro ghostwhite
    gold goldenrod gray green greenyellow grey honeydew hotpink indianred indigo ivory khaki
    lavender lavenderblush lawngreen lemonchiffon lightblue lightcoral lightcyan
    lightgoldenrodyellow lightgray lightgreen lightgrey lightpink lightsalmon lightseagreen
    lightskyblue lightslategray lightslategrey lightsteelblue lightyellow lime limegreen linen
    magenta maroon mediumaquamarine mediumblue mediumorchid mediumpurple mediumseagreen
    mediumslateblue mediumspringgreen mediumturquoise mediumvioletred midnightblue mintcream
    mistyrose moccasin navajowhite navy oldlace olive olivedrab orange orangered orchid
    palegoldenrod palegreen paleturquoise palevioletred papayawhip peachpuff peru pink plum
    powderblue purple rebeccapurple red rosybrown royalblue saddlebrown salmon sandybrown
    seagreen seashell sienna silver skyblue slateblue slategray slategrey snow springgreen
    steelblue tan teal thistle tomato turquoise violet wheat white whitesmoke yellow
    yellowgreen transparent currentcolor
    """.split()
)


def is_valid_color(color: str) -> bool:
    """True for CSS named colours, hex colours (``#rgb``, ``#rrggbb``, with alpha) and rgb()/hsl() forms."""
    color = color.strip()
    if color.lower() in _NAMED_COLORS:
        return True
    return bool(_HEX_COLOR.match(color) or _FUNCTIONAL_COLOR.match(color))


def _log_status(level: str, message: str) -> None:
    logger.log(logging.ERROR if level == "error" else logging.INFO, message)


class ScoreSession:
    """
    Explicit context for one user session.

    Holds the current score, its layout and the playback engine driving it.
    Loading a new score replaces all three at once; a failed load reports an
    error status and leaves the previous score playable. User-facing results
    go through ``status_callback`` rather than exceptions.
    """

    def __init__(
        self,
        settings: PlaybackSettings,
        scheduler: FrameScheduler,
        formatter: StaveFormatter | None = None,
        synth: Synth | None = None,
        highlight_listener: HighlightListener | None = None,
        observer: PlaybackObserver | None = None,
        status_callback: StatusCallback | None = None,
    ) -> None:
        self.settings = settings
        self.scheduler = scheduler
        self.layout_engine = MeasureLayoutEngine(formatter)
        self.synth = synth
        self.highlight_listener = highlight_listener
        self.observer = observer
        self.status_callback = status_callback or _log_status

        self.music_data: MusicData | None = None
        self.layout_result: LayoutResult | None = None
        self.engine: PlaybackEngine | None = None

        self.tempo = settings.bpm
        self.scroll_mode = ScrollMode(settings.scroll_mode)
        self.highlight_color = settings.highlight_color if is_valid_color(settings.highlight_color) else "#2ecc71"
        self.sound_enabled = settings.sound_enabled and synth is not None
        if highlight_listener is not None:
            highlight_listener.on_color_change(self.highlight_color)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _status(self, level: str, message: str) -> None:
        self.status_callback(level, message)

    def _require_synth(self) -> Synth:
        if self.synth is None:
            raise ResourceUnavailable("No synthesizer is available; sound stays off.")
        return self.synth

    def _require_formatter(self) -> None:
        if not self.layout_engine.formatter.is_ready():
            raise ResourceUnavailable("The notation formatter is not ready; try loading again.")

    def _install(self, music_data: MusicData) -> None:
        layout_result = self.layout_engine.layout(music_data)
        if self.engine is not None:
            self.engine.reset()

        self.music_data = music_data
        self.layout_result = layout_result
        self.engine = PlaybackEngine(
            layout_result,
            self.scheduler,
            bpm=self.tempo,
            scroll_mode=self.scroll_mode,
            viewport_width=self.settings.viewport_width,
            highlight_listener=self.highlight_listener,
            observer=self.observer,
            synth=self.synth,
            sound_enabled=self.sound_enabled,
            grace_delay=self.settings.grace_delay,
            min_bpm=self.settings.min_bpm,
            max_bpm=self.settings.max_bpm,
        )

        self._status(
            "success",
            f"Loaded '{music_data.work_title}' by {music_data.composer}: "
            f"{music_data.total_notes} note(s) in {len(music_data.parts)} part(s).",
        )
        if layout_result.layout_errors:
            self._status(
                "warning",
                f"{len(layout_result.layout_errors)} measure(s) could not be formatted; "
                "their notes are placed approximately.",
            )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load_file(self, path: str | Path) -> bool:
        """Load a MusicXML or ``.mxl`` file. Returns False (and keeps the old score) on failure."""
        try:
            self._require_formatter()
            music_data = load_musicxml(path)
        except ResourceUnavailable as exc:
            self._status("error", str(exc))
            return False
        except (ScoreParseError, OSError) as exc:
            self._status("error", f"Could not load '{path}': {exc}")
            return False
        self._install(music_data)
        return True

    def load_text(self, xml_text: str | bytes) -> bool:
        """Load MusicXML text. Returns False (and keeps the old score) on failure."""
        try:
            self._require_formatter()
            music_data = parse_musicxml(xml_text)
        except ResourceUnavailable as exc:
            self._status("error", str(exc))
            return False
        except ScoreParseError as exc:
            self._status("error", f"Could not parse MusicXML: {exc}")
            return False
        self._install(music_data)
        return True

    @property
    def work_title(self) -> str:
        return self.music_data.work_title if self.music_data else DEFAULT_TITLE

    @property
    def composer(self) -> str:
        return self.music_data.composer if self.music_data else DEFAULT_COMPOSER

    @property
    def state(self) -> PlaybackState:
        return self.engine.state if self.engine else PlaybackState.STOPPED

    @property
    def counter_text(self) -> str:
        return self.engine.counter_text if self.engine else "0 / 0"

    def start(self) -> bool:
        if self.engine is None:
            self._status("warning", "Load a score before pressing play.")
            return False
        if self.engine.state is PlaybackState.FINISHED:
            self._status("info", "Playback finished; reset to play again.")
            return False
        return self.engine.start()

    def toggle_pause(self) -> bool:
        return self.engine.toggle_pause() if self.engine else False

    def reset(self) -> None:
        if self.engine is not None:
            self.engine.reset()

    def set_tempo(self, bpm: int) -> bool:
        """Change the tempo for the current and future scores."""
        if self.engine is not None:
            try:
                self.engine.set_tempo(bpm)
            except PlaybackError as exc:
                self._status("error", str(exc))
                return False
        elif not self.settings.min_bpm <= bpm <= self.settings.max_bpm:
            self._status(
                "error",
                f"Tempo {bpm} BPM is outside {self.settings.min_bpm}-{self.settings.max_bpm} BPM.",
            )
            return False
        self.tempo = bpm
        return True

    def set_scroll_mode(self, mode: ScrollMode | str) -> bool:
        try:
            scroll_mode = ScrollMode(mode)
        except ValueError:
            self._status("error", f"Unknown scroll mode '{mode}'.")
            return False
        self.scroll_mode = scroll_mode
        if self.engine is not None:
            self.engine.set_scroll_mode(scroll_mode)
        return True

    def set_highlight_color(self, color: str) -> bool:
        """Change the highlight colour; the listener and later renders pick it up."""
        if not is_valid_color(color):
            self._status("error", f"'{color}' is not a valid colour.")
            return False
        self.highlight_color = color.strip()
        if self.highlight_listener is not None:
            self.highlight_listener.on_color_change(self.highlight_color)
        return True

    def render(self, renderer: SheetRenderer) -> str | None:
        """Render the loaded score in the current highlight colour; None without a score."""
        if self.music_data is None or self.layout_result is None:
            self._status("warning", "Load a score before rendering it.")
            return None
        return renderer.render(
            music_data=self.music_data,
            layout_result=self.layout_result,
            highlight_color=self.highlight_color,
        )

    def set_sound_enabled(self, enabled: bool) -> bool:
        """Turn audio on or off. Turning it on needs a synthesizer."""
        if enabled:
            try:
                self._require_synth()
            except ResourceUnavailable as exc:
                self._status("error", str(exc))
                return False
        self.sound_enabled = enabled
        if self.engine is not None:
            self.engine.sound_enabled = enabled
        return True
