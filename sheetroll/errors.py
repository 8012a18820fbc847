"""Exception hierarchy shared by the parser, layout engine and playback engine."""


class SheetrollError(Exception):
    """Base class for all sheetroll errors."""


class ScoreParseError(SheetrollError, ValueError):
    """The document could not be read as a MusicXML score at all."""


class LayoutError(SheetrollError):
    """A single measure could not be formatted."""


class PlaybackError(SheetrollError):
    """A playback control was used in a state that does not allow it."""


class ResourceUnavailable(SheetrollError):
    """A rendering or audio collaborator is not ready."""
