"""sheetroll: MusicXML scroll-along sheet music playback."""

__version__ = "0.1.0"
