"""BeatCollector - music collection catalog and background sync engine."""

__version__ = "0.1.0"
