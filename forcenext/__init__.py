"""Forces playback to continue to the next episode on Prime Video."""

__version__ = "1.0.0"
