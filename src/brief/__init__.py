"""Brief: meeting notes with AI enhancement and local transcription."""

__version__ = "0.3.0"
