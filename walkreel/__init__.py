"""walkreel - narrated highlight reels from walkthrough videos."""

__version__ = "0.1.0"
