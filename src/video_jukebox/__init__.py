"""Video Jukebox - rotating video playback with priority requests and remote control."""

__version__ = "0.1.0"
