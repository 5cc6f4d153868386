"""Domain layer - queue rotation, two-buffer playback, remote control."""
