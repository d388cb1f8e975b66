"""Line-protocol command handlers; each exposes ``execute(raw_command, container)``."""
