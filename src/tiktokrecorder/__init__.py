"""TikTok Live Recorder: record TikTok lives, remux them to MP4 and upload them to Telegram."""

__version__ = "1.0.0"
