"""Discord integration for Murahdahla.

The bot runs in-process with FastAPI, sharing the same event loop. It
turns prefix commands and submission-channel messages into calls on the
core command surface and carries out the resulting chat side effects.

Optional: if DISCORD_BOT_TOKEN is not set, the app runs without Discord.
"""
