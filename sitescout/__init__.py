"""SiteScout: live AI site inspection."""

__version__ = "0.1.0"
