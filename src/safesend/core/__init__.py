"""Core domain package for safesend.

Core contains admission gates, the delivery queue and the connection state
machine without any Telegram or filesystem-specific code, keeping the
delivery rules portable across transports.
"""
