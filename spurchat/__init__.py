"""Spur chat: a streaming support-chat backend with pluggable response strategies."""
