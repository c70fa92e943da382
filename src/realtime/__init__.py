"""Realtime agent transport, wire protocol and tool definitions."""
