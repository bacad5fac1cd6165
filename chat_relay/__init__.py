"""Minimal WebSocket chat relay with its client page served on the same port."""
