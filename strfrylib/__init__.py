"""Nostr relay building blocks: packed events, filters, subscriptions, live monitors, in-memory queries, decompression, metrics, a thread pool and a websocket client."""

__version__ = "0.1.0"