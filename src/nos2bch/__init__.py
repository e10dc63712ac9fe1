"""nos2bch — Nostr key-custody agent with Bitcoin Cash tipping."""

__version__ = "0.1.0"
