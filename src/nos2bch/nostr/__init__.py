"""Nostr primitives — NIP-01 events, NIP-04/44 encryption, NIP-19 entities."""
