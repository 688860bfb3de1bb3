"""Realtime collaboration domain: event taxonomy, envelopes, presence bookkeeping."""
