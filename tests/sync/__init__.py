"""Sync integration tests.

Two simulated devices share one store and exercise the engine end to end:
- In-process store: offline queueing, echo suppression, remote-wins merge,
  retry budget and dead letters, heartbeats, restart recovery
- Reference store server over HTTP: push, fetch and change polling
"""
