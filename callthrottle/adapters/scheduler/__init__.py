"""Scheduler adapters.

Throttles depend on a small scheduler abstraction (clock, deferred tasks,
unhandled-failure channel) so they can run on an asyncio loop in production
and on a simulated clock in tests without changing the controller.
"""
