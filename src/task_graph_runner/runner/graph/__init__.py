"""Task graph domain.

This package holds first-class types for:
- the task registry and its dependency graph
- the per-invocation task state machine
- the execution driver and the reports it produces
"""

__all__: list[str] = []
