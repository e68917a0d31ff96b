"""Task runner components.

Provides:
- a task graph with construction-time validation
- an asyncio execution driver
- file-watch mode
- settings, structured logging and a small CLI surface
"""
