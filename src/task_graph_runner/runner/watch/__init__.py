"""Watch mode: glob matching and the change-triggered run loop."""

__all__: list[str] = []
