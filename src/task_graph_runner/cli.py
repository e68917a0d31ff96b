"""Console script entrypoint.

The CLI is implemented in `task_graph_runner.runner.main`.
"""

from __future__ import annotations

from task_graph_runner.runner.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
