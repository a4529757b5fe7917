"""Core library for cocd, a GitHub Actions continuous deployment monitor.

The modules here scan organization repositories for workflow runs waiting on
manual approval, keep a consistent in-memory view of them, and drive the
terminal dashboard that approves or cancels runs.
"""

__all__ = ["config", "errors", "github", "scanner", "monitor", "tui"]
__version__ = "0.3.0"
