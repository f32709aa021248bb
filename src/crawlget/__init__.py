"""crawlget core library.

A command-line fetcher for HTTP(S) resources: single downloads with redirect
and resume handling, and bounded-concurrency recursive crawls.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
