from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigError

DEFAULT_USER_AGENT = "crawlget/0.1 (+https://pypi.org/project/crawlget/)"


@dataclass(frozen=True)
class CrawlConfig:
    """Policy snapshot for a single crawl; shared read-only by all workers."""

    max_redirects: int = 10
    follow_redirects: bool = True
    resume: bool = False
    force: bool = False
    recursive: bool = False
    max_depth: int = 5
    max_concurrent: int = 5
    same_domain: bool = False

    timeout_s: float = 30.0
    user_agent: str = DEFAULT_USER_AGENT
    output_dir: Path = field(default_factory=lambda: Path("."))

    def __post_init__(self) -> None:
        for name in ("max_redirects", "max_depth", "max_concurrent"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 0:
                raise ConfigError(f"{name} must be a non-negative integer")
        if self.max_concurrent < 1:
            raise ConfigError("max_concurrent must be at least 1")
        if self.timeout_s <= 0:
            raise ConfigError("timeout_s must be positive")
