import time
import logging
from pathlib import Path
from dataclasses import dataclass
from configparser import ConfigParser
from typing import Callable, Optional
from common_objects import ResolutionFailed
from link_resolver import LinkResolver

logger = logging.getLogger(__name__)

@dataclass
class FetchConfig:
    """Pacing and retry policy for link resolution."""
    delay_ms: int = 200             # Between consecutive requests
    batch_size: int = 10            # Requests after which batch_delay_ms is added
    batch_delay_ms: int = 2000
    resume: bool = False
    max_attempts: int = 4           # Including the first attempt
    backoff_ms: int = 2000          # First retry wait, doubled on each further retry

    def __post_init__(self):
        if self.delay_ms < 0 or self.batch_delay_ms < 0 or self.backoff_ms < 0:
            raise ValueError("Delays must be non-negative")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    @classmethod
    def from_config_file(cls, config_path: Path) -> 'FetchConfig':
        """Load the [fetch] section of an ini file, falling back to defaults."""
        config = ConfigParser()
        config.read(config_path)
        defaults = cls()
        return cls(
            delay_ms=config.getint('fetch', 'delay_ms', fallback=defaults.delay_ms),
            batch_size=config.getint('fetch', 'batch_size', fallback=defaults.batch_size),
            batch_delay_ms=config.getint('fetch', 'batch_delay_ms', fallback=defaults.batch_delay_ms),
            resume=config.getboolean('fetch', 'resume', fallback=defaults.resume),
            max_attempts=config.getint('fetch', 'max_attempts', fallback=defaults.max_attempts),
            backoff_ms=config.getint('fetch', 'backoff_ms', fallback=defaults.backoff_ms),
        )

@dataclass
class FetchOutcome:
    url: str
    final_url: str = ""
    payload: str = ""
    error: Optional[ResolutionFailed] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

class FetchScheduler:
    """
    Issues resolver calls one at a time, in the order they are requested, with fixed pacing.
    Only the request counter is shared between calls; retry state stays inside fetch().
    """

    def __init__(self, resolver: LinkResolver, config: FetchConfig,
                 sleep: Callable[[float], None] = time.sleep):
        self.resolver = resolver
        self.config = config
        self._sleep = sleep
        self.requests_issued: int = 0

    def _pause(self, ms: int) -> None:
        if ms > 0:
            self._sleep(ms / 1000.0)

    def _pace(self) -> None:
        if self.requests_issued > 0:
            self._pause(self.config.delay_ms)
            if self.requests_issued % self.config.batch_size == 0:
                logger.info(f"Batch of {self.config.batch_size} requests done, pausing {self.config.batch_delay_ms} ms")
                self._pause(self.config.batch_delay_ms)
        self.requests_issued += 1

    def fetch(self, url: str) -> FetchOutcome:
        self._pace()
        attempt = 1
        backoff_ms = self.config.backoff_ms
        while True:
            try:
                final_url, payload = self.resolver.resolve(url)
                return FetchOutcome(url, final_url, payload, attempts=attempt)
            except ResolutionFailed as e:
                if not e.transient or attempt >= self.config.max_attempts:
                    logger.warning(f"Giving up on {url} after {attempt} attempt(s): {e}")
                    return FetchOutcome(url, error=e, attempts=attempt)
                logger.info(f"Transient failure on {url} ({e}), retrying in {backoff_ms} ms")
                self._pause(backoff_ms)
                backoff_ms *= 2
                attempt += 1
