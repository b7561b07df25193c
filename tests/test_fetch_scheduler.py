"""Tests for request pacing and retry."""

import pytest
import sys
from pathlib import Path

# Add parent directory to path so we can import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from fetch_scheduler import FetchConfig, FetchScheduler
from common_objects import ResolutionFailed


class ScriptedResolver:
    """Raises or returns the queued results in order, recording every call"""

    def __init__(self, results=None):
        self.results = list(results or [])
        self.calls = []

    def resolve(self, url):
        self.calls.append(url)
        result = self.results.pop(0) if self.results else None
        if isinstance(result, Exception):
            raise result
        return url + "?lin=md|", "md|"


class TestPacing:

    def test_25_requests(self):
        sleeps = []
        scheduler = FetchScheduler(ScriptedResolver(), FetchConfig(delay_ms=200, batch_size=10, batch_delay_ms=2000),
                                   sleep=sleeps.append)
        for i in range(25):
            assert scheduler.fetch(f"https://tinyurl.com/{i}").ok
        assert sleeps.count(0.2) == 24
        assert sleeps.count(2.0) == 2
        assert len(sleeps) == 26

    def test_batch_pause_after_tenth_request(self):
        sleeps = []
        scheduler = FetchScheduler(ScriptedResolver(), FetchConfig(delay_ms=200, batch_size=10, batch_delay_ms=2000),
                                   sleep=sleeps.append)
        for i in range(11):
            scheduler.fetch(f"https://tinyurl.com/{i}")
        assert sleeps[-2:] == [0.2, 2.0]
        assert 2.0 not in sleeps[:-1]

    def test_first_request_not_delayed(self):
        sleeps = []
        FetchScheduler(ScriptedResolver(), FetchConfig(), sleep=sleeps.append).fetch("https://tinyurl.com/a")
        assert sleeps == []

    def test_zero_delay_never_sleeps(self):
        sleeps = []
        scheduler = FetchScheduler(ScriptedResolver(), FetchConfig(delay_ms=0, batch_size=1, batch_delay_ms=0),
                                   sleep=sleeps.append)
        for i in range(5):
            scheduler.fetch(f"https://tinyurl.com/{i}")
        assert sleeps == []


class TestRetry:

    def test_transient_retried_with_doubling_backoff(self):
        sleeps = []
        resolver = ScriptedResolver([ResolutionFailed("HTTP 429", transient=True, status=429),
                                     ResolutionFailed("HTTP 503", transient=True, status=503)])
        scheduler = FetchScheduler(resolver, FetchConfig(backoff_ms=1000, max_attempts=4), sleep=sleeps.append)
        outcome = scheduler.fetch("https://tinyurl.com/a")
        assert outcome.ok
        assert outcome.attempts == 3
        assert outcome.payload == "md|"
        assert sleeps == [1.0, 2.0]
        assert scheduler.requests_issued == 1

    def test_gives_up_after_max_attempts(self):
        resolver = ScriptedResolver([ResolutionFailed("timeout", transient=True)] * 5)
        scheduler = FetchScheduler(resolver, FetchConfig(max_attempts=3), sleep=lambda s: None)
        outcome = scheduler.fetch("https://tinyurl.com/a")
        assert not outcome.ok
        assert outcome.attempts == 3
        assert len(resolver.calls) == 3
        assert outcome.error.transient

    def test_permanent_not_retried(self):
        sleeps = []
        resolver = ScriptedResolver([ResolutionFailed("HTTP 404", status=404)])
        scheduler = FetchScheduler(resolver, FetchConfig(), sleep=sleeps.append)
        outcome = scheduler.fetch("https://tinyurl.com/gone")
        assert not outcome.ok
        assert outcome.attempts == 1
        assert len(resolver.calls) == 1
        assert sleeps == []

    def test_backoff_does_not_leak_between_urls(self):
        sleeps = []
        resolver = ScriptedResolver([ResolutionFailed("busy", transient=True), None,
                                     ResolutionFailed("busy", transient=True), None])
        scheduler = FetchScheduler(resolver, FetchConfig(delay_ms=0, backoff_ms=500), sleep=sleeps.append)
        scheduler.fetch("https://tinyurl.com/a")
        scheduler.fetch("https://tinyurl.com/b")
        assert sleeps == [0.5, 0.5]


class TestFetchConfig:

    @pytest.mark.parametrize("kwargs", [
        {"delay_ms": -1},
        {"batch_size": 0},
        {"batch_delay_ms": -5},
        {"max_attempts": 0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            FetchConfig(**kwargs)

    def test_from_config_file(self, tmp_path):
        ini = tmp_path / "fetch.ini"
        ini.write_text("[fetch]\ndelay_ms = 500\nbatch_size = 25\nresume = yes\n")
        config = FetchConfig.from_config_file(ini)
        assert config.delay_ms == 500
        assert config.batch_size == 25
        assert config.resume
        assert config.batch_delay_ms == FetchConfig().batch_delay_ms

    def test_missing_file_gives_defaults(self, tmp_path):
        assert FetchConfig.from_config_file(tmp_path / "absent.ini") == FetchConfig()
