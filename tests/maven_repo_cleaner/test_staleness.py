from __future__ import annotations

import doctest

import pytest

from MavenRepoCleaner import staleness
from MavenRepoCleaner.filesystem import FileStat
from MavenRepoCleaner.settings import ExpirationStyle
from MavenRepoCleaner.staleness import (
    SECONDS_PER_DAY,
    accessed_before,
    is_stale,
    not_accessed_within,
    repository_expired,
    unconditional,
)

NOW = 1_700_000_000.0


def _stat(atime: float, mtime: float = NOW) -> FileStat:
    return FileStat(
        path="/r/a", name="a", is_dir=False, is_file=True, size=1, mtime=mtime, atime=atime
    )


def test_doctests_pass():
    failures, _ = doctest.testmod(staleness)
    assert failures == 0


class TestIsStale:
    def test_strictly_older_is_stale(self):
        assert is_stale(99.0, 100.0)

    def test_equal_is_not_stale(self):
        assert not is_stale(100.0, 100.0)
        assert not is_stale(50.0, 100.0, 50)

    def test_threshold_shifts_boundary(self):
        assert is_stale(49.0, 100.0, 50)
        assert not is_stale(51.0, 100.0, 50)

    def test_monotonic_in_timestamp(self):
        reference = 1000.0
        results = [is_stale(ts, reference, 100) for ts in range(800, 1000, 10)]
        # once a timestamp is fresh, every later timestamp is fresh too
        assert results == sorted(results, reverse=True)


class TestFactories:
    def test_accessed_before_compares_atime(self):
        test = accessed_before(NOW)
        assert test(_stat(atime=NOW - 1, mtime=NOW + 10))
        assert not test(_stat(atime=NOW + 1, mtime=NOW - 10))

    def test_not_accessed_within_window(self):
        test = not_accessed_within(NOW, 7)
        assert test(_stat(atime=NOW - 8 * SECONDS_PER_DAY))
        assert not test(_stat(atime=NOW - 6 * SECONDS_PER_DAY))

    def test_unconditional(self):
        assert unconditional()(_stat(atime=NOW + 1000))


class TestRepositoryExpired:
    old = NOW - 10 * SECONDS_PER_DAY
    young = NOW - 1 * SECONDS_PER_DAY

    def test_added_uses_directory_mtime(self):
        assert repository_expired(
            ExpirationStyle.ADDED, now=NOW, expiration_days=7, root_mtime=self.old,
            marker_mtime=self.young,
        )
        assert not repository_expired(
            ExpirationStyle.ADDED, now=NOW, expiration_days=7, root_mtime=self.young,
            marker_mtime=self.old,
        )

    def test_changed_uses_marker_mtime(self):
        assert repository_expired(
            ExpirationStyle.CHANGED, now=NOW, expiration_days=7, root_mtime=self.young,
            marker_mtime=self.old,
        )
        assert not repository_expired(
            ExpirationStyle.CHANGED, now=NOW, expiration_days=7, root_mtime=self.old,
            marker_mtime=self.young,
        )

    def test_regardless_always_expires(self):
        assert repository_expired(ExpirationStyle.REGARDLESS, now=NOW, expiration_days=7)

    @pytest.mark.parametrize("style", [ExpirationStyle.ADDED, ExpirationStyle.CHANGED])
    def test_missing_timestamp_keeps_repository(self, style):
        assert not repository_expired(style, now=NOW, expiration_days=7)
