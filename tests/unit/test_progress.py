from __future__ import annotations

from unittest.mock import patch

from guestops.services.progress import ProgressTracker, is_tty_enabled


def test_is_tty_enabled_returns_stdout_isatty():
    with patch("sys.stdout.isatty", return_value=True):
        assert is_tty_enabled() is True
    with patch("sys.stdout.isatty", return_value=False):
        assert is_tty_enabled() is False


class TestProgressTracker:
    def test_init_with_tty_enabled(self):
        with patch("guestops.services.progress.is_tty_enabled", return_value=True), \
             patch("guestops.services.progress.tqdm") as mock_tqdm:
            tracker = ProgressTracker(5, description="Applying import")

            assert tracker.enabled is True
            mock_tqdm.assert_called_once_with(
                total=5,
                desc="Applying import",
                unit="guest",
                leave=False,
                ncols=80,
                ascii=True,
            )

    def test_init_with_tty_disabled(self):
        with patch("guestops.services.progress.is_tty_enabled", return_value=False), \
             patch("guestops.services.progress.tqdm") as mock_tqdm:
            tracker = ProgressTracker(5)
            assert tracker.enabled is False
            assert tracker.pbar is None
            mock_tqdm.assert_not_called()

    def test_zero_total_disables_bar(self):
        with patch("guestops.services.progress.is_tty_enabled", return_value=True), \
             patch("guestops.services.progress.tqdm") as mock_tqdm:
            tracker = ProgressTracker(0)
            assert tracker.enabled is False
            mock_tqdm.assert_not_called()

    def test_advance_stage_and_close(self):
        with patch("guestops.services.progress.is_tty_enabled", return_value=True), \
             patch("guestops.services.progress.tqdm") as mock_tqdm:
            pbar = mock_tqdm.return_value
            with ProgressTracker(3, description="Applying") as tracker:
                tracker.set_stage("added")
                tracker.advance(2)
                tracker.advance()
                tracker.set_postfix(errors=0)

            assert tracker.done == 3
            pbar.set_description.assert_called_once_with("Applying (added)")
            assert [c.args for c in pbar.update.call_args_list] == [(2,), (1,)]
            pbar.set_postfix.assert_called_once_with(errors=0)
            pbar.close.assert_called_once()
            assert tracker.pbar is None

    def test_disabled_tracker_still_counts(self):
        with patch("guestops.services.progress.is_tty_enabled", return_value=False):
            tracker = ProgressTracker(2)
            tracker.set_stage("modified")
            tracker.advance(2)
            tracker.close()
            assert tracker.done == 2
