import logging

import click
import pytest

from lucky_imaging.progress import LoggingProgress, TqdmProgress, format_message


def test_tqdm_progress_never_moves_backwards():
    with TqdmProgress(desc="test", disable=True) as progress:
        progress.report(0, 10)
        progress.report(4, 10)
        progress.report(2, 10)
        assert progress._position == 4
        progress.report(12, 12)
        assert progress._position == 12
        assert progress._bar.total == 12
    assert progress._bar is None


def test_tqdm_progress_accepts_unknown_total():
    progress = TqdmProgress(disable=True)
    progress.report(0, None)
    progress.report(3, None)
    progress.report(3, 3)

    assert progress._bar.total == 3
    progress.close()


def test_logging_progress_logs_in_steps(caplog):
    progress = LoggingProgress(desc="Coadding", step=25)

    with caplog.at_level(logging.INFO, logger="lucky_imaging.progress"):
        for current in range(0, 101):
            progress.report(current, 100)

    percents = [record.getMessage().split(": ")[1].split("%")[0] for record in caplog.records]
    assert percents == ["0", "25", "50", "75", "100"]


def test_logging_progress_ignores_unknown_total(caplog):
    with caplog.at_level(logging.INFO, logger="lucky_imaging.progress"):
        LoggingProgress().report(5, None)

    assert not caplog.records


def test_format_message_levels():
    assert format_message("plain") == "plain"
    assert click.unstyle(format_message("done", "success")) == "done"
    assert format_message("oops", "error") != "oops"

    with pytest.raises(ValueError):
        format_message("x", "critical")
