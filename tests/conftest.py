import pytest

from lucky_imaging.progress import ProgressReporter


class RecordingProgress(ProgressReporter):
    def __init__(self):
        self.updates = []
        self.closed = False

    def report(self, current, total):
        self.updates.append((current, total))

    def close(self):
        self.closed = True


@pytest.fixture
def recorder() -> RecordingProgress:
    return RecordingProgress()
