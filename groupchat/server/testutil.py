"""Helpers shared by the server test modules."""


class TickingClock:
    """Returns a strictly increasing millisecond timestamp on every call."""

    def __init__(self, start=1_700_000_000_000):
        self.now = start

    def __call__(self):
        self.now += 1
        return self.now
