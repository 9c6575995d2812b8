"""Smooths fractional engine progress into a 0-100 display value."""


class ProgressTracker:
    """
    Monotonic clamp: a sample maps to its percentage (one decimal, clamped to
    0-100) and the displayed value never moves backwards within a job.
    """

    def __init__(self):
        self.percent: float = 0.0

    def reset(self) -> None:
        self.percent = 0.0

    def update(self, fraction: float) -> float:
        sample = min(100.0, max(0.0, round(float(fraction) * 100.0, 1)))
        if sample > self.percent:
            self.percent = sample
        return self.percent
