"""Error types raised by the recommendation core."""


class ValidationError(ValueError):
    """Caller misuse: empty ratings or pool, bad rating values, no strategy."""


class StrategyFailure(RuntimeError):
    """An unexpected exception raised while a strategy was scoring."""

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"Recommendation generation failed during {stage}: {cause}")


class RecommendationTimeout(TimeoutError):
    """The peer scan ran past its deadline. Safe to retry."""

    retryable = True

    def __init__(self, stage: str, elapsed: float, budget: float):
        self.stage = stage
        self.elapsed = elapsed
        self.budget = budget
        super().__init__(f"{stage} exceeded its {budget:.2f}s deadline after {elapsed:.2f}s")
