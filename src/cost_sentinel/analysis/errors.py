"""Exceptions raised by the cost analysis engine."""


class CostAnalysisError(Exception):
    """Base class for analysis engine errors."""

    pass


class InsufficientDataError(CostAnalysisError):
    """Fewer data points than an algorithm or engine requires."""

    def __init__(self, required: int, actual: int, context: str = "analysis"):
        self.required = required
        self.actual = actual
        self.context = context
        super().__init__(
            f"Insufficient data for {context}: {actual} < {required} required"
        )


class NumericDegeneracyError(CostAnalysisError):
    """A zero standard deviation or zero denominator made a statistic undefined."""

    pass


class ModelFitError(CostAnalysisError):
    """A forecasting model failed to fit the series."""

    def __init__(self, model: str, reason: str):
        self.model = model
        self.reason = reason
        super().__init__(f"Model '{model}' failed: {reason}")


class NoViableModelError(CostAnalysisError):
    """Every requested forecasting model failed."""

    def __init__(self, attempted: list[str], required: int = 1, actual: int = 0):
        self.attempted = attempted
        self.required = required
        self.actual = actual
        super().__init__(
            f"No viable forecasting model (attempted: {', '.join(attempted) or 'none'})"
        )
