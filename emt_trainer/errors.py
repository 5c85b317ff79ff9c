"""Exceptions raised by the assessment engine."""


class EmtTrainerError(Exception):
    """Base class for all engine errors."""


class ScenarioValidationError(EmtTrainerError):
    """A candidate scenario broke a structural rule. `field` names the first violation."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"Scenario validation failed: {field}: {message}")


class GenerationValidationError(EmtTrainerError):
    """Generated content was rejected by the validator and was not cached."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"Generated scenario rejected ({field}): {message}")


class ScenarioParseError(EmtTrainerError):
    """The generator response did not contain a JSON object."""


class PerformanceConflictError(EmtTrainerError):
    """A performance upsert kept losing the compare-and-set race."""


class IllegalTransitionError(EmtTrainerError):
    """A question or session was asked to make a transition it cannot make."""
