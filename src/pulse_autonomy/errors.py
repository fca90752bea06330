"""Exception types raised by the autonomy engine."""


class AutonomyError(Exception):
    """Base class for autonomy engine errors."""


class PolicyError(AutonomyError, ValueError):
    """Autonomy policy configuration is invalid."""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__("Invalid autonomy policy: " + "; ".join(self.errors))


class UnknownEffectError(AutonomyError, KeyError):
    """A reversal referenced an effect that was never applied."""


class StoreError(AutonomyError):
    """The persistence layer could not complete an operation."""


class UnknownClassError(AutonomyError, KeyError):
    """No autonomy class exists under the given owner and class key."""
