"""Domain errors surfaced by the booking core.

Route handlers translate these into HTTP responses; the reconciliation engine
never lets them escape a pass.
"""


class ReservationError(Exception):
    """Base for errors returned to the caller of a booking operation."""

    code = "reservation_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConflictError(ReservationError):
    """The court (or one of the full-venue courts) is already held for an overlapping interval."""

    code = "conflict"


class InsufficientBalanceError(ReservationError):
    code = "insufficient_balance"

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(f"Insufficient points: {required} required, {available} available.")


class NotFoundError(ReservationError):
    code = "not_found"


class InvalidStateError(ReservationError):
    code = "invalid_state"


class PricingError(ReservationError):
    code = "pricing"


class ReservationViolation(ReservationError):
    """Raised when a booking rule is violated."""

    code = "rule_violation"

    def __init__(self, rule: str, message: str):
        self.rule = rule
        super().__init__(message)


class ReservationRejected(ReservationError):
    """One or more booking rules failed; carries every violation found."""

    code = "rule_violation"

    def __init__(self, violations: list[ReservationViolation]):
        self.violations = violations
        super().__init__("; ".join(v.message for v in violations))
