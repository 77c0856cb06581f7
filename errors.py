"""
Error taxonomy shared by the domain modules.

Validation and state-conflict messages are user facing and returned verbatim.
Remote failures carry a detail for the logs only; callers get a generic
retry message.
"""


class AppError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(AppError):
    status_code = 400


class NotFound(AppError):
    status_code = 404


class NotEligible(AppError):
    status_code = 403


class StateConflict(AppError):
    status_code = 409


class InsufficientPoints(StateConflict):
    def __init__(self, balance: int, cost: int):
        super().__init__("Not enough points")
        self.balance = balance
        self.cost = cost


class SettlementError(AppError):
    status_code = 502
    public_message = "The token network is unavailable right now. Please try again."
