class GameError(Exception):
    status_code = 400

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(GameError):
    status_code = 400


class NotFound(GameError):
    status_code = 404


class InsufficientFunds(GameError):
    status_code = 400


class SelfTransfer(GameError):
    status_code = 400


class BettingClosed(GameError):
    status_code = 400


class RoundNotReady(GameError):
    status_code = 400


class InactiveRound(GameError):
    status_code = 400


class PlayerBanned(GameError):
    status_code = 403


class Unauthorized(GameError):
    status_code = 401


class TransferFailed(GameError):
    status_code = 500


class MaintenanceMode(GameError):
    status_code = 503


class UpstreamStoreError(GameError):
    status_code = 500


class BalanceConflict(GameError):
    status_code = 409
