from fastapi import HTTPException


class FinanceError(HTTPException):
    """Business rule violation with a message safe to show to the user."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(status_code=status_code, detail=message)
        self.message = message


class NotFoundError(FinanceError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, status_code=404)


class ConflictError(FinanceError):
    def __init__(self, message: str):
        super().__init__(message, status_code=409)
