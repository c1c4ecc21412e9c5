"""
HTTP error taxonomy shared by every router.

Each class fixes the status code so the same failure gets the same status on
every resource. The message ends up in the `message` field of the response.
"""
from fastapi import HTTPException


class BadRequest(HTTPException):
    def __init__(self, message: str = "Bad request"):
        super().__init__(status_code=400, detail=message)


class Unauthorized(HTTPException):
    def __init__(self, message: str = "Not authenticated"):
        super().__init__(status_code=401, detail=message, headers={"WWW-Authenticate": "Bearer"})


class Forbidden(HTTPException):
    def __init__(self, message: str = "Access denied"):
        super().__init__(status_code=403, detail=message)


class NotFound(HTTPException):
    def __init__(self, message: str = "Not found"):
        super().__init__(status_code=404, detail=message)


class Conflict(HTTPException):
    def __init__(self, message: str = "Already exists"):
        super().__init__(status_code=409, detail=message)


class ServerError(HTTPException):
    """
    The client only ever sees the generic message. `error` keeps the handler's
    context for the logs and, outside production, the `error` response field.
    """
    def __init__(self, error: str = "Internal server error"):
        super().__init__(status_code=500, detail="Something went wrong!")
        self.error = error
