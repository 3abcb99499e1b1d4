class SessionError(Exception):
    """Base error for session orchestration."""


class NoActiveSession(SessionError):
    def __init__(self, operation: str = ""):
        self.operation = str(operation or "")
        message = "No active interview session"
        if self.operation:
            message = f"{message} for {self.operation}"
        super().__init__(message)


class RoundOrderViolation(SessionError):
    def __init__(self, message: str, current_round: int, requested_round: int | None = None):
        super().__init__(message)
        self.current_round = int(current_round)
        self.requested_round = requested_round


class InvalidContribution(SessionError, ValueError):
    pass


class SessionDecodeError(SessionError):
    pass


class SessionClosed(NoActiveSession):
    def __init__(self, operation: str = "", status: str = ""):
        self.operation = str(operation or "")
        self.status = str(status or "closed")
        SessionError.__init__(self, f"Interview session is already {self.status}")


class DuplicateEvent(SessionError):
    def __init__(self, event_id: str):
        super().__init__(f"Event {event_id} was already applied")
        self.event_id = str(event_id)
