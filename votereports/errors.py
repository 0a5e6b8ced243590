class ReportError(Exception):
    """Base class for every error a report can raise to its caller."""

    kind = "report_error"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class NotFound(ReportError):
    kind = "not_found"
    status_code = 404


class InvalidArgument(ReportError):
    kind = "invalid_argument"
    status_code = 400


class DataAccessError(ReportError):
    """The store was unreachable or a query failed. The cause is chained."""

    kind = "data_access_error"
    status_code = 503
