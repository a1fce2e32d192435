from fastapi import status


class BaseHTTPException(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail: str = "Internal server error"

    def __init__(self, detail: str | None = None, status_code: int | None = None):
        if detail is not None:
            self.detail = detail
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.detail)


class BadRequestException(BaseHTTPException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Bad request"


class UnauthorizedException(BaseHTTPException):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Not authenticated"


class NotFoundException(BaseHTTPException):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Not found"


class ServiceNotConfiguredException(BaseHTTPException):
    detail = "Service not configured on server"


class UpstreamFailureException(BaseHTTPException):
    detail = "Upstream service failed"
