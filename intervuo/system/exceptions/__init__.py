from intervuo.system.exceptions.api_exception_handler import (
    common_exception_handler,
    validation_exception_handler,
)
from intervuo.system.exceptions.base_exception import (
    BadRequestException,
    BaseHTTPException,
    NotFoundException,
    ServiceNotConfiguredException,
    UnauthorizedException,
    UpstreamFailureException,
)
from intervuo.system.exceptions.session_exceptions import (
    AnalysisFailed,
    ConnectionFailure,
    HandleAlreadyConsumed,
    NoSessionIdentifier,
    SessionError,
    VoiceAgentError,
)

__all__ = [
    "common_exception_handler",
    "validation_exception_handler",
    "BaseHTTPException",
    "BadRequestException",
    "UnauthorizedException",
    "NotFoundException",
    "ServiceNotConfiguredException",
    "UpstreamFailureException",
    "SessionError",
    "HandleAlreadyConsumed",
    "ConnectionFailure",
    "NoSessionIdentifier",
    "AnalysisFailed",
    "VoiceAgentError",
]
