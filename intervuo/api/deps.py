from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from intervuo.context import AppContext
from intervuo.core.use_case import InterviewUseCase
from intervuo.system.auth import AuthenticatedUser
from intervuo.system.exceptions import UnauthorizedException

bearer_scheme = HTTPBearer(auto_error=False)


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_use_case(context: AppContext = Depends(get_context)) -> InterviewUseCase:
    return context.use_case


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    context: AppContext = Depends(get_context),
) -> AuthenticatedUser:
    if credentials is None or not credentials.credentials:
        raise UnauthorizedException("Missing bearer token")
    return context.verifier.verify(credentials.credentials)
