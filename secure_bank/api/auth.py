"""
Signup, login and session endpoints
"""

from fastapi import APIRouter, Depends, Request, Response, status

from .dependencies import BankingSystem, get_banking_system, get_current_user
from .schemas import AuthResponse, LoginRequest, SignupRequest, UserResponse
from ..auth import AuthResult, User


router = APIRouter()


def _auth_response(result: AuthResult, response: Response) -> AuthResponse:
    response.headers.append("set-cookie", result.cookie)
    return AuthResponse(user=UserResponse.from_user(result.user), token=result.token)


@router.post("/signup", status_code=status.HTTP_201_CREATED, response_model=AuthResponse)
def signup(
    request: SignupRequest,
    response: Response,
    system: BankingSystem = Depends(get_banking_system)
):
    """Register a user and start their session"""
    result = system.identity.signup(request.to_signup_data())
    return _auth_response(result, response)


@router.post("/login", response_model=AuthResponse)
def login(
    request: LoginRequest,
    response: Response,
    system: BankingSystem = Depends(get_banking_system)
):
    """Log in, replacing any existing session"""
    result = system.identity.login(request.email, request.password)
    return _auth_response(result, response)


@router.post("/logout")
def logout(
    request: Request,
    response: Response,
    system: BankingSystem = Depends(get_banking_system)
):
    """End the current session, if any"""
    context = system.identity.build_context(request.headers.get("cookie"))
    response.headers.append("set-cookie", system.identity.logout(context))
    return {"success": True}


@router.get("/me", response_model=UserResponse)
def me(user: User = Depends(get_current_user)):
    """Get the authenticated user"""
    return UserResponse.from_user(user)
