from fastapi import APIRouter, HTTPException, Request

from llmchat.models.schemas import RegisterRequest, UserPublic
from llmchat.services.users import RegistrationError

router = APIRouter(prefix="/users", tags=["users"])


def _public(user) -> UserPublic:
    return UserPublic(id=user.id, username=user.username, role=user.role, created_at=user.created_at)


@router.post("/register", response_model=UserPublic, status_code=201)
def register(data: RegisterRequest, request: Request):
    result = request.app.state.users.register(data.username, data.password)
    if result.error == RegistrationError.DUPLICATE_USERNAME:
        raise HTTPException(status_code=409, detail="Username already exists")
    if result.error == RegistrationError.INVALID_INPUT:
        raise HTTPException(status_code=422, detail="Username and password are required")
    return _public(result.user)


@router.post("/verify", response_model=UserPublic)
def verify(data: RegisterRequest, request: Request):
    user = request.app.state.users.verify_credentials(data.username, data.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid username or password")
    return _public(user)
