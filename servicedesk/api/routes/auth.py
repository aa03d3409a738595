from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.api.dependencies import CurrentUser, get_current_user
from servicedesk.database import get_db
from servicedesk.exceptions import UnauthorizedError
from servicedesk.schemas.auth import LoginRequest, TokenResponse
from servicedesk.schemas.user import DepartmentResponse, MeResponse
from servicedesk.services import auth_service, scope_service

router = APIRouter()


@router.post("/login", response_model=TokenResponse)
async def login(
    data: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """Authenticate a user and return an access token."""
    user = await auth_service.authenticate(db, data.username, data.password)
    if user is None:
        raise UnauthorizedError("Invalid credentials", code="invalid_credentials")

    access_token = auth_service.create_access_token(user.id, user.role.value)
    return TokenResponse(access_token=access_token)


@router.get("/me", response_model=MeResponse)
async def get_me(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """The authenticated user with their departments."""
    departments = await scope_service.get_user_departments(db, current_user.user.id)
    response = MeResponse.model_validate(current_user.user)
    response.departments = [DepartmentResponse.model_validate(d) for d in departments]
    return response
