"""
User management endpoints (brokers and admins).
"""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
import time
import secrets
import string
from app.api.deps import get_db, get_current_user, get_optional_user
from app.models.db import User
from app.models.db.enums import UserRole
from app.models.schemas.users import UserCreate, UserRead
from app.utils.observability import request_id_from
from app.utils import get_logger, log_business_event, log_performance

router = APIRouter()
logger = get_logger(__name__)

def generate_api_key() -> str:
    """Generate a secure API key."""
    alphabet = string.ascii_letters + string.digits
    return ''.join(secrets.choice(alphabet) for _ in range(32))

@router.post(
    "/",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create new user",
    description="Register a broker or admin and issue its API key. Creating an admin requires admin credentials once one exists."
)
async def create_user(
    user_data: UserCreate,
    request: Request,
    db: Session = Depends(get_db),
    caller: Optional[User] = Depends(get_optional_user)
) -> UserRead:
    start_time = time.time()
    request_id = request_id_from(request)
    
    logger.info(
        "User creation started",
        user_email=user_data.email,
        user_role=user_data.role.value,
        request_id=request_id
    )
    
    try:
        if user_data.role == UserRole.ADMIN:
            admin_exists = db.query(User.id).filter(User.role == UserRole.ADMIN).first() is not None
            if admin_exists and (caller is None or caller.role != UserRole.ADMIN):
                logger.warning(
                    "User creation denied: admin role requires an admin caller",
                    user_email=user_data.email,
                    caller_id=caller.id if caller else None,
                    request_id=request_id
                )
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="Only admins can create admin users"
                )
        
        existing_email = db.query(User).filter(User.email == user_data.email).first()
        if existing_email:
            logger.warning(
                "User creation failed: duplicate email",
                email=user_data.email,
                existing_user_id=existing_email.id,
                request_id=request_id
            )
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"User with email '{user_data.email}' already exists"
            )
        
        new_user = User(
            name=user_data.name,
            email=user_data.email,
            api_key=generate_api_key(),
            role=user_data.role,
        )
        db.add(new_user)
        db.commit()
        db.refresh(new_user)
        
        log_business_event(
            event_type="user_created",
            details={"user_role": new_user.role.value, "api_key_generated": True},
            user_id=new_user.id,
            request_id=request_id
        )
        
        duration_ms = (time.time() - start_time) * 1000
        log_performance(
            operation="create_user",
            duration_ms=duration_ms,
            additional_data={"user_id": new_user.id, "role": new_user.role.value}
        )
        
        return UserRead.model_validate(new_user)
        
    except HTTPException:
        raise
    except IntegrityError as e:
        db.rollback()
        logger.error(
            "User creation failed: database integrity error",
            error=str(e),
            user_email=user_data.email,
            request_id=request_id
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User violates a uniqueness constraint"
        )
    except Exception as e:
        logger.error(
            "User creation failed with unexpected error",
            error=str(e),
            request_id=request_id,
            exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error during user creation"
        )

@router.get(
    "/me",
    response_model=UserRead,
    summary="Current user"
)
async def read_current_user(current_user: User = Depends(get_current_user)) -> UserRead:
    return UserRead.model_validate(current_user)
