"""
Dependencies for authentication, database sessions, and shared services.
"""
from typing import Generator, List, Optional
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from app import database
from app.jobs.queue import PriorityDelayQueue
from app.models.db import User, Campaign
from app.models.db.enums import UserRole
from app.services.recalculation import RecalculationService
from app.utils import get_logger

logger = get_logger(__name__)
security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)

def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.
    Ensures proper session lifecycle management with automatic cleanup.
    
    Yields:
        Session: SQLAlchemy database session
    """
    db = database.SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error("Database session error", error=str(e), exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()

def _key_prefix(api_key: str) -> str:
    return api_key[:10] + "..." if len(api_key) > 10 else api_key

def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Extract and validate user from API key.
    
    Raises:
        HTTPException: If API key is invalid or user is inactive
    """
    api_key = credentials.credentials
    
    user = db.query(User).filter(
        User.api_key == api_key,
        User.is_active == True
    ).first()
    
    if not user:
        logger.warning(
            "Authentication failed: invalid or inactive API key",
            api_key_prefix=_key_prefix(api_key)
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or inactive API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
    
    logger.debug(
        "User authenticated successfully",
        user_id=user.id,
        user_role=user.role
    )
    
    return user

def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
    db: Session = Depends(get_db)
) -> Optional[User]:
    """Caller identified by API key, or None for anonymous requests (unknown keys included)."""
    if credentials is None:
        return None
    return db.query(User).filter(
        User.api_key == credentials.credentials,
        User.is_active == True
    ).first()

def require_role(allowed_roles: List[UserRole]):
    """
    Factory function to create a dependency that requires specific user roles.
    """
    def role_dependency(
        current_user: User = Depends(get_current_user)
    ) -> User:
        if current_user.role not in allowed_roles:
            logger.warning(
                "Access denied: insufficient role",
                user_id=current_user.id,
                user_role=current_user.role,
                required_roles=[role.value for role in allowed_roles]
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return current_user
    
    return role_dependency

def require_admin(
    current_user: User = Depends(get_current_user)
) -> User:
    """
    Dependency that requires ADMIN role.
    
    Raises:
        HTTPException: If user is not an admin
    """
    if current_user.role != UserRole.ADMIN:
        logger.warning(
            "Access denied: admin required",
            user_id=current_user.id,
            user_role=current_user.role
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    
    return current_user

require_broker = require_role([UserRole.BROKER])

def get_campaign_if_authorized(
    campaign_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Campaign:
    """Fetch a campaign and enforce ownership.

    Access rules:
      * ADMIN: any campaign
      * BROKER: only campaigns assigned to them

    Raises 404 if campaign not found, 403 on ownership mismatch.
    """
    campaign = db.query(Campaign).filter(Campaign.id == campaign_id).first()
    if not campaign:
        logger.warning("Campaign not found during access check", campaign_id=campaign_id)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campaign not found")
    if current_user.role != UserRole.ADMIN and campaign.user_id != current_user.id:
        logger.warning(
            "Broker access denied for campaign",
            user_id=current_user.id,
            campaign_id=campaign_id,
            campaign_user_id=campaign.user_id,
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return campaign

def get_recalculation_service(request: Request) -> RecalculationService:
    """The process-wide service created in app.main (shares the progress cache)."""
    service = getattr(request.app.state, "recalculation_service", None)
    if service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Recalculation service not available")
    return service

def get_dispatch_queue(request: Request) -> Optional[PriorityDelayQueue]:
    """Queue to dispatch recalculations onto, or None when no worker is consuming it."""
    queue = getattr(request.app.state, "recalculation_queue", None)
    worker = getattr(request.app.state, "recalculation_worker", None)
    if queue is None or worker is None or not worker.is_running():
        return None
    return queue
