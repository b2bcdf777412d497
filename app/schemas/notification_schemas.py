from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import AliasChoices, Field

from app.db.models import NotificationStatus, NotificationType, Priority
from app.schemas.camel_base_model import CamelCaseBaseModel as BaseModel


class NotificationResponse(BaseModel):
    """Full notification record as returned by the API and carried on the queue."""

    id: str = Field(..., description="Notification ID")
    title: str = Field(..., description="Notification title")
    message: str = Field(..., description="Notification body")
    user_id: str = Field(..., description="Owner user ID")
    type: NotificationType = Field(..., description="Notification type")
    status: NotificationStatus = Field(
        NotificationStatus.PENDING, description="Delivery status"
    )
    priority: Priority = Field(Priority.MEDIUM, description="Notification priority")

    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    sent_at: Optional[datetime] = Field(None, description="First SENT timestamp")
    read_at: Optional[datetime] = Field(None, description="Read timestamp")
    expires_at: Optional[datetime] = Field(None, description="Expiry timestamp")

    todo_id: Optional[str] = Field(None, description="Related todo ID")
    action_url: Optional[str] = Field(None, description="Client action URL")
    # ORM rows expose the column as notification_metadata; queue payloads use metadata
    notification_metadata: Optional[Dict[str, Any]] = Field(
        None,
        validation_alias=AliasChoices("notification_metadata", "metadata"),
        serialization_alias="metadata",
        description="Free-form metadata",
    )

    is_deleted: bool = Field(False, description="Soft-delete flag")
    deleted_at: Optional[datetime] = Field(None, description="Soft-delete timestamp")


# The broker payload is the full record
NotificationMessage = NotificationResponse


class CreateNotificationRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=500)
    type: NotificationType = Field(..., description="Notification type")
    todo_id: Optional[str] = Field(None, description="Related todo ID")
    priority: Priority = Field(Priority.MEDIUM, description="Notification priority")
    expires_at: Optional[datetime] = Field(None, description="Expiry timestamp")
    action_url: Optional[str] = Field(None, description="Client action URL")
    metadata: Optional[Dict[str, Any]] = Field(None, description="Free-form metadata")


class UpdateNotificationRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    message: Optional[str] = Field(None, min_length=1, max_length=500)
    type: Optional[NotificationType] = None
    priority: Optional[Priority] = None
    expires_at: Optional[datetime] = None
    action_url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class AnnouncementRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=500)
    user_ids: Optional[List[str]] = Field(
        None, description="Target users; every active user when omitted"
    )


class NotificationStats(BaseModel):
    total: int = Field(0, description="All notifications of the user")
    unread: int = Field(0, description="Notifications without read_at")
    read: int = Field(0, description="Notifications with read_at")
    pending: int = Field(0, description="Notifications still PENDING")
    sent: int = Field(0, description="Notifications in SENT")
    failed: int = Field(0, description="Notifications in FAILED")
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_priority: Dict[str, int] = Field(default_factory=dict)


class CleanupResult(BaseModel):
    expired_deleted: int = Field(0, description="Expired SENT notifications removed")
    stale_failed: int = Field(0, description="Stale PENDING notifications failed")
