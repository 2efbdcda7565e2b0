"""
@description 阅后即焚照片数据模型
@responsibility 记录照片的身份、归属、查看/过期状态以及查看事件日志
"""

import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)

from winkr.core.database import Base
from winkr.utils.helpers import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class EphemeralPhoto(Base):
    __tablename__ = "ephemeral_photos"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), nullable=False, index=True)
    file_url = Column(String(500), nullable=False)
    file_key = Column(String(255), nullable=False, unique=True)
    thumbnail_url = Column(String(500), nullable=False)
    thumbnail_key = Column(String(255), nullable=False)
    # 唯一索引保证访问密钥不会被复用
    access_key = Column(String(64), nullable=False, unique=True)
    is_viewed = Column(Boolean, default=False, nullable=False, index=True)
    is_expired = Column(Boolean, default=False, nullable=False, index=True)
    view_count = Column(Integer, default=0, nullable=False)
    max_views = Column(Integer, default=1, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    viewed_at = Column(DateTime, nullable=True)
    expired_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("max_views >= 1", name="ck_ephemeral_photos_max_views"),
        CheckConstraint("view_count >= 0", name="ck_ephemeral_photos_view_count"),
        Index("ix_ephemeral_photos_cleanup", "is_expired", "is_viewed", "updated_at"),
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def is_expired_by_time(self, now) -> bool:
        return now >= self.expires_at

    def remaining_seconds(self, now) -> int:
        return max(int((self.expires_at - now).total_seconds()), 0)

    def view_status(self, now) -> str:
        """返回照片当前的查看状态"""
        if self.is_deleted:
            return "deleted"
        if self.is_expired:
            return "expired"
        if self.is_viewed:
            return "viewed"
        if self.is_expired_by_time(now):
            return "time_expired"
        return "available"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "file_url": self.file_url,
            "file_key": self.file_key,
            "thumbnail_url": self.thumbnail_url,
            "thumbnail_key": self.thumbnail_key,
            "access_key": self.access_key,
            "is_viewed": self.is_viewed,
            "is_expired": self.is_expired,
            "view_count": self.view_count,
            "max_views": self.max_views,
            "expires_at": self.expires_at,
            "viewed_at": self.viewed_at,
            "expired_at": self.expired_at,
            "deleted_at": self.deleted_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class EphemeralPhotoView(Base):
    __tablename__ = "ephemeral_photo_views"

    id = Column(String(36), primary_key=True, default=_new_id)
    photo_id = Column(String(36), nullable=False, index=True)
    # 冗余照片所有者，便于按用户统计
    user_id = Column(String(36), nullable=False, index=True)
    # 匿名查看时为空
    viewer_id = Column(String(36), nullable=True, index=True)
    ip_address = Column(String(45), nullable=False)
    user_agent = Column(Text, nullable=True)
    duration = Column(Integer, default=0, nullable=False)
    viewed_at = Column(DateTime, default=utcnow, nullable=False, index=True)
