"""
@description 用户数据模型
@responsibility 为照片归属校验提供最小的用户记录
"""

from sqlalchemy import Column, DateTime, String

from winkr.core.database import Base
from winkr.utils.helpers import utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    username = Column(String(255), nullable=True, unique=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
