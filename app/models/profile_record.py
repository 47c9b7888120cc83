"""
ProfileRecord model — cache/provenance view, one row per (username, owner_type).
"""
from sqlalchemy import (
    Column, Integer, Float, Text, Boolean, DateTime, JSON,
    UniqueConstraint, Index, CheckConstraint,
)
from sqlalchemy.sql import func

from app.database import Base


class ProfileRecord(Base):
    __tablename__ = 'profile_records'

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(Text, nullable=False)  # normalized handle
    owner_type = Column(Text, nullable=False, default='external')  # creator / company / external
    owner_id = Column(Integer, nullable=True)
    source = Column(Text, nullable=False)  # provenance of the last successful write
    full_name = Column(Text, nullable=True)
    bio = Column(Text, nullable=True)
    followers = Column(Integer, nullable=True)  # NULL = unknown, never 0 by default
    following = Column(Integer, nullable=True)
    posts_count = Column(Integer, nullable=True)
    external_url = Column(Text, nullable=True)
    profile_pic_original_url = Column(Text, nullable=True)
    profile_pic_storage_path = Column(Text, nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    is_private = Column(Boolean, nullable=False, default=False)
    engagement_rate = Column(Float, nullable=True)
    top_hashtags = Column(JSON, nullable=True)
    top_posts = Column(JSON, nullable=True)  # most engaging recent posts, see post_summary
    last_fetched_at = Column(DateTime, nullable=False)  # naive UTC
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('username', 'owner_type', name='uq_profile_record_username_owner'),
        Index('ix_profile_records_last_fetched_at', 'last_fetched_at'),
        CheckConstraint("owner_type IN ('creator', 'company', 'external')", name='ck_profile_record_owner_type'),
    )

    def __repr__(self):
        return f'<ProfileRecord {self.owner_type}:{self.username} source={self.source}>'
