"""
Enrichment subjects — creators and companies that carry social handles.

These rows are owned by registration flows; the pipeline only mutates the
denormalized social columns (the application view) and enrichment_score.
"""
from sqlalchemy import Column, Integer, Text, Boolean, DateTime, ForeignKey, Index, JSON
from sqlalchemy.sql import func

from app.database import Base


class SocialProfileMixin:
    """Denormalized, UI-facing copy of the latest profile attributes."""
    instagram = Column(Text, nullable=True)  # handle as entered by the user
    tiktok = Column(Text, nullable=True)
    youtube = Column(Text, nullable=True)
    avatar = Column(Text, nullable=True)  # independently uploaded image URL

    instagram_followers = Column(Integer, nullable=True)
    instagram_following = Column(Integer, nullable=True)
    instagram_posts = Column(Integer, nullable=True)
    instagram_bio = Column(Text, nullable=True)
    instagram_verified = Column(Boolean, nullable=True)
    instagram_profile_pic = Column(Text, nullable=True)  # public URL of the durable copy
    instagram_top_posts = Column(JSON, nullable=True)
    instagram_last_updated = Column(DateTime, nullable=True)  # naive UTC

    tiktok_followers = Column(Integer, nullable=True)
    tiktok_bio = Column(Text, nullable=True)
    tiktok_last_updated = Column(DateTime, nullable=True)  # naive UTC

    youtube_subscribers = Column(Integer, nullable=True)
    youtube_description = Column(Text, nullable=True)
    youtube_last_updated = Column(DateTime, nullable=True)  # naive UTC

    enrichment_score = Column(Integer, nullable=True)


class Creator(SocialProfileMixin, Base):
    __tablename__ = 'creators'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, default='')
    email = Column(Text, nullable=True)
    role = Column(Text, nullable=False, default='creator')
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Company(SocialProfileMixin, Base):
    __tablename__ = 'companies'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, default='')
    website = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ConnectedAccount(Base):
    """An Instagram business account connected through OAuth (token is opaque here)."""
    __tablename__ = 'connected_accounts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey('companies.id', ondelete='CASCADE'), nullable=True)
    creator_id = Column(Integer, ForeignKey('creators.id', ondelete='CASCADE'), nullable=True)
    username = Column(Text, nullable=False)
    platform_user_id = Column(Text, nullable=True)
    access_token = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    connected_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('ix_connected_accounts_is_active', 'is_active'),
    )


class CommunityMembership(Base):
    """A creator (or prospective creator) in a company's community."""
    __tablename__ = 'community_memberships'

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey('companies.id', ondelete='CASCADE'), nullable=False)
    creator_id = Column(Integer, ForeignKey('creators.id', ondelete='SET NULL'), nullable=True)
    instagram_handle = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default='active')  # active / pending / removed
    joined_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('ix_community_memberships_status', 'status'),
    )
