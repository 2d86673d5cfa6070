# models.py — Database models for the Clientspace portal
# - UUID string primary keys everywhere
# - Soft deletes (deleted_at) on every user-facing entity
# - One response row per block (upsert target, versioned for compare-and-swap)
# - Append-only activity log

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, BigInteger, Integer, Date,
    Enum as SQLEnum, ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def _db_enum(enum_cls):
    """Persist enum values (not member names)."""
    return SQLEnum(enum_cls, values_callable=lambda e: [m.value for m in e])


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ============================================================
# ENUMS
# ============================================================

class SpaceStatus(str, PyEnum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class AccessMode(str, PyEnum):
    RESTRICTED = "restricted"
    PUBLIC = "public"


class MemberRole(str, PyEnum):
    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"
    STAKEHOLDER = "stakeholder"


# Roles that make up a space's internal (staff) membership
STAFF_ROLES = (MemberRole.OWNER, MemberRole.EDITOR, MemberRole.VIEWER)


class BlockType(str, PyEnum):
    TEXT = "text"
    FORM = "form"
    TASK = "task"
    ACTION_PLAN = "action_plan"
    FILE_UPLOAD = "file_upload"
    FILE_DOWNLOAD = "file_download"
    MEDIA = "media"
    EMBED = "embed"
    CONTACT = "contact"
    ACCORDION = "accordion"
    DIVIDER = "divider"
    TIMELINE = "timeline"
    NEXT_TASK = "next_task"
    ACTION_PLAN_PROGRESS = "action_plan_progress"
    CHECKLIST = "checklist"


class TaskStatus(str, PyEnum):
    PENDING = "pending"
    COMPLETED = "completed"


class EngagementLevel(str, PyEnum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ============================================================
# ORGANISATIONS & STAFF
# ============================================================

class Organisation(Base):
    __tablename__ = "organisations"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False, index=True)
    slug = Column(String, unique=True, nullable=False, index=True)
    settings = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    users = relationship("User", back_populates="organisation")
    spaces = relationship("Space", back_populates="organisation")


class User(Base):
    """Internal staff account."""
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    email = Column(String, unique=True, nullable=False, index=True)
    display_name = Column(String, nullable=False, default="")
    password_hash = Column(String, nullable=False)
    organisation_id = Column(String, ForeignKey("organisations.id"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, index=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    organisation = relationship("Organisation", back_populates="users")


# ============================================================
# SPACES
# ============================================================

class Space(Base):
    __tablename__ = "spaces"

    id = Column(String, primary_key=True, default=new_uuid)
    organisation_id = Column(String, ForeignKey("organisations.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    client_name = Column(String, nullable=True)
    status = Column(_db_enum(SpaceStatus), default=SpaceStatus.DRAFT, nullable=False, index=True)
    access_mode = Column(_db_enum(AccessMode), default=AccessMode.RESTRICTED, nullable=False)
    access_password_hash = Column(String, nullable=True)
    welcome_popup = Column(JSON, nullable=True)
    target_go_live_date = Column(Date, nullable=True)
    # Engagement cache, refreshed on read once stale
    engagement_score = Column(Integer, nullable=True)
    engagement_level = Column(String, nullable=True)
    engagement_factors = Column(JSON, nullable=True)
    engagement_calculated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    organisation = relationship("Organisation", back_populates="spaces")
    members = relationship("SpaceMember", back_populates="space")
    pages = relationship("Page", back_populates="space")

    __table_args__ = (
        Index("idx_space_org_status", "organisation_id", "status"),
    )


class SpaceMember(Base):
    __tablename__ = "space_members"

    id = Column(String, primary_key=True, default=new_uuid)
    space_id = Column(String, ForeignKey("spaces.id"), nullable=False, index=True)
    invited_email = Column(String, nullable=False)  # stored lower-case
    role = Column(_db_enum(MemberRole), default=MemberRole.STAKEHOLDER, nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    joined_at = Column(DateTime(timezone=True), nullable=True)
    welcome_popup_dismissed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    space = relationship("Space", back_populates="members")

    __table_args__ = (
        Index("idx_member_space_email", "space_id", "invited_email"),
        Index("idx_member_space_user", "space_id", "user_id"),
    )


class PortalAccessToken(Base):
    """Single-use magic-link token letting a stakeholder sign in without a password"""
    __tablename__ = "portal_access_tokens"

    id = Column(String, primary_key=True, default=new_uuid)
    space_id = Column(String, ForeignKey("spaces.id"), nullable=False, index=True)
    email = Column(String, nullable=False)  # stored lower-case
    token = Column(String, nullable=False, unique=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


# ============================================================
# CONTENT: PAGES, BLOCKS, RESPONSES
# ============================================================

class Page(Base):
    __tablename__ = "pages"

    id = Column(String, primary_key=True, default=new_uuid)
    space_id = Column(String, ForeignKey("spaces.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    slug = Column(String, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    is_visible = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    space = relationship("Space", back_populates="pages")
    blocks = relationship("Block", back_populates="page")

    __table_args__ = (
        UniqueConstraint("space_id", "slug", name="uq_page_space_slug"),
    )


class Block(Base):
    __tablename__ = "blocks"

    id = Column(String, primary_key=True, default=new_uuid)
    page_id = Column(String, ForeignKey("pages.id"), nullable=False, index=True)
    type = Column(String, nullable=False, index=True)  # BlockType tag
    content = Column(JSON, nullable=False, default=dict)
    sort_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    page = relationship("Page", back_populates="blocks")

    __table_args__ = (
        Index("idx_block_page_order", "page_id", "sort_order"),
    )


class Response(Base):
    __tablename__ = "responses"

    id = Column(String, primary_key=True, default=new_uuid)
    block_id = Column(String, ForeignKey("blocks.id"), nullable=False, unique=True, index=True)
    value = Column(JSON, nullable=True)
    customer_email = Column(String, nullable=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=True)
    version_id = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}


class Task(Base):
    """Legacy single-item task tied 1:1 to a task block."""
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    block_id = Column(String, ForeignKey("blocks.id"), nullable=False, unique=True, index=True)
    status = Column(_db_enum(TaskStatus), default=TaskStatus.PENDING, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class BlockFile(Base):
    __tablename__ = "files"

    id = Column(String, primary_key=True, default=new_uuid)
    block_id = Column(String, ForeignKey("blocks.id"), nullable=False, index=True)
    space_id = Column(String, ForeignKey("spaces.id"), nullable=False, index=True)
    original_name = Column(String, nullable=False)
    mime_type = Column(String, nullable=True)
    size_bytes = Column(BigInteger, default=0)
    storage_path = Column(String, nullable=False)  # opaque key into the storage service
    uploaded_by_email = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)


# ============================================================
# ACTIVITY LOG (Append-only — never update or delete)
# ============================================================

class ActivityLogEntry(Base):
    __tablename__ = "activity_log"

    id = Column(String, primary_key=True, default=new_uuid)
    space_id = Column(String, ForeignKey("spaces.id"), nullable=False, index=True)
    actor_email = Column(String, nullable=False)
    action = Column(String, nullable=False, index=True)
    resource_type = Column(String, nullable=True)
    resource_id = Column(String, nullable=True)
    details = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    __table_args__ = (
        Index("idx_activity_space_created", "space_id", "created_at"),
        Index("idx_activity_space_actor", "space_id", "actor_email"),
    )
