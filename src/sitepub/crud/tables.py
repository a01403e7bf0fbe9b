"""Database table definitions for the live pointer and deployment history"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, String, UniqueConstraint
from sqlmodel import Field, SQLModel


class LivePointer(SQLModel, table=True):
    """Which artifact is live for a site. `version` guards every swap (compare-and-swap)."""
    __tablename__ = "live_pointers"
    site: str = Field(primary_key=True)
    artifact_id: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    deployment: int = Field(default=0, nullable=False)
    version: int = Field(default=0, nullable=False)
    updated_at: datetime = Field(default_factory=datetime.now, sa_column=Column(DateTime(timezone=False), nullable=False))


class Deployment(SQLModel, table=True):
    """One go-live event: a publish or a rollback. Never modified after insert."""
    __tablename__ = "deployments"
    __table_args__ = (UniqueConstraint("site", "number", name="uq_deploy_site_num"),)
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    site: str = Field(..., index=True, nullable=False)
    number: int = Field(..., nullable=False, description="Monotonically increasing per-site deployment number")
    artifact_id: str = Field(..., sa_column=Column(String(64), nullable=False))
    action: str = Field(default="publish", nullable=False)
    created_at: datetime = Field(default_factory=datetime.now, sa_column=Column(DateTime(timezone=False), nullable=False))
