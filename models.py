from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime

from core.timeutil import to_storage, utcnow


def _now() -> datetime:
    return to_storage(utcnow())


class Campaign(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    description: Optional[str] = None
    status: str = Field(default="inactive", index=True)
    source_type: str = Field(default="Spreadsheet")
    source_config: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    target_platform: str = Field(default="Telegram")
    target_config: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    schedule_config: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    # Stored as naive UTC; the repository hands them out timezone-aware.
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = Field(default=None, index=True)
    total_posts: int = Field(default=0)
    successful_posts: int = Field(default=0)
    failed_posts: int = Field(default=0)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

class RunLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    level: str = Field(default="info")
    message: str = Field(default="")
    platform: Optional[str] = None
    campaign_id: Optional[int] = Field(default=None, foreign_key="campaign.id", index=True)
    details: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=_now)
