"""Campaign persistence and the run-log sink.

Rows leave this module as ``CampaignSnapshot`` objects: detached, timezone-aware
and with their stage configs already parsed, so the poller and the runner
never touch a session or a raw JSON blob.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from core.cadence import Cadence, parse_cadence
from core.database import get_session
from core.logger import get_logger
from core.stage_config import (
    ConfigurationError,
    SheetSourceConfig,
    TelegramTargetConfig,
    parse_source_config,
    parse_target_config,
)
from core.timeutil import as_utc, to_storage, utcnow
from models import Campaign, RunLog

log = get_logger("Repository")

STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"
STATUSES = (STATUS_INACTIVE, STATUS_ACTIVE)

UPDATABLE_FIELDS = {
    "name",
    "description",
    "status",
    "source_type",
    "source_config",
    "target_platform",
    "target_config",
    "schedule_config",
    "last_run_at",
    "next_run_at",
    "total_posts",
    "successful_posts",
    "failed_posts",
}
DATETIME_FIELDS = {"last_run_at", "next_run_at"}


@dataclass(frozen=True)
class CampaignSnapshot:
    id: int
    name: str
    status: str
    schedule_config: Dict[str, Any]
    cadence: Optional[Cadence]
    source: Optional[SheetSourceConfig]
    target: Optional[TelegramTargetConfig]
    next_run_at: Optional[datetime]
    last_run_at: Optional[datetime]
    total_posts: int = 0
    successful_posts: int = 0
    failed_posts: int = 0
    description: Optional[str] = None
    config_errors: Dict[str, str] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE

    def is_due(self, now: datetime) -> bool:
        return self.is_active and self.next_run_at is not None and self.next_run_at <= as_utc(now)


def to_snapshot(row: Campaign) -> CampaignSnapshot:
    errors: Dict[str, str] = {}

    source = None
    try:
        source = parse_source_config(row.source_config)
    except ConfigurationError as exc:
        errors["source"] = str(exc)

    target = None
    try:
        target = parse_target_config(row.target_config)
    except ConfigurationError as exc:
        errors["target"] = str(exc)

    cadence = parse_cadence(row.schedule_config)
    if cadence is None:
        errors["schedule"] = "Cadence is incomplete"

    return CampaignSnapshot(
        id=row.id,
        name=row.name,
        status=row.status,
        schedule_config=dict(row.schedule_config or {}),
        cadence=cadence,
        source=source,
        target=target,
        next_run_at=as_utc(row.next_run_at),
        last_run_at=as_utc(row.last_run_at),
        total_posts=row.total_posts or 0,
        successful_posts=row.successful_posts or 0,
        failed_posts=row.failed_posts or 0,
        description=row.description,
        config_errors=errors,
    )


class CampaignRepository:
    """CRUD over the ``campaign`` table."""

    def __init__(self, engine=None):
        self.engine = engine

    def _session(self):
        return get_session(self.engine)

    def list_active(self) -> List[CampaignSnapshot]:
        with self._session() as s:
            rows = s.exec(select(Campaign).where(Campaign.status == STATUS_ACTIVE)).all()
            return [to_snapshot(r) for r in rows]

    def list_all(self) -> List[CampaignSnapshot]:
        with self._session() as s:
            rows = s.exec(select(Campaign).order_by(Campaign.id)).all()
            return [to_snapshot(r) for r in rows]

    def get(self, campaign_id: int) -> Optional[CampaignSnapshot]:
        with self._session() as s:
            row = s.get(Campaign, campaign_id)
            return to_snapshot(row) if row else None

    def get_by_name(self, name: str) -> Optional[CampaignSnapshot]:
        with self._session() as s:
            row = s.exec(select(Campaign).where(Campaign.name == name)).first()
            return to_snapshot(row) if row else None

    def create(self, name: str, **fields: Any) -> CampaignSnapshot:
        row = Campaign(name=name)
        self._apply(row, fields)
        with self._session() as s:
            s.add(row)
            s.commit()
            s.refresh(row)
            log.info(f"Created campaign #{row.id} '{row.name}'")
            return to_snapshot(row)

    def update(self, campaign_id: int, **patch: Any) -> Optional[CampaignSnapshot]:
        with self._session() as s:
            row = s.get(Campaign, campaign_id)
            if row is None:
                return None
            self._apply(row, patch)
            row.updated_at = to_storage(utcnow())
            s.add(row)
            s.commit()
            s.refresh(row)
            return to_snapshot(row)

    def delete(self, campaign_id: int) -> bool:
        with self._session() as s:
            row = s.get(Campaign, campaign_id)
            if row is None:
                return False
            for entry in s.exec(select(RunLog).where(RunLog.campaign_id == campaign_id)).all():
                s.delete(entry)
            s.delete(row)
            s.commit()
            return True

    @staticmethod
    def _apply(row: Campaign, patch: Dict[str, Any]) -> None:
        unknown = set(patch) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown campaign fields: {sorted(unknown)}")
        if "status" in patch and patch["status"] not in STATUSES:
            raise ValueError(f"Invalid campaign status: {patch['status']!r}")
        for key, value in patch.items():
            if key in DATETIME_FIELDS:
                value = to_storage(value)
            elif key.endswith("_config"):
                value = dict(value or {})
            setattr(row, key, value)


class DatabaseLogSink:
    """Append-only run log stored in the ``runlog`` table."""

    LEVELS = {"info": 20, "warning": 30, "error": 40}

    def __init__(self, engine=None, platform: str = "Telegram"):
        self.engine = engine
        self.platform = platform

    def append(self, level: str, message: str, campaign_id: Optional[int] = None, **details: Any) -> None:
        level = level if level in self.LEVELS else "info"
        log.log(self.LEVELS[level], f"[campaign {campaign_id}] {message}")
        entry = RunLog(
            level=level,
            message=message,
            platform=self.platform,
            campaign_id=campaign_id,
            details=details or None,
        )
        try:
            with get_session(self.engine) as s:
                s.add(entry)
                s.commit()
        except SQLAlchemyError as exc:
            log.error(f"Failed to persist run log entry for campaign {campaign_id}: {exc}")

    def recent(self, campaign_id: Optional[int] = None, limit: int = 20) -> List[RunLog]:
        with get_session(self.engine) as s:
            stmt = select(RunLog)
            if campaign_id is not None:
                stmt = stmt.where(RunLog.campaign_id == campaign_id)
            stmt = stmt.order_by(RunLog.created_at.desc(), RunLog.id.desc()).limit(limit)
            return list(s.exec(stmt).all())
