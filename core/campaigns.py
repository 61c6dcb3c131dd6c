"""Campaign management: stage saving and activation.

These are the only writers of ``status`` and of a freshly configured
``next_run_at``; after that the runner owns ``next_run_at``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional

from core.cadence import compute_next_run_at, describe_cadence
from core.logger import get_logger
from core.repository import STATUS_ACTIVE, STATUS_INACTIVE, CampaignRepository, CampaignSnapshot
from core.stage_config import ConfigurationError
from core.timeutil import iso_utc

log = get_logger("Campaigns")

STAGE_TYPES = ("source", "scheduler", "target")


def save_stage(
    repo: CampaignRepository,
    campaign_name: str,
    stage: Mapping[str, Any],
    now: Optional[datetime] = None,
    rng=None,
) -> CampaignSnapshot:
    """Persist one stage of a campaign, creating the campaign on first save."""

    stage_type = (stage or {}).get("type")
    if stage_type not in STAGE_TYPES:
        raise ConfigurationError(f"Unknown stage type {stage_type!r}; expected one of {STAGE_TYPES}")
    config = dict(stage.get("config") or {})

    campaign = repo.get_by_name(campaign_name)
    if campaign is None:
        campaign = repo.create(campaign_name, status=STATUS_INACTIVE)

    if stage_type == "source":
        patch = {"source_type": str(config.get("sourceType") or "Spreadsheet"), "source_config": config}
    elif stage_type == "target":
        patch = {"target_platform": str(config.get("channel") or "Telegram"), "target_config": config}
    else:
        next_run_at = compute_next_run_at(config, now, rng)
        patch = {"schedule_config": config, "next_run_at": next_run_at}
        log.info(f"🗓️ '{campaign_name}': {describe_cadence(config)} → next run {iso_utc(next_run_at)}")

    updated = repo.update(campaign.id, **patch)
    log.info(f"Saved {stage_type} stage for campaign '{campaign_name}' (#{campaign.id})")
    return updated


def activate(
    repo: CampaignRepository,
    campaign_id: int,
    now: Optional[datetime] = None,
    rng=None,
) -> CampaignSnapshot:
    """Switch a fully configured campaign on and schedule its first run."""

    campaign = repo.get(campaign_id)
    if campaign is None:
        raise LookupError(f"Campaign {campaign_id} not found")
    if campaign.config_errors:
        problems = "; ".join(f"{stage}: {msg}" for stage, msg in sorted(campaign.config_errors.items()))
        raise ConfigurationError(f"Campaign '{campaign.name}' is not ready: {problems}")

    next_run_at = compute_next_run_at(campaign.cadence, now, rng)
    updated = repo.update(campaign_id, status=STATUS_ACTIVE, next_run_at=next_run_at)
    log.info(f"▶️ Campaign '{campaign.name}' activated; first run {iso_utc(next_run_at)}")
    return updated


def deactivate(repo: CampaignRepository, campaign_id: int) -> CampaignSnapshot:
    campaign = repo.update(campaign_id, status=STATUS_INACTIVE)
    if campaign is None:
        raise LookupError(f"Campaign {campaign_id} not found")
    log.info(f"⏸️ Campaign '{campaign.name}' deactivated")
    return campaign
