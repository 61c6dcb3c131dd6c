from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from core.cadence import compute_next_run_at
from core.config import Config
from core.logger import get_logger
from core.repository import CampaignRepository, CampaignSnapshot, DatabaseLogSink
from core.timeutil import iso_utc, utcnow
from poster.telegram_poster import DeliveryOptions, DeliveryResult, TelegramDelivery
from sources.google_sheets import ContentItem, GoogleSheetsSource

log = get_logger("CampaignRunner")

AFTER_DELIVERY = "after_delivery"
BEFORE_DELIVERY = "before_delivery"
CONSUME_POLICIES = (AFTER_DELIVERY, BEFORE_DELIVERY)


@dataclass(frozen=True)
class RunResult:
    delivered: bool
    reason: Optional[str] = None
    row_number: Optional[int] = None


def _default_delivery(target) -> TelegramDelivery:
    return TelegramDelivery()


class CampaignRunner:
    """Execute one due campaign: pick a row, post it, mark it, reschedule.

    Rows are marked consumed only after Telegram accepted the message
    (``after_delivery``), so a failed send leaves the row eligible for the
    next tick. A crash between the send and the mark can therefore repeat a
    post. ``before_delivery`` flips that trade: a row is never sent twice, but
    a failed send drops it.
    """

    def __init__(
        self,
        repository: CampaignRepository | None = None,
        source_factory=None,
        delivery_factory=None,
        log_sink=None,
        clock=utcnow,
        rng=None,
        consume_policy: str | None = None,
        retry_delay_seconds: int | None = None,
    ):
        self.repository = repository or CampaignRepository()
        self.source_factory = source_factory or GoogleSheetsSource.from_config
        self.delivery_factory = delivery_factory or _default_delivery
        self.log_sink = log_sink or DatabaseLogSink()
        self.clock = clock
        self.rng = rng
        self.consume_policy = consume_policy or Config.CONSUME_POLICY
        if self.consume_policy not in CONSUME_POLICIES:
            raise ValueError(f"consume_policy must be one of {CONSUME_POLICIES}, got {self.consume_policy!r}")
        self.retry_delay_seconds = (
            Config.DELIVERY_RETRY_DELAY_SECONDS if retry_delay_seconds is None else max(0, retry_delay_seconds)
        )

    def run(self, campaign_id: int) -> RunResult:
        try:
            return self._run(campaign_id)
        except Exception as exc:  # noqa: BLE001 - one campaign must never stop the poller.
            log.exception(f"Campaign {campaign_id} execution failed")
            self.log_sink.append("error", f"Campaign execution failed: {exc}", campaign_id)
            return RunResult(False, f"error: {exc}")

    def _run(self, campaign_id: int) -> RunResult:
        now = self.clock()

        # Step 1: the poller's snapshot may be stale by now.
        campaign = self.repository.get(campaign_id)
        if campaign is None or not campaign.is_active:
            log.info(f"Campaign {campaign_id} is no longer active; skipping.")
            return RunResult(False, "inactive")
        if campaign.next_run_at is None or campaign.next_run_at > now:
            log.info(f"Campaign '{campaign.name}' was rescheduled to {iso_utc(campaign.next_run_at)}; skipping.")
            return RunResult(False, "not_due")

        log.info(f"🚀 Running campaign: {campaign.name}")

        # Step 2: both ends must be configured.
        if campaign.source is None or campaign.target is None:
            problems = "; ".join(
                f"{stage}: {msg}" for stage, msg in sorted(campaign.config_errors.items()) if stage != "schedule"
            )
            self.log_sink.append("error", f"Campaign configuration incomplete ({problems})", campaign.id)
            return RunResult(False, "configuration")

        cfg = campaign.source
        source = self.source_factory(cfg)

        # Step 3: choose a row.
        try:
            item = source.pick_available_item(
                cfg.ref, cfg.content_column, cfg.status_column, cfg.skip_header, rng=self.rng
            )
        except Exception as exc:  # noqa: BLE001 - adapter errors end this run only.
            self.log_sink.append("error", f"Failed to read content source: {exc}", campaign.id)
            return RunResult(False, "source_error")
        if item is None:
            self.log_sink.append(
                "info",
                f"No unposted rows left in '{cfg.ref.sheet_name}' (column {cfg.content_column}); nothing to post",
                campaign.id,
            )
            return RunResult(False, "exhausted")

        try:
            text = source.read_rich_text(cfg.ref, item.cell_ref, markup=campaign.target.parse_mode)
        except Exception as exc:  # noqa: BLE001
            self.log_sink.append("error", f"Failed to read {item.cell_ref}: {exc}", campaign.id, row=item.row_number)
            return RunResult(False, "source_error", item.row_number)
        if not text or not text.strip():
            self.log_sink.append("info", f"{item.cell_ref} is empty; nothing to post", campaign.id, row=item.row_number)
            return RunResult(False, "empty_content", item.row_number)

        consumed_early = False
        if self.consume_policy == BEFORE_DELIVERY:
            try:
                source.mark_consumed(cfg.ref, item.row_number, cfg.posted_value, cfg.status_column)
            except Exception as exc:  # noqa: BLE001
                self.log_sink.append(
                    "error", f"Could not mark row {item.row_number} before posting: {exc}", campaign.id
                )
                return RunResult(False, "source_error", item.row_number)
            consumed_early = True

        # Step 4: post.
        try:
            result = self.delivery_factory(campaign.target).send(
                campaign.target, text, DeliveryOptions.from_target(campaign.target)
            )
        except Exception as exc:  # noqa: BLE001
            result = DeliveryResult(ok=False, reason=f"{type(exc).__name__}: {exc}")

        if not result.ok:
            return self._record_failure(campaign, item, result.reason, consumed_early)

        mark_error = None
        if not consumed_early:
            try:
                source.mark_consumed(cfg.ref, item.row_number, cfg.posted_value, cfg.status_column)
            except Exception as exc:  # noqa: BLE001
                mark_error = str(exc)

        return self._record_success(campaign, item, result, now, mark_error)

    def _record_success(
        self,
        campaign: CampaignSnapshot,
        item: ContentItem,
        result: DeliveryResult,
        now,
        mark_error: Optional[str],
    ) -> RunResult:
        next_run_at = compute_next_run_at(campaign.cadence, now, self.rng)
        self.repository.update(
            campaign.id,
            last_run_at=now,
            next_run_at=next_run_at,
            total_posts=campaign.total_posts + 1,
            successful_posts=campaign.successful_posts + 1,
        )

        if mark_error:
            self.log_sink.append(
                "error",
                f"Row {item.row_number} was posted but could not be marked consumed ({mark_error}); "
                f"it may be posted again",
                campaign.id,
                row=item.row_number,
            )
        if next_run_at is None:
            self.log_sink.append(
                "error", "Schedule is incomplete; campaign will not run again until it is reconfigured", campaign.id
            )

        log.info(f"📅 Next run for '{campaign.name}' scheduled for {iso_utc(next_run_at)}")
        self.log_sink.append(
            "info",
            f"Campaign executed successfully (row {item.row_number}). Next run: {iso_utc(next_run_at)}",
            campaign.id,
            row=item.row_number,
            message_id=result.message_id,
        )
        return RunResult(True, None, item.row_number)

    def _record_failure(
        self,
        campaign: CampaignSnapshot,
        item: ContentItem,
        reason: Optional[str],
        consumed_early: bool,
    ) -> RunResult:
        patch = {"failed_posts": campaign.failed_posts + 1}
        if self.retry_delay_seconds:
            patch["next_run_at"] = self.clock() + timedelta(seconds=self.retry_delay_seconds)
        self.repository.update(campaign.id, **patch)

        message = f"Failed to send message: {reason or 'unknown error'}"
        if consumed_early:
            message += f" (row {item.row_number} was already marked consumed and is dropped)"
        self.log_sink.append("error", message, campaign.id, row=item.row_number)
        return RunResult(False, reason or "delivery_failed", item.row_number)


def run_campaign(campaign_id: int) -> RunResult:
    """Run one campaign right now with the default adapters."""

    return CampaignRunner().run(campaign_id)


if __name__ == "__main__":
    import sys

    if len(sys.argv) != 2:
        print("usage: python run_campaign.py <campaign id>")
        raise SystemExit(2)
    print(run_campaign(int(sys.argv[1])))
