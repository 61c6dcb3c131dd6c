# cli.py
import argparse
import json
from pathlib import Path

from core.cadence import describe_cadence, preview_runs
from core.campaigns import activate, deactivate, save_stage
from core.database import init_db
from core.logger import get_logger
from core.repository import CampaignRepository, DatabaseLogSink
from core.stage_config import ConfigurationError
from core.structure import ensure_structure
from core.timeutil import iso_utc

log = get_logger("Autoposter")


def boot():
    log.info("Booting campaign autoposter 📬")
    ensure_structure()
    init_db()
    log.info("System ready ✅")


def _require(repo: CampaignRepository, campaign_id: int):
    campaign = repo.get(campaign_id)
    if campaign is None:
        raise SystemExit(f"Campaign {campaign_id} not found")
    return campaign


def list_campaigns(repo: CampaignRepository):
    campaigns = repo.list_all()
    if not campaigns:
        print("No campaigns yet.")
    for c in campaigns:
        print(
            f"#{c.id:<3} {c.name:<24} {c.status:<8} next={iso_utc(c.next_run_at)} "
            f"last={iso_utc(c.last_run_at)} posts={c.successful_posts}/{c.total_posts} failed={c.failed_posts}"
        )
        print(f"     {describe_cadence(c.schedule_config)}")
        for stage, problem in sorted(c.config_errors.items()):
            print(f"     ⚠️ {stage}: {problem}")


def show_logs(campaign_id: int, limit: int):
    for entry in DatabaseLogSink().recent(campaign_id, limit):
        print(f"{entry.created_at:%Y-%m-%d %H:%M:%S} [{entry.level.upper():<5}] {entry.message}")


def show_preview(repo: CampaignRepository, campaign_id: int, count: int):
    campaign = _require(repo, campaign_id)
    print(f"{campaign.name}: {describe_cadence(campaign.schedule_config)}")
    print(f"  stored next run: {iso_utc(campaign.next_run_at)}")
    runs = preview_runs(campaign.cadence, count=count)
    zone = campaign.cadence.zone if campaign.cadence else None
    for instant in runs:
        local = f"  ({instant.astimezone(zone):%Y-%m-%d %H:%M %Z})" if zone else ""
        print(f"  {iso_utc(instant)}{local}")


def test_telegram(repo: CampaignRepository, campaign_id: int):
    from poster.telegram_poster import TelegramAPIError, check_connection

    campaign = _require(repo, campaign_id)
    if campaign.target is None:
        raise SystemExit(f"Target not configured: {campaign.config_errors.get('target')}")
    try:
        username = check_connection(campaign.target.bot_token, campaign.target.chat_id)
    except TelegramAPIError as exc:
        log.error(f"❌ Telegram check failed ({exc.category}): {exc}")
        return
    log.info(f"✅ @{username} can post to {campaign.target.chat_id}")


def test_sheets(repo: CampaignRepository, campaign_id: int):
    from sources.google_sheets import GoogleSheetsSource, SheetsError

    campaign = _require(repo, campaign_id)
    cfg = campaign.source
    if cfg is None:
        raise SystemExit(f"Source not configured: {campaign.config_errors.get('source')}")
    source = GoogleSheetsSource.from_config(cfg)
    ok, message = source.test_connection(cfg.ref.spreadsheet_id)
    if not ok:
        log.error(f"❌ {message}")
        return
    log.info(f"✅ {message}")
    try:
        items = source.available_items(cfg.ref, cfg.content_column, cfg.status_column, cfg.skip_header)
    except SheetsError as exc:
        log.error(f"❌ {exc}")
        return
    log.info(f"{len(items)} unposted row(s) available in '{cfg.ref.sheet_name}'")


def main():
    parser = argparse.ArgumentParser(description="Spreadsheet → Telegram campaign autoposter")
    parser.add_argument("--run-scheduler", action="store_true", help="Start the due-campaign poller (blocks)")
    parser.add_argument("--check-due", action="store_true", help="Run a single polling tick and exit")
    parser.add_argument("--run", type=int, metavar="ID", help="Run a campaign now if it is due")
    parser.add_argument("--list", action="store_true", help="List campaigns with their schedule state")
    parser.add_argument("--logs", type=int, metavar="ID", help="Show recent run log entries for a campaign")
    parser.add_argument("--limit", type=int, default=20, help="Number of log entries to show")
    parser.add_argument("--preview", type=int, metavar="ID", help="Show upcoming run times for a campaign")
    parser.add_argument("--count", type=int, default=5, help="Number of runs to preview")
    parser.add_argument("--activate", type=int, metavar="ID", help="Activate a campaign and schedule its first run")
    parser.add_argument("--deactivate", type=int, metavar="ID", help="Deactivate a campaign")
    parser.add_argument("--save-stage", metavar="NAME", help="Save a stage (see --stage-file) on campaign NAME")
    parser.add_argument("--stage-file", type=Path, help='JSON file: {"type": "source|scheduler|target", "config": {...}}')
    parser.add_argument("--test-telegram", type=int, metavar="ID", help="Check the campaign's bot and chat")
    parser.add_argument("--test-sheets", type=int, metavar="ID", help="Check the campaign's spreadsheet access")
    args = parser.parse_args()

    boot()
    repo = CampaignRepository()

    try:
        if args.save_stage:
            if not args.stage_file:
                parser.error("--save-stage requires --stage-file")
            stage = json.loads(args.stage_file.read_text(encoding="utf-8"))
            campaign = save_stage(repo, args.save_stage, stage)
            log.info(f"Campaign #{campaign.id} '{campaign.name}' next run: {iso_utc(campaign.next_run_at)}")
        elif args.activate is not None:
            activate(repo, args.activate)
        elif args.deactivate is not None:
            deactivate(repo, args.deactivate)
        elif args.list:
            list_campaigns(repo)
        elif args.logs is not None:
            show_logs(args.logs, args.limit)
        elif args.preview is not None:
            show_preview(repo, args.preview, args.count)
        elif args.test_telegram is not None:
            test_telegram(repo, args.test_telegram)
        elif args.test_sheets is not None:
            test_sheets(repo, args.test_sheets)
        elif args.run is not None:
            from run_campaign import CampaignRunner

            result = CampaignRunner(repository=repo).run(args.run)
            if result.delivered:
                log.info(f"✅ Posted row {result.row_number}")
            else:
                log.warning(f"Nothing posted: {result.reason}")
        elif args.check_due:
            from core.scheduler import DueCampaignPoller

            report = DueCampaignPoller(repository=repo).tick()
            log.info(f"Scheduler check completed: {report.checked} active, {len(report.due)} due")
        elif args.run_scheduler:
            from core.scheduler import DueCampaignPoller, start_poller

            start_poller(DueCampaignPoller(repository=repo))
    except (ConfigurationError, LookupError) as exc:
        log.error(f"❌ {exc}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
