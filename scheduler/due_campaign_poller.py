"""CLI-friendly entry point for launching the due-campaign poller."""
# Re-exports the real poller from core.scheduler.

from core.scheduler import DueCampaignPoller, find_due, start_poller

__all__ = ["DueCampaignPoller", "find_due", "start_poller"]


if __name__ == "__main__":
    from core.database import init_db

    init_db()
    start_poller()
