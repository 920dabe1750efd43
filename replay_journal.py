"""Replay a journaled runtime session and print the resulting overlay state.

This script reads every event from `<OVERLAY_JOURNAL_DIR>/journal.db`, feeds
them through a fresh session store and reconciler (no runtime attached, so plan
execution is not re-triggered), and prints the final snapshot and window size.

Run: set `OVERLAY_JOURNAL_DIR` to the directory the service journaled into
      and run `python replay_journal.py`.
"""
import asyncio
import json

from config import AppConfig
from dal.event_journal_dal import EventJournalDAL
from services.session.errors import SessionCoreError
from services.session.layout import derive_window_size
from services.session.reconciler import EventReconciler
from services.session.session_store import SessionStore
from utils.database_init import AsyncDatabaseInitializer


async def replay(journal: EventJournalDAL, store: SessionStore) -> int:
    """Apply every journaled event to `store` and return how many were rejected.

    Args:
        journal: Source of journaled events.
        store: Store to rebuild; normally freshly constructed.
    """
    reconciler = EventReconciler(store)
    rejected = 0
    for record in await journal.list_events():
        try:
            reconciler.apply(record.event_name, record.payload)
        except SessionCoreError as exc:
            rejected += 1
            print(f"  #{record.id} {record.event_name} rejected: {exc}")
    return rejected


async def main() -> None:
    """Rebuild the session from the journal and print it."""
    config = AppConfig.from_env()
    if config.journal_dir is None:
        raise SystemExit("OVERLAY_JOURNAL_DIR is not set")
    journal = EventJournalDAL(AsyncDatabaseInitializer(config.journal_dir, fresh=False))
    store = SessionStore(use_agent_mode=config.use_agent_mode, use_agent_v2=config.use_agent_v2)
    rejected = await replay(journal, store)
    size = derive_window_size(
        store.snapshot,
        use_agent_mode=config.use_agent_mode,
        use_agent_v2=config.use_agent_v2,
        width=config.window_width,
    )
    print(json.dumps(store.snapshot.to_dict(), indent=2))
    print(f"active_mode={store.active_mode} window={size.width}x{size.height} rejected={rejected}")


if __name__ == "__main__":
    asyncio.run(main())
