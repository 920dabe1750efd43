import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

JOURNAL_FILENAME = "journal.db"

JOURNAL_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS EVENT_JOURNAL (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        event_name TEXT NOT NULL,
        payload TEXT,
        received_at REAL NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_event_journal_name ON EVENT_JOURNAL (event_name)",
)


class AsyncDatabaseInitializer:
    """
    Own the SQLite file that backs the runtime event journal.

    - The journal lives at <journal_dir>/journal.db.
    - A RuntimeError is raised if `journal_dir` is a file or cannot be created.
    - With `fresh=True` (the service default) the first `ensure_database()`
      call removes a journal left by an earlier run, so each service start
      records exactly one session history.
    - With `fresh=False` (offline replay) an existing journal is opened as is.
    - `ensure_database()` only does work once per instance; `connection()`
      calls it on every use.
    """

    def __init__(self, journal_dir: Path | str, *, fresh: bool = True) -> None:
        db_dir = Path(journal_dir).expanduser()

        if db_dir.exists() and not db_dir.is_dir():
            raise RuntimeError(
                f"Journal directory {str(journal_dir)!r} points to a file, not a directory "
                f"({db_dir}). Set OVERLAY_JOURNAL_DIR to a directory path."
            )

        try:
            db_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RuntimeError(f"Cannot create journal directory {db_dir}") from exc

        self.db_dir = db_dir
        self.db_path = db_dir / JOURNAL_FILENAME
        self.fresh = fresh
        self._initialized = False

    async def ensure_database(self) -> None:
        """
        Create the journal schema, discarding an old journal first when `fresh`.
        """
        if self._initialized:
            return

        if self.fresh:
            try:
                self.db_path.unlink(missing_ok=True)
            except OSError as exc:
                raise RuntimeError(f"Cannot discard previous journal at {self.db_path}") from exc

        attempts = 3
        for attempt in range(1, attempts + 1):
            try:
                async with aiosqlite.connect(self.db_path) as db:
                    for statement in JOURNAL_SCHEMA:
                        await db.execute(statement)
                    await db.commit()
                break
            except FileNotFoundError:
                # The directory can briefly vanish under sandboxed temp dirs; retry.
                if attempt == attempts:
                    raise
                await asyncio.sleep(0.1 * attempt)

        self._initialized = True

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Yield a connection whose rows can be read by column name.
        """
        await self.ensure_database()
        conn = await aiosqlite.connect(self.db_path)
        conn.row_factory = aiosqlite.Row
        try:
            yield conn
        finally:
            await conn.close()
