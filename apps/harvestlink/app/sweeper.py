import asyncio
import logging

from .database import session_scope
from .lifecycle import auto_complete_due
from .utils import utcnow


log = logging.getLogger(__name__)


def process_due_completions_once() -> int:
    with session_scope() as db:
        return auto_complete_due(db, utcnow())


async def run_auto_complete_loop(interval_secs: int) -> None:
    """Check immediately, then every ``interval_secs`` until cancelled."""
    while True:
        try:
            await asyncio.to_thread(process_due_completions_once)
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("auto-complete sweep failed")
        await asyncio.sleep(interval_secs)
