import asyncio
import logging
from typing import Any, Callable, Iterable, Mapping

from backend.config import BATCH_STATUS_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

FetchOne = Callable[[Mapping[str, Any]], Any]


async def _fetch_guarded(room: Mapping[str, Any], fetch_one: FetchOne, timeout: float) -> Any:
    room_id = room.get("id")
    try:
        return await asyncio.wait_for(asyncio.to_thread(fetch_one, room), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Status fetch for room %s timed out after %.2fs", room_id, timeout)
    except Exception:
        logger.warning("Status fetch for room %s failed", room_id, exc_info=True)
    return None


async def fetch_today_statuses(
    rooms: Iterable[Mapping[str, Any]],
    fetch_one: FetchOne,
    *,
    timeout: float | None = None,
) -> dict[int, Any]:
    """
    Fetch today's status for every room concurrently.

    Each room runs in a worker thread under its own timeout. A room that fails
    or times out maps to None; the others are unaffected.
    """
    limit = BATCH_STATUS_TIMEOUT_SECONDS if timeout is None else timeout
    room_list = list(rooms)
    results = await asyncio.gather(*(_fetch_guarded(room, fetch_one, limit) for room in room_list))
    return {int(room["id"]): result for room, result in zip(room_list, results)}
