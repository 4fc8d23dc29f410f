# storefront/sweep.py
"""Release reservations whose hold has run out. Meant for cron: python -m storefront.sweep"""
import logging

from storefront.config import settings
from storefront.database import SessionLocal
from storefront.utils.events import system_event
from storefront.utils.settlement import sweep_expired_reservations

logger = logging.getLogger(__name__)


def main() -> int:
    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    event = system_event("reservation-sweep")
    db = SessionLocal()
    try:
        result = sweep_expired_reservations(db, event=event)
    except Exception:
        logger.exception("CRITICAL: reservation sweep failed")
        event.emit(500)
        return 1
    finally:
        db.close()
    event.emit(200)
    print(f"Released {result.released} reservation(s) across {len(result.carts)} cart(s)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
