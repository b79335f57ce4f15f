from config.database import Database
from crud.appointment_crud import reconcile_mirrors
import argparse
import asyncio
import logging

logger = logging.getLogger(__name__)


async def run(appointment_id=None):
    await Database.connect_db()
    try:
        stats = await reconcile_mirrors(appointment_id)
        logger.info(
            f"Checked {stats['checked']} appointments: {stats['repaired']} mirrors repaired, "
            f"{stats['removed']} orphan mirrors removed, {stats['claims_fixed']} slot claims fixed"
        )
        return stats
    finally:
        await Database.close_db()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Rebuild appointment mirrors and slot claims from canonical records")
    parser.add_argument("--appointment-id", help="Only reconcile this appointment")
    args = parser.parse_args()
    try:
        asyncio.run(run(args.appointment_id))
    except KeyboardInterrupt:
        logger.info("Reconciliation interrupted by user")
    except Exception as e:
        logger.error(f"Reconciliation failed: {str(e)}")
        raise
