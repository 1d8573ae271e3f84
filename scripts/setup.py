#!/usr/bin/env python3
"""Setup script for the tour marketplace API: migrate and seed a demo tour."""

import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

import jwt  # noqa: E402
from alembic import command  # noqa: E402
from alembic.config import Config  # noqa: E402
from sqlalchemy import func, select  # noqa: E402

from tourmarket.core.clock import utc_today  # noqa: E402
from tourmarket.core.config import settings  # noqa: E402
from tourmarket.core.database import async_session_factory, close_db  # noqa: E402
from tourmarket.models import ApprovalStatus, Tour, TourDate  # noqa: E402

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEMO_OPERATOR = "operator-demo"
DEMO_TRAVELER = "traveler-demo"
DEMO_ADMIN = "admin-demo"


async def setup_database() -> None:
    """Bring the database schema up to date."""
    logger.info("Running database migrations...")

    alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))

    # env.py drives its own event loop
    await asyncio.to_thread(command.upgrade, alembic_cfg, "head")
    logger.info("Database migrations completed")


async def create_sample_data() -> None:
    """Create an approved demo tour with weekly dates."""
    logger.info("Creating sample data...")

    async with async_session_factory() as db:
        existing = await db.execute(select(func.count()).select_from(Tour))
        if existing.scalar_one() > 0:
            logger.info("Sample data already exists, skipping...")
            return

        first_date = utc_today() + timedelta(days=30)
        tour = Tour(
            title="Northern Lights Adventure",
            description="Experience the magical Aurora Borealis in Iceland with expert guides",
            price_amount=29999,  # $299.99
            price_currency=settings.payment_currency,
            max_group_size=12,
            created_by=DEMO_OPERATOR,
            is_active=True,
            approval_status=ApprovalStatus.APPROVED,
            available_dates=[TourDate(travel_date=first_date + timedelta(weeks=i)) for i in range(5)],
        )
        db.add(tour)
        await db.commit()
        logger.info(f"Created tour {tour.id} with {len(tour.available_dates)} dates")


def print_demo_tokens() -> None:
    """Print bearer tokens for the demo users."""
    for user_id, role in ((DEMO_OPERATOR, "operator"), (DEMO_TRAVELER, "traveler"), (DEMO_ADMIN, "admin")):
        token = jwt.encode({"sub": user_id, "role": role}, settings.bearer_token_secret, algorithm=settings.jwt_algorithm)
        logger.info(f"{role:<9} {user_id}: Bearer {token}")


async def main() -> None:
    """Main setup function."""
    logger.info("Starting tour marketplace API setup...")

    await setup_database()
    await create_sample_data()
    await close_db()
    print_demo_tokens()

    logger.info("Setup completed successfully!")
    logger.info("You can now start the API server with: cd server && uvicorn tourmarket.main:app --reload")


if __name__ == "__main__":
    asyncio.run(main())
