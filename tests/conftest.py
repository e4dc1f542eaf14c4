"""Pytest configuration and shared fixtures for EngagementDB tests."""

import asyncio
import os
import sys
import tempfile
from collections.abc import Generator
from datetime import datetime, timezone
from pathlib import Path

# Settings are read at import time; select the testing profile first
os.environ["ENVIRONMENT"] = "testing"
os.environ["GATEWAY_BACKEND"] = "sqlite"
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="engagementdb-tests-"))

import pytest
from loguru import logger

from engagementdb.database import SQLiteGateway
from engagementdb.models import ProfileRow, ReactionRow, ReactionType, Target, TargetType
from engagementdb.service import EngagementService
from engagementdb.utils import format_iso

# =============================================================================
# Test Configuration
# =============================================================================


@pytest.fixture(scope="function", autouse=True)
def reset_loguru():
    """Reset loguru handlers before each test to prevent I/O errors."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="ERROR",
        format="{time} {level} {message}",
        catch=True,
    )
    yield
    logger.remove()


# =============================================================================
# Gateway Fixtures
# =============================================================================


@pytest.fixture
def gateway() -> Generator[SQLiteGateway, None, None]:
    """Initialized in-memory SQLite gateway."""
    gw = SQLiteGateway(database_path=Path(":memory:"))
    asyncio.run(gw.initialize())
    yield gw
    asyncio.run(gw.close())


@pytest.fixture
def temp_db_path(tmp_path: Path) -> Path:
    """Path for a file-backed test database."""
    return tmp_path / "engagement.db"


@pytest.fixture
def service(gateway: SQLiteGateway) -> EngagementService:
    """Service over the in-memory gateway with atomic writes."""
    return EngagementService(gateway=gateway, atomic_writes=True)


@pytest.fixture
def post_42() -> Target:
    return Target.of(TargetType.POST, 42)


# =============================================================================
# Seed Data Helpers
# =============================================================================


class Seeder:
    """Writes rows straight into the gateway session, bypassing counters."""

    def __init__(self, gateway: SQLiteGateway):
        assert gateway.session is not None
        self.session = gateway.session

    def profile(self, user_id: str, name: str | None) -> None:
        self.session.add(ProfileRow(user_id=user_id, name=name))
        self.session.commit()

    def reaction(
        self,
        user_id: str,
        target: Target,
        reaction_type: ReactionType,
        created_at: datetime,
    ) -> None:
        self.session.add(
            ReactionRow(
                user_id=user_id,
                target_type=target.target_type.value,
                target_id=target.target_id,
                reaction_type=reaction_type.value,
                created_at=format_iso(created_at),
            )
        )
        self.session.commit()


@pytest.fixture
def seed(gateway: SQLiteGateway) -> Seeder:
    return Seeder(gateway)


@pytest.fixture
def freeze_time(mocker):
    """Freeze engagement timestamps to a specific datetime."""
    frozen_time = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
    mocker.patch("engagementdb.engagement.utc_now", return_value=frozen_time)
    return frozen_time
