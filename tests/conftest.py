"""Test configuration and fixtures"""

import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from fakes import FakePlaylistService, FakeResolver, ManualClock
from playlist_mirror.core.config import SyncConfig
from playlist_mirror.core.database import Database
from playlist_mirror.service import SyncService
from playlist_mirror.sync.reconciler import PlaylistReconciler


START_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def database(temp_dir):
    """Fresh mirror database"""
    db = Database(temp_dir / "mirror.db")
    yield db
    db.close()


@pytest.fixture
def playlist_service():
    return FakePlaylistService()


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def clock():
    return ManualClock(START_TIME)


@pytest.fixture
def sync_config():
    return SyncConfig()


@pytest.fixture
def scheduler():
    """Scheduler that is never started: jobs stay pending and are run by hand"""
    return BackgroundScheduler(timezone="UTC")


@pytest.fixture
def reconciler(playlist_service, database, sync_config):
    return PlaylistReconciler(playlist_service, database, sync_config)


@pytest.fixture
def service(playlist_service, resolver, database, sync_config, scheduler, clock):
    """Sync service with persisted pairs restored, scheduler not running"""
    sync_service = SyncService(
        playlist_service,
        resolver,
        database,
        sync_config,
        scheduler=scheduler,
        clock=clock,
        timezone="UTC",
    )
    sync_service.start(start_scheduler=False)
    yield sync_service
    sync_service.shutdown()
