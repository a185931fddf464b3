"""
Integration Tests Package for the Campus Parking Booking Engine

These tests drive the engine against real storage and real threads:
1. SQLAlchemy storage on a temporary SQLite file
2. Concurrent booking races on one slot
3. End-to-end booking lifecycles through the wired services
"""

import os
import shutil
import tempfile
from pathlib import Path

from campus_parking.infrastructure.repositories import RepositoryFactory, UnitOfWorkFactory


class IntegrationTestConfig:
    """Configuration for integration tests"""

    TEST_DB_NAME = "test_parking.db"

    # Threads racing for one slot
    RACE_THREADS = 8
    RACE_JOIN_TIMEOUT = 10.0


class IntegrationTestFixture:
    """Temporary SQLite databases, removed again by cleanup()"""

    def __init__(self):
        self.temp_dirs = []
        self.engines = []

    def create_temp_directory(self) -> str:
        temp_dir = tempfile.mkdtemp(prefix="campus_parking_")
        self.temp_dirs.append(temp_dir)
        return temp_dir

    def sqlite_uow_factory(self) -> UnitOfWorkFactory:
        """File-backed so that every thread's session sees the same database"""
        db_path = Path(self.create_temp_directory()) / IntegrationTestConfig.TEST_DB_NAME
        engine = RepositoryFactory.create_sqlalchemy_engine(f"sqlite:///{db_path}")
        self.engines.append(engine)
        return RepositoryFactory.create_sqlalchemy_uow_factory(engine)

    def cleanup(self):
        for engine in self.engines:
            engine.dispose()
        for temp_dir in self.temp_dirs:
            if os.path.exists(temp_dir):
                shutil.rmtree(temp_dir)


__all__ = [
    'IntegrationTestConfig',
    'IntegrationTestFixture',
]
