"""
Pytest Configuration and Fixtures

This file contains shared fixtures and configuration for all tests.
"""

import os
import tempfile

# Settings are read at import time; keep log files out of the working tree
os.environ.setdefault("LOGS_PATH", os.path.join(tempfile.gettempdir(), "approval_engine_test_logs"))
os.environ.setdefault("ENVIRONMENT", "test")

import mongomock
import pytest

from approval_engine.repositories.mongo_client import use_database
from tests.factories import FakeDirectory, FakeDelegations


@pytest.fixture
def mongo_db():
    """Fresh in-memory database wired into every repository"""
    client = mongomock.MongoClient()
    db = client["approval_engine_test"]
    use_database(db)
    yield db
    use_database(None)
    client.close()


@pytest.fixture
def directory() -> FakeDirectory:
    """
    Small org in company C1, department OPS:

        E100 (level 5, director)
          E200 (level 3, manager)   E201 (level 3, manager)
            E300 (level 2, lead)
              E400 (level 1, staff, applicant)
    """
    d = FakeDirectory()
    d.add("E100", department_id="OPS", position_id="P-DIR", position_level=5, role_id="FIN")
    d.add("E200", department_id="OPS", position_id="P-MGR", position_level=3, supervisor_id="E100")
    d.add("E201", department_id="OPS", position_id="P-MGR", position_level=3, supervisor_id="E100")
    d.add("E300", department_id="OPS", position_id="P-LEAD", position_level=2, supervisor_id="E200", role_id="FIN")
    d.add("E400", department_id="OPS", position_id="P-STAFF", position_level=1, supervisor_id="E300")
    return d


@pytest.fixture
def delegations() -> FakeDelegations:
    return FakeDelegations()
