"""
Shared test fixtures and configuration for pytest
"""
import os
import tempfile

# Keep config, logs and databases out of the real home directory.
os.environ["TERMAIL_HOME"] = tempfile.mkdtemp(prefix="termail-tests-")
os.environ.pop("TERMAIL_TOKEN", None)

import pytest

from helpers import FakeMailClient
from termail.core.database.store import MailStore
from termail.core.models.message import CachedLabel
from termail.utils.config import ConfigManager


@pytest.fixture
def temp_db(tmp_path):
    """Path of a temporary database for testing"""
    return tmp_path / "test_mail.db"


@pytest.fixture
async def store(temp_db):
    """Initialised MailStore on a temporary database."""
    mail_store = MailStore(temp_db)
    await mail_store.initialise()

    yield mail_store

    await mail_store.close()


@pytest.fixture
async def broken_store(tmp_path):
    """MailStore whose database path is a directory, so every call fails."""
    db_dir = tmp_path / "not_a_file.db"
    db_dir.mkdir()
    mail_store = MailStore(db_dir)

    yield mail_store

    await mail_store.close()


@pytest.fixture
def sample_labels():
    return [
        CachedLabel(id="INBOX", name="INBOX"),
        CachedLabel(id="SENT", name="SENT"),
        CachedLabel(id="TRASH", name="TRASH"),
        CachedLabel(id="Label_1", name="Receipts"),
    ]


@pytest.fixture
def fake_client(sample_labels):
    return FakeMailClient(labels=sample_labels)


@pytest.fixture
def config_path(tmp_path):
    """Fresh ConfigManager singleton reading from a temporary file."""
    ConfigManager.reset()
    path = tmp_path / "config.json"

    yield path

    ConfigManager.reset()
