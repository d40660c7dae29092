import json

import pytest

from contact_relay.config_loader import ConfigStore
from contact_relay.models import ContactFormData, OriginConfig

KNOWN_ORIGIN = "https://known.example"
OTHER_ORIGIN = "https://other.example"

ORIGINS = {
    KNOWN_ORIGIN: {
        "name": "Known Site",
        "toEmail": "owner@known.example",
        "smtp": {
            "host": "smtp.known.example",
            "port": 587,
            "secure": False,
            "user": "relay@known.example",
            "pass": "known-secret",
        },
    },
    OTHER_ORIGIN: {
        "name": "Other Site",
        "toEmail": "owner@other.example",
        "smtp": {
            "host": "smtp.other.example",
            "secure": True,
            "port": 465,
            "user": "relay@other.example",
            "pass": "other-secret",
        },
    },
}


class DummyMailer:
    """Records every send instead of talking SMTP."""

    def __init__(self, error: Exception | None = None):
        self.calls: list[tuple[ContactFormData, OriginConfig]] = []
        self.error = error

    async def send(self, data, cfg):
        self.calls.append((data, cfg))
        if self.error is not None:
            raise self.error


@pytest.fixture
def origins_data():
    return json.loads(json.dumps(ORIGINS))


@pytest.fixture
def store(origins_data):
    return ConfigStore.from_mapping(origins_data)


@pytest.fixture
def config_file(tmp_path, origins_data):
    path = tmp_path / "origins.json"
    path.write_text(json.dumps(origins_data))
    return path


@pytest.fixture
def submission():
    return ContactFormData(email="visitor@example.org", name="Jane", message="Hello\nthere")


@pytest.fixture
def mailer():
    return DummyMailer()
