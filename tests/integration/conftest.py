"""
Integration test fixtures: settings for simulated LINE and PostgREST services.

The services themselves are simulated with respx in each test; these fixtures
only point a real composition root at them and give each test its own
JSON-file key-value store.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from member_onboarding.config import AppSettings, DatastoreSettings, LineSettings, StorageSettings

LINE_API = "https://line.test"
VERIFY_URL = f"{LINE_API}/oauth2/v2.1/verify"
PROFILE_URL = f"{LINE_API}/v2/profile"
REVOKE_URL = f"{LINE_API}/oauth2/v2.1/revoke"
CHANNEL_ID = "1650000000"
ACCESS_TOKEN = "liff-access-token"

REST_URL = "https://db.test/rest/v1"
MEMBERS_URL = f"{REST_URL}/members"

LINE_PROFILE = {"userId": "U-somchai", "displayName": "สมชาย", "pictureUrl": "https://profile.line-scdn.net/s"}
MEMBER_ROW = {
    "id": 101,
    "line_user_id": "U-somchai",
    "display_name": "สมชาย",
    "registration_date": "2024-05-01T03:00:00+00:00",
    "contact_info": None,
    "is_active": True,
    "created_at": "2024-05-01T03:00:00+00:00",
    "updated_at": None,
}


@pytest.fixture()
def state_file(tmp_path: Path) -> Path:
    return tmp_path / "onboarding-state.json"


@pytest.fixture()
def settings(state_file: Path) -> AppSettings:
    return AppSettings(  # type: ignore[call-arg]
        _env_file=None,
        line=LineSettings(channel_id=CHANNEL_ID, access_token=ACCESS_TOKEN, api_base_url=LINE_API),
        datastore=DatastoreSettings(url=REST_URL, api_key="service-key"),
        storage=StorageSettings(path=state_file),
        http_timeout_seconds=2,
    )
