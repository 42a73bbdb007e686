import json
from types import SimpleNamespace

import pytest
from google.oauth2.credentials import Credentials as UserCredentials

from bqreport.core.errors import ConfigurationError, WarehouseConnectionError
from bqreport.core.warehouse import connection

AUTHORIZED_USER = {
    "type": "authorized_user",
    "client_id": "client-id.apps.googleusercontent.com",
    "client_secret": "client-secret",
    "refresh_token": "refresh-token",
}


class ClientRecorder:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(close=lambda: None, **kwargs)


@pytest.fixture
def fake_bigquery_client(monkeypatch):
    recorder = ClientRecorder()
    monkeypatch.setattr(connection, "bigquery", SimpleNamespace(Client=recorder))
    return recorder


def test_missing_project_fails_fast(fake_bigquery_client):
    with pytest.raises(ConfigurationError):
        connection.connect("")
    assert fake_bigquery_client.calls == []


def test_inline_json_wins(fake_bigquery_client, tmp_path):
    key_file = tmp_path / "ignored.json"
    key_file.write_text("{}")

    warehouse = connection.connect(
        "my-project",
        "EU",
        credentials_json=json.dumps(AUTHORIZED_USER),
        credentials_file=str(key_file),
    )

    call = fake_bigquery_client.calls[0]
    assert call["project"] == "my-project"
    assert call["location"] == "EU"
    assert isinstance(call["credentials"], UserCredentials)
    assert warehouse.location == "EU"


def test_inline_authorized_user_json(fake_bigquery_client):
    """Non service-account credential JSON is accepted too"""
    connection.connect("my-project", credentials_json=json.dumps(AUTHORIZED_USER))

    credentials = fake_bigquery_client.calls[0]["credentials"]
    assert isinstance(credentials, UserCredentials)
    assert credentials.refresh_token == "refresh-token"


def test_credentials_file_second(fake_bigquery_client, tmp_path):
    key_file = tmp_path / "key.json"
    key_file.write_text(json.dumps(AUTHORIZED_USER))

    connection.connect("my-project", credentials_file=str(key_file))

    assert isinstance(fake_bigquery_client.calls[0]["credentials"], UserCredentials)


def test_missing_credentials_file_names_source(fake_bigquery_client, tmp_path):
    with pytest.raises(WarehouseConnectionError) as exc_info:
        connection.connect("my-project", credentials_file=str(tmp_path / "missing.json"))

    assert exc_info.value.source == "file"
    assert fake_bigquery_client.calls == []


def test_ambient_credentials_last(fake_bigquery_client):
    warehouse = connection.connect("my-project", "")
    assert "credentials" not in fake_bigquery_client.calls[0]
    assert warehouse.location is None


def test_bad_inline_json_names_source(fake_bigquery_client):
    with pytest.raises(WarehouseConnectionError) as exc_info:
        connection.connect("my-project", credentials_json="{not json")

    assert exc_info.value.source == "json"
    assert str(exc_info.value).startswith("bq client (json) error:")


def test_unknown_credential_type_names_source(fake_bigquery_client):
    with pytest.raises(WarehouseConnectionError) as exc_info:
        connection.connect("my-project", credentials_json=json.dumps({"type": "bogus"}))

    assert exc_info.value.source == "json"


def test_adc_failure_names_source(fake_bigquery_client):
    fake_bigquery_client.error = RuntimeError("default credentials not found")

    with pytest.raises(WarehouseConnectionError) as exc_info:
        connection.connect("my-project")

    assert exc_info.value.source == "ADC"
    assert "default credentials not found" in str(exc_info.value)
