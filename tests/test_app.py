import json
import os

import pytest

from app import Dashboard
from filters import FilterRecord
from settings import load_config

BODY = b"# comment\nrule1\n\nrule2\n"


class RecordingUpdater:
    def __init__(self):
        self.woken = 0

    def wake(self):
        self.woken += 1


@pytest.fixture()
def config_path(tmp_path):
    return str(tmp_path / "config" / "config.json")


@pytest.fixture()
def updater():
    return RecordingUpdater()


@pytest.fixture()
def client(store, updater, config_path, tmp_path):
    dashboard = Dashboard(store, updater, load_config(config_path), config_path,
                          log_file=str(tmp_path / "queries.log"))
    return dashboard.app.test_client()


def _saved_filters(config_path):
    with open(config_path) as f:
        return json.load(f)["filters"]


def test_index_loads(client, store, session):
    session.pages["http://a/list.txt"] = BODY
    store.add(FilterRecord(name="Ads", url="http://a/list.txt"))

    response = client.get("/")

    assert response.status_code == 200
    assert b"http://a/list.txt" in response.data


def test_add_filter(client, store, session, config_path):
    session.pages["http://a/list.txt"] = BODY

    response = client.post("/filters/add", data={"name": "Ads", "url": "http://a/list.txt"})

    assert response.status_code == 302
    [f] = store.list()
    assert f.rule_count == 2
    assert _saved_filters(config_path) == [
        {"id": f.id, "enabled": True, "name": "Ads", "url": "http://a/list.txt"}
    ]


def test_add_duplicate_keeps_single_filter(client, store, session):
    session.pages["http://a/list.txt"] = BODY
    client.post("/filters/add", data={"name": "Ads", "url": "http://a/list.txt"})

    response = client.post("/filters/add", data={"name": "Other", "url": "http://a/list.txt"},
                           follow_redirects=True)

    assert b"already exists" in response.data
    assert len(store.list()) == 1


def test_add_download_failure(client, store):
    response = client.post("/filters/add", data={"name": "Ads", "url": "http://down/"},
                           follow_redirects=True)

    assert b"download" in response.data
    assert store.list() == []


def test_delete_filter_removes_file(client, store, session, config_path):
    session.pages["http://a/list.txt"] = BODY
    f = store.add(FilterRecord(name="Ads", url="http://a/list.txt"))

    client.post("/filters/delete", data={"url": "http://a/list.txt"})

    assert store.list() == []
    assert not os.path.exists(f.path)
    assert _saved_filters(config_path) == []


def test_delete_unknown_filter(client):
    response = client.post("/filters/delete", data={"url": "http://nope/"}, follow_redirects=True)
    assert b"Filter not found." in response.data


def test_modify_url_schedules_refresh(client, store, session, updater):
    session.pages["http://a/list.txt"] = BODY
    store.add(FilterRecord(name="Ads", url="http://a/list.txt"))

    client.post("/filters/modify", data={
        "url": "http://a/list.txt", "name": "Ads", "new_url": "http://a/v2.txt", "enabled": "1",
    })

    [f] = store.list()
    assert f.url == "http://a/v2.txt"
    assert f.next_due_at == 0.0
    assert updater.woken == 1


def test_modify_disable_does_not_refresh(client, store, session, updater):
    session.pages["http://a/list.txt"] = BODY
    store.add(FilterRecord(name="Ads", url="http://a/list.txt"))

    client.post("/filters/modify", data={"url": "http://a/list.txt", "name": "Ads"})

    [f] = store.list()
    assert not f.enabled
    assert updater.woken == 0


def test_refresh_wakes_updater(client, store, session, updater):
    session.pages["http://a/list.txt"] = BODY
    store.add(FilterRecord(name="Ads", url="http://a/list.txt"))

    response = client.post("/filters/refresh", follow_redirects=True)

    assert b"1 filters scheduled" in response.data
    assert updater.woken == 1


def test_api_filters(client, store, session):
    session.pages["http://a/list.txt"] = BODY
    f = store.add(FilterRecord(name="Ads", url="http://a/list.txt"))

    data = client.get("/api/filters").get_json()

    assert data[0]["id"] == f.id
    assert data[0]["rules_count"] == 2
    assert data[0]["path"] == f.path


def test_modify_requires_name(client, store, session):
    session.pages["http://a/list.txt"] = BODY
    store.add(FilterRecord(name="Ads", url="http://a/list.txt"))

    response = client.post("/filters/modify", data={"url": "http://a/list.txt", "name": " ", "enabled": "1"},
                           follow_redirects=True)

    assert b"Name is required." in response.data
    assert store.list()[0].name == "Ads"


def test_index_has_modify_form(client, store, session):
    session.pages["http://a/list.txt"] = BODY
    store.add(FilterRecord(name="Ads", url="http://a/list.txt"))

    response = client.get("/")

    assert b'action="/filters/modify"' in response.data
    assert b'name="new_url"' in response.data
