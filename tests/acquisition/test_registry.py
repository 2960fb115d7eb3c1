"""Tests for the registry client."""

import json
from unittest.mock import MagicMock

import pytest
import requests

from harvester.acquisition.models import HarvestState
from harvester.acquisition.registry import MAX_BATCH_SIZE, PAGE_SIZE, ParseClient, RegistryError
from harvester.config import ParseSettings


def make_response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


@pytest.fixture
def client():
    settings = ParseSettings(server_url="https://registry.example.com/parse", app_id="app", api_key="key")
    return ParseClient(settings, session=MagicMock())


def test_get_books_follows_pagination(client):
    first_page = [{"objectId": f"id{i}", "harvestState": "New"} for i in range(PAGE_SIZE)]
    second_page = [
        {
            "objectId": "last",
            "harvestState": "InProgress",
            "harvesterMajorVersion": 2,
            "harvesterMinorVersion": 1,
            "harvestStartedAt": {"__type": "Date", "iso": "2024-01-02T03:04:05.000Z"},
            "harvestLog": ["Error MissingFont: Andika"],
        }
    ]
    client.session.request.side_effect = [make_response({"results": first_page}), make_response({"results": second_page})]

    books = client.get_books({"harvestState": "New"})

    assert len(books) == PAGE_SIZE + 1
    last = books[-1]
    assert last.state == HarvestState.IN_PROGRESS
    assert (last.harvester_major_version, last.harvester_minor_version) == (2, 1)
    assert last.harvest_started_at.year == 2024
    assert last.harvest_log == ["Error MissingFont: Andika"]

    second_call = client.session.request.call_args_list[1]
    assert second_call[0] == ("GET", "https://registry.example.com/parse/classes/books")
    assert second_call[1]["params"]["skip"] == PAGE_SIZE
    assert json.loads(second_call[1]["params"]["where"]) == {"harvestState": "New"}


def test_update_object_is_immediate(client):
    client.session.request.return_value = make_response({"updatedAt": "now"})

    client.update_object("books", "abc", {"harvestState": "InProgress"})

    method, url = client.session.request.call_args[0]
    assert (method, url) == ("PUT", "https://registry.example.com/parse/classes/books/abc")
    assert json.loads(client.session.request.call_args[1]["data"]) == {"harvestState": "InProgress"}


def test_queued_updates_sent_on_flush(client):
    client.session.request.return_value = make_response([{"success": {}}, {"success": {}}])

    client.queue_update("books", "a", {"harvestState": "Done"})
    client.queue_update("books", "b", {"harvestState": "Failed"})
    client.session.request.assert_not_called()

    client.flush_batchable_operations()

    method, url = client.session.request.call_args[0]
    assert (method, url) == ("POST", "https://registry.example.com/parse/batch")
    body = json.loads(client.session.request.call_args[1]["data"])
    assert [r["path"] for r in body["requests"]] == ["/parse/classes/books/a", "/parse/classes/books/b"]
    assert client.pending_count == 0


def test_full_batch_flushes_automatically(client):
    client.session.request.return_value = make_response([])

    for i in range(MAX_BATCH_SIZE):
        client.queue_update("books", str(i), {"harvestState": "Done"})

    assert client.session.request.call_count == 1
    assert client.pending_count == 0


def test_request_failure_raises_registry_error(client):
    client.session.request.side_effect = requests.ConnectionError("down")

    with pytest.raises(RegistryError):
        client.update_object("books", "abc", {})
