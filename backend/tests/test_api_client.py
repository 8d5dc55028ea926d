import json
from decimal import Decimal

import pytest
import requests

from api_client import ApiError, RestaurantApiClient
from errors import ConflictError, InvalidStateError, NotFoundError


class FakeResponse:
    def __init__(self, status_code, body=None):
        self.status_code = status_code
        self._body = body
        self.content = json.dumps(body).encode() if body is not None else b""

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return json.loads(self.content)


class FakeSession:
    def __init__(self, response=None, error=None):
        self.headers = {}
        self.response = response
        self.error = error
        self.requests = []

    def request(self, method, url, data=None, params=None, timeout=None):
        self.requests.append({"method": method, "url": url, "data": data, "timeout": timeout})
        if self.error:
            raise self.error
        return self.response


def make_client(response=None, error=None):
    session = FakeSession(response, error)
    client = RestaurantApiClient("http://api.local/", token="abc", timeout=2.5, session=session)
    return client, session


def test_every_request_has_timeout_and_token():
    client, session = make_client(FakeResponse(200, {"id": 3, "status": "SEATED"}))

    assert client.seat(3, 1) == {"id": 3, "status": "SEATED"}

    sent = session.requests[0]
    assert sent["method"] == "PUT"
    assert sent["url"] == "http://api.local/sessions/3/seat"
    assert sent["timeout"] == 2.5
    assert json.loads(sent["data"]) == {"table_id": 1}
    assert session.headers["Authorization"] == "Bearer abc"


def test_decimals_are_sent_as_strings():
    client, session = make_client(FakeResponse(200, {"index": 0}))
    client.pay_share(4, 0, Decimal("12.50"))
    assert json.loads(session.requests[0]["data"])["amount"] == "12.50"


@pytest.mark.parametrize("status,kind,cls", [
    (409, "ConflictError", ConflictError),
    (409, "InvalidStateError", InvalidStateError),
])
def test_error_payload_becomes_domain_error(status, kind, cls):
    body = {"error": kind, "detail": "Table 1 is already occupied", "context": {"table_id": 1}}
    client, _ = make_client(FakeResponse(status, body))

    with pytest.raises(cls) as excinfo:
        client.seat(3, 1)
    assert excinfo.value.message == "Table 1 is already occupied"
    assert excinfo.value.context["table_id"] == 1


def test_not_found_payload():
    body = {"error": "NotFoundError", "detail": "order 9 not found", "context": {"entity": "order", "id": 9}}
    client, _ = make_client(FakeResponse(404, body))
    with pytest.raises(NotFoundError) as excinfo:
        client.change_status(9, "CONFIRMED")
    assert excinfo.value.context == {"entity": "order", "id": 9}


def test_timeout_becomes_api_error():
    client, _ = make_client(error=requests.exceptions.Timeout("slow"))
    with pytest.raises(ApiError):
        client.tables()


def test_connection_error_becomes_api_error():
    client, _ = make_client(error=requests.exceptions.ConnectionError("refused"))
    with pytest.raises(ApiError):
        client.submit_order({"session_id": 1, "table_id": 1, "items": []})


def test_unexpected_status_becomes_api_error():
    client, _ = make_client(FakeResponse(401, {"detail": "Not authenticated"}))
    with pytest.raises(ApiError):
        client.tables()
