"""REST gateway tests with a mocked requests.Session."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests

from homecontrol.domain.exceptions import ConfigurationError, ConnectivityError
from homecontrol.services.gateway.home_assistant import EntityState, HomeAssistantGateway

BASE_URL = "http://ha.local:8123"


def _response(status: int = 200, payload=None, content: bytes = b"x"):
    response = MagicMock()
    response.status_code = status
    response.content = content
    response.json.return_value = payload
    return response


@pytest.fixture
def session():
    mock = MagicMock()
    mock.headers = {}
    return mock


@pytest.fixture
def gateway(session):
    return HomeAssistantGateway(BASE_URL + "/", "secret-token", timeout=5, session=session)


def test_token_is_sent_as_bearer(gateway, session):
    assert session.headers["Authorization"] == "Bearer secret-token"
    assert gateway.base_url == BASE_URL
    assert gateway.is_configured is True


def test_read_state(gateway, session):
    session.request.return_value = _response(
        payload={"entity_id": "climate.walkway", "state": "cool", "attributes": {"temperature": 72}}
    )

    state = gateway.read_state("climate.walkway")

    session.request.assert_called_once_with("GET", f"{BASE_URL}/api/states/climate.walkway", timeout=5)
    assert state.state == "cool"
    assert state.numeric_attribute("temperature") == 72.0


def test_read_states_skips_non_objects(gateway, session):
    session.request.return_value = _response(
        payload=[{"entity_id": "sensor.a", "state": "1"}, "junk", {"entity_id": "sensor.b", "state": "2"}]
    )
    assert [s.entity_id for s in gateway.read_states()] == ["sensor.a", "sensor.b"]


def test_history_uses_first_series(gateway, session):
    session.request.return_value = _response(
        payload=[[{"entity_id": "sensor.t", "state": "72.1"}, {"entity_id": "sensor.t", "state": "72.4"}]]
    )
    start = datetime(2026, 6, 15, 8, 0, tzinfo=timezone.utc)

    history = gateway.get_history("sensor.t", start)

    args, kwargs = session.request.call_args
    assert args == ("GET", f"{BASE_URL}/api/history/period/2026-06-15T08:00:00+00:00")
    assert kwargs["params"] == {"filter_entity_id": "sensor.t"}
    assert [h.numeric_state() for h in history] == [72.1, 72.4]


def test_history_empty_payload(gateway, session):
    session.request.return_value = _response(payload=[])
    assert gateway.get_history("sensor.t", datetime(2026, 6, 15, tzinfo=timezone.utc)) == []


def test_call_action_posts_entity_and_params(gateway, session):
    session.request.return_value = _response(payload=[])

    gateway.call_action("climate", "set_temperature", "climate.walkway", {"temperature": 73})

    session.request.assert_called_once_with(
        "POST",
        f"{BASE_URL}/api/services/climate/set_temperature",
        timeout=5,
        json={"temperature": 73, "entity_id": "climate.walkway"},
    )


def test_non_2xx_raises_connectivity_error(gateway, session):
    session.request.return_value = _response(status=502)
    with pytest.raises(ConnectivityError) as excinfo:
        gateway.read_state("sensor.t")
    assert excinfo.value.detail["status"] == 502


def test_transport_error_raises_connectivity_error(gateway, session):
    session.request.side_effect = requests.ConnectionError("refused")
    with pytest.raises(ConnectivityError):
        gateway.call_action("script", "turn_on", "script.turn_on_pool_pump")


def test_empty_body_returns_none(gateway, session):
    session.request.return_value = _response(content=b"")
    assert gateway.call_action("script", "turn_off", "script.turn_off_pool_pump") is None


def test_missing_token_fails_before_request(session):
    gateway = HomeAssistantGateway(BASE_URL, "", session=session)
    assert gateway.is_configured is False
    with pytest.raises(ConfigurationError):
        gateway.read_states()
    session.request.assert_not_called()


@pytest.mark.parametrize("state", ["unavailable", "unknown", "", "None"])
def test_unavailable_states_have_no_number(state):
    entity = EntityState(entity_id="sensor.t", state=state)
    assert entity.is_available is False
    assert entity.numeric_state() is None
