from datetime import date, time
from unittest.mock import MagicMock, patch

import pytest
import requests

from homecontrol.services.utilities.sun_times_service import SunTimesService

API_PAYLOAD = {
    "status": "OK",
    "results": {
        "sunrise": "2026-06-17T10:31:00+00:00",
        "sunset": "2026-06-18T00:15:00+00:00",
        "day_length": 49440,
    },
}


def _ok_response(payload=API_PAYLOAD):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


@pytest.fixture
def service(clock):
    return SunTimesService(latitude=25.76, longitude=-80.19, timezone="America/New_York", clock=clock)


def test_api_times_are_converted_to_local(service):
    with patch("homecontrol.services.utilities.sun_times_service.requests.get", return_value=_ok_response()) as get:
        sun = service.get_sun_times(date(2026, 6, 17))

    assert sun.source == "api"
    assert sun.sunrise == time(6, 31)
    assert sun.sunset == time(20, 15)
    assert sun.day_length_hours == pytest.approx(13.73, abs=0.01)
    assert get.call_args.kwargs["params"]["formatted"] == 0


def test_api_results_are_cached(service, clock):
    with patch("homecontrol.services.utilities.sun_times_service.requests.get", return_value=_ok_response()) as get:
        service.get_sun_times(date(2026, 6, 17))
        service.get_sun_times(date(2026, 6, 17))
        assert get.call_count == 1

        clock.advance(hours=13)
        service.get_sun_times(date(2026, 6, 17))
        assert get.call_count == 2


def test_request_failure_uses_fallback_table(service):
    with patch(
        "homecontrol.services.utilities.sun_times_service.requests.get",
        side_effect=requests.ConnectionError("offline"),
    ):
        sun = service.get_sun_times(date(2026, 6, 17))

    assert sun.source == "fallback"
    assert sun.sunrise == time(6, 30)


def test_api_error_status_uses_fallback(service):
    with patch(
        "homecontrol.services.utilities.sun_times_service.requests.get",
        return_value=_ok_response({"status": "INVALID_REQUEST"}),
    ):
        assert service.get_sun_times(date(2026, 1, 5)).sunrise == time(7, 5)


def test_no_coordinates_never_calls_api(clock):
    service = SunTimesService(clock=clock)
    with patch("homecontrol.services.utilities.sun_times_service.requests.get") as get:
        sun = service.get_sun_times()

    get.assert_not_called()
    assert sun.source == "fallback"
    assert sun.date == date(2026, 6, 15)


def test_set_location_clears_cache(service):
    with patch("homecontrol.services.utilities.sun_times_service.requests.get", return_value=_ok_response()) as get:
        service.get_sun_times(date(2026, 6, 17))
        service.set_location(26.1, -80.1)
        service.get_sun_times(date(2026, 6, 17))

    assert get.call_count == 2
