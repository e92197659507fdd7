"""
Tests for the HTTP billing client (requests mocked).
"""
from unittest.mock import MagicMock

import pytest
import requests

from lifeboard.billing import HttpBillingClient
from lifeboard.errors import BillingError


def _client(response=None, exc=None):
    session = MagicMock(spec=requests.Session)
    if exc is not None:
        session.get.side_effect = exc
    else:
        session.get.return_value = response
    return HttpBillingClient("http://billing.local/", session=session), session


def _response(status=200, payload=None, bad_json=False):
    r = MagicMock()
    r.status_code = status
    r.ok = 200 <= status < 400
    if bad_json:
        r.json.side_effect = ValueError("no json")
    else:
        r.json.return_value = payload
    return r


def test_overdue_status_parsed():
    client, session = _client(_response(payload={"isOverdue": True, "daysOverdue": 12, "amountDue": 450.0}))
    status = client.check_payment_status("s2", "Bob Smith", 7)
    assert status.is_overdue
    assert status.days_overdue == 12
    session.get.assert_called_once_with(
        "http://billing.local/payments/s2",
        params={"name": "Bob Smith", "grace_days": 7},
        timeout=2.0,
    )


def test_connection_error():
    client, _ = _client(exc=requests.ConnectionError("refused"))
    with pytest.raises(BillingError):
        client.check_payment_status("s1", "Alice Johnson", 7)


def test_http_error_status():
    client, _ = _client(_response(status=500))
    with pytest.raises(BillingError):
        client.check_payment_status("s1", "Alice Johnson", 7)


def test_non_json_body():
    client, _ = _client(_response(bad_json=True))
    with pytest.raises(BillingError):
        client.check_payment_status("s1", "Alice Johnson", 7)


def test_non_object_body():
    client, _ = _client(_response(payload=[1, 2]))
    with pytest.raises(BillingError):
        client.check_payment_status("s1", "Alice Johnson", 7)
