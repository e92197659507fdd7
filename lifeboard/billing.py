"""
Billing collaborator client.

The board never decides whether a student is overdue; it asks the billing
service and stores the answer as an annotation.
"""
from typing import Optional

import requests

from .errors import BillingError
from .schema import PaymentStatus


class HttpBillingClient:
    """check_payment_status() over the billing service's HTTP API."""

    def __init__(self, base_url: str, timeout: float = 2.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def check_payment_status(self, entity_id: str, name: str, grace_days: int) -> PaymentStatus:
        url = f"{self.base_url}/payments/{entity_id}"
        try:
            r = self.session.get(
                url,
                params={"name": name, "grace_days": grace_days},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise BillingError(f"Billing service unreachable for {entity_id}: {e}") from e

        if not r.ok:
            raise BillingError(f"Billing service answered {r.status_code} for {entity_id}")
        try:
            data = r.json()
        except ValueError as e:
            raise BillingError(f"Billing response for {entity_id} is not JSON") from e
        if not isinstance(data, dict):
            raise BillingError(f"Billing response for {entity_id} is not an object")
        return PaymentStatus.from_dict(data)
