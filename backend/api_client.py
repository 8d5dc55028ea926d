"""
HTTP client of the lifecycle API, used by the reconciler and the dashboard poller.

Every request carries a timeout. Error bodies produced by the API are turned
back into the matching ``errors`` class; anything else (timeouts, refused
connections, unexpected answers) raises ``ApiError``.
"""
import json
import logging
import os
from typing import Any, Dict, List, Optional

import requests
from dotenv import load_dotenv

from errors import error_from_payload

load_dotenv()

logger = logging.getLogger(__name__)

API_URL = os.getenv("API_URL", "http://backend-api:8000")
API_TOKEN = os.getenv("API_TOKEN")
API_TIMEOUT = float(os.getenv("API_TIMEOUT", "5"))


class ApiError(Exception):
    """The API could not be reached or gave an unusable answer"""


class RestaurantApiClient:
    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None,
                 timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        self.base_url = (base_url or API_URL).rstrip("/")
        self.timeout = API_TIMEOUT if timeout is None else timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
        })
        token = token or API_TOKEN
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _request(self, method: str, path: str, payload: Optional[Dict] = None,
                 params: Optional[Dict] = None) -> Any:
        url = f"{self.base_url}{path}"
        body = json.dumps(payload, default=str) if payload is not None else None
        try:
            response = self.session.request(method, url, data=body, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            logger.warning(f"{method} {path} timed out after {self.timeout}s")
            raise ApiError(f"{method} {path} timed out after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise ApiError(f"{method} {path} failed: {e}") from e

        try:
            data = response.json() if response.content else None
        except ValueError:
            data = None

        if response.ok:
            return data
        if isinstance(data, dict) and "error" in data:
            raise error_from_payload(data, response.status_code)
        raise ApiError(f"{method} {path} returned {response.status_code}")

    # ---- sessions ----

    def check_in(self, party_size: int, customer_name: Optional[str] = None,
                 customer_phone: Optional[str] = None, notes: Optional[str] = None) -> Dict:
        return self._request("POST", "/sessions", {
            "party_size": party_size,
            "customer_name": customer_name,
            "customer_phone": customer_phone,
            "notes": notes,
        })

    def seat(self, session_id: int, table_id: int) -> Dict:
        return self._request("PUT", f"/sessions/{session_id}/seat", {"table_id": table_id})

    def checkout(self, session_id: int) -> Dict:
        return self._request("PUT", f"/sessions/{session_id}/checkout")

    def tables(self) -> List[Dict]:
        return self._request("GET", "/tables")

    # ---- orders ----

    def submit_order(self, payload: Dict) -> Dict:
        return self._request("POST", "/orders", payload)

    def change_status(self, order_id: int, status: str, reason: Optional[str] = None) -> Dict:
        return self._request("PATCH", f"/orders/{order_id}/status", {"status": status, "reason": reason})

    def update_statuses(self, order_ids: List[int], status: str, reason: Optional[str] = None) -> List[Dict]:
        return self._request("PATCH", "/orders/status",
                             {"order_ids": order_ids, "status": status, "reason": reason})

    def remove_item(self, order_id: int, item_id: int) -> Dict:
        return self._request("DELETE", f"/orders/{order_id}/items/{item_id}")

    def session_order_groups(self, session_id: int) -> Dict:
        return self._request("GET", f"/sessions/{session_id}/order-groups")

    def department_pending(self, department: str) -> Dict:
        return self._request("GET", f"/departments/{department}/pending")

    # ---- billing ----

    def process_payment(self, payload: Dict) -> Dict:
        return self._request("POST", "/billing/process", payload)

    def create_split(self, session_id: int, strategy: str, params: Optional[Dict] = None) -> Dict:
        return self._request("POST", "/billSplit",
                             {"session_id": session_id, "strategy": strategy, "params": params or {}})

    def pay_share(self, split_id: int, share_index: int, amount) -> Dict:
        return self._request("POST", "/billSplit/payment",
                             {"split_id": split_id, "share_index": share_index, "amount": amount})
