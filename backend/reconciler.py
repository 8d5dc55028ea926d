"""
Optimistic reconciliation of staff mutations made from a client terminal.

A mutation (submit order, change status) is applied locally at once and
returned as a ``Tentative`` record; ``flush`` later sends it to the API and
swaps the tentative record for the server's ``Confirmed`` one in place, or
rolls it back on failure. Records are keyed by a client-generated
correlation id so a record is never visible twice.
"""
import copy
import logging
import uuid
from collections import OrderedDict
from typing import Callable, Dict, Iterable, List, Optional, Union

from api_client import ApiError, RestaurantApiClient
from billing import sum_money, to_decimal, to_money
from errors import ConflictError, InvalidStateError, LifecycleError, NotFoundError
from order_status import OrderStatus, allowed_transitions, can_transition

logger = logging.getLogger(__name__)


class Tentative:
    """Locally synthesized record waiting for the server's answer"""

    def __init__(self, correlation_id: str, record: Dict, previous: Optional["Confirmed"] = None):
        self.correlation_id = correlation_id
        self.record = record
        self.previous = previous

    @property
    def local_id(self) -> str:
        return f"tmp-{self.correlation_id}"

    @property
    def server_id(self) -> Optional[int]:
        return self.previous.server_id if self.previous else None


class Confirmed:
    def __init__(self, record: Dict):
        self.record = record

    @property
    def server_id(self) -> int:
        return self.record["id"]


Entry = Union[Tentative, Confirmed]


class PendingMutation:
    def __init__(self, correlation_id: str, kind: str, send: Callable[[], Dict]):
        self.correlation_id = correlation_id
        self.kind = kind
        self.send = send


class ReconcileResult:
    def __init__(self, correlation_id: str, ok: bool, record: Optional[Dict] = None,
                 error: Optional[Exception] = None):
        self.correlation_id = correlation_id
        self.ok = ok
        self.record = record
        self.error = error

    def __repr__(self):
        return f"ReconcileResult({self.correlation_id!r}, ok={self.ok}, error={self.error!r})"


def new_correlation_id() -> str:
    return uuid.uuid4().hex


def local_order_total(items: Iterable[Dict]) -> str:
    total = sum_money(
        (to_decimal(item.get("unit_price") or 0)
         + sum_money(s.get("price_add", 0) for s in item.get("selections") or [])) * item["quantity"]
        for item in items
    )
    return str(to_money(total))


class ReconciliationQueue:
    def __init__(self, client: RestaurantApiClient):
        self.client = client
        self.entries: "OrderedDict[str, Entry]" = OrderedDict()
        self.pending: List[PendingMutation] = []
        self.errors: List[Exception] = []
        # correlation id -> key of the entry it created or changed
        self._keys: Dict[str, str] = {}

    # ---- reads ----

    def visible(self) -> List[Dict]:
        return [entry.record for entry in self.entries.values()]

    def entry_for(self, correlation_id: str) -> Optional[Entry]:
        key = self._keys.get(correlation_id)
        return self.entries.get(key) if key else None

    def _key_for_server_id(self, server_id: int) -> Optional[str]:
        for key, entry in self.entries.items():
            if isinstance(entry, Confirmed) and entry.server_id == server_id:
                return key
            if isinstance(entry, Tentative) and entry.server_id == server_id:
                return key
        return None

    # ---- staging ----

    def stage_order(self, session_id: int, table_id: int, items: List[Dict],
                    notes: Optional[str] = None, parent_order_id: Optional[int] = None) -> Tentative:
        """Show a new order right away; totals use the unit prices the terminal knows"""
        correlation_id = new_correlation_id()
        payload = {
            "session_id": session_id,
            "table_id": table_id,
            "items": items,
            "notes": notes,
            "parent_order_id": parent_order_id,
        }
        entry = Tentative(correlation_id, {
            "id": None,
            "local_id": f"tmp-{correlation_id}",
            "session_id": session_id,
            "table_id": table_id,
            "parent_order_id": parent_order_id,
            "status": OrderStatus.PENDING.value,
            "total_amount": local_order_total(items),
            "notes": notes,
            "items": copy.deepcopy(items),
        })
        self.entries[correlation_id] = entry
        self._keys[correlation_id] = correlation_id
        self.pending.append(PendingMutation(correlation_id, "submit_order",
                                            lambda: self.client.submit_order(payload)))
        return entry

    def stage_status_change(self, order_id: int, new_status, reason: Optional[str] = None) -> Tentative:
        key = self._key_for_server_id(order_id)
        if key is None:
            raise NotFoundError("order", order_id)
        current = self.entries[key]
        if isinstance(current, Tentative):
            raise ConflictError(f"Order {order_id} already has a change waiting for the server",
                                order_id=order_id)

        new_status = OrderStatus(new_status)
        status = current.record["status"]
        if not can_transition(status, new_status):
            raise InvalidStateError(
                f"Cannot move order {order_id} from {status} to {new_status.value}",
                order_id=order_id, from_status=status, to_status=new_status.value,
                allowed=[s.value for s in allowed_transitions(status)],
            )

        correlation_id = new_correlation_id()
        record = copy.deepcopy(current.record)
        record["status"] = new_status.value
        entry = Tentative(correlation_id, record, previous=current)
        self.entries[key] = entry
        self._keys[correlation_id] = key
        self.pending.append(PendingMutation(
            correlation_id, "change_status",
            lambda: self.client.change_status(order_id, new_status.value, reason),
        ))
        return entry

    # ---- reconciliation ----

    def apply_confirmed(self, correlation_id: str, server_record: Dict) -> Confirmed:
        """
        Replace the record of ``correlation_id`` with the server's version.

        Applying the same server record again leaves one record; a copy of
        the same server id merged in by a refresh is dropped.
        """
        key = self._keys.get(correlation_id)
        server_id = server_record["id"]
        if key is None or key not in self.entries:
            existing = self._key_for_server_id(server_id)
            key = existing or f"order-{server_id}"
            self._keys[correlation_id] = key

        duplicate = self._key_for_server_id(server_id)
        if duplicate is not None and duplicate != key:
            del self.entries[duplicate]

        confirmed = Confirmed(server_record)
        self.entries[key] = confirmed
        return confirmed

    def reject(self, correlation_id: str, error: Exception) -> None:
        """Undo a tentative change and keep the error for the caller"""
        key = self._keys.pop(correlation_id, None)
        entry = self.entries.get(key) if key else None
        if isinstance(entry, Tentative) and entry.correlation_id == correlation_id:
            if entry.previous is not None:
                self.entries[key] = entry.previous
            else:
                del self.entries[key]
        self.errors.append(error)
        logger.warning(f"Mutation {correlation_id} rolled back: {error}")

    def flush(self) -> List[ReconcileResult]:
        """Send every staged mutation in order, one result per mutation"""
        pending, self.pending = self.pending, []
        results = []
        for mutation in pending:
            try:
                server_record = mutation.send()
            except (LifecycleError, ApiError) as e:
                self.reject(mutation.correlation_id, e)
                results.append(ReconcileResult(mutation.correlation_id, False, error=e))
                continue
            confirmed = self.apply_confirmed(mutation.correlation_id, server_record)
            results.append(ReconcileResult(mutation.correlation_id, True, confirmed.record))
        return results

    def merge_server_records(self, records: Iterable[Dict]) -> None:
        """Fold a refreshed list of server records in; tentative changes win until resolved"""
        for record in records:
            key = self._key_for_server_id(record["id"])
            if key is None:
                self.entries[f"order-{record['id']}"] = Confirmed(record)
            elif isinstance(self.entries[key], Confirmed):
                self.entries[key] = Confirmed(record)
