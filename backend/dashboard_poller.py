import os
import time
import logging
import threading
from typing import Any, Callable, Optional

from dotenv import load_dotenv

from api_client import RestaurantApiClient

load_dotenv()

logger = logging.getLogger(__name__)

DASHBOARD_DEPARTMENT = os.getenv("DASHBOARD_DEPARTMENT", "kitchen")
DASHBOARD_INTERVAL = float(os.getenv("DASHBOARD_INTERVAL", "30"))


class DashboardPoller:
    """
    Refreshes a read-only dashboard snapshot on a fixed interval.

    A failed refresh is logged and retried on the next tick; the previous
    snapshot stays in place. Pausing keeps the snapshot and resumes on the
    same interval.
    """

    def __init__(self, fetch: Callable[[], Any], interval: Optional[float] = None, name: str = "dashboard"):
        self.fetch = fetch
        self.interval = DASHBOARD_INTERVAL if interval is None else interval
        self.name = name
        self.snapshot: Any = None
        self.last_refresh: Optional[float] = None
        self.last_error: Optional[Exception] = None
        self.failures = 0
        self._stop = threading.Event()
        self._running = threading.Event()
        self._running.set()
        self._thread: Optional[threading.Thread] = None

    @property
    def paused(self) -> bool:
        return not self._running.is_set()

    def poll_once(self) -> bool:
        try:
            data = self.fetch()
        except Exception as e:
            self.failures += 1
            self.last_error = e
            logger.error(f"[{self.name}] refresh failed ({self.failures} in a row), retrying in {self.interval}s: {e}")
            return False

        self.snapshot = data
        self.last_refresh = time.time()
        self.last_error = None
        self.failures = 0
        return True

    def pause(self) -> None:
        logger.info(f"[{self.name}] paused")
        self._running.clear()

    def resume(self) -> None:
        logger.info(f"[{self.name}] resumed")
        self._running.set()

    def stop(self) -> None:
        self._stop.set()
        self._running.set()

    def run(self, max_cycles: Optional[int] = None) -> None:
        cycles = 0
        while not self._stop.is_set():
            self._running.wait()
            if self._stop.is_set():
                break
            self.poll_once()
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            self._stop.wait(self.interval)

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.run, name=f"{self.name}-poller", daemon=True)
        self._thread.start()
        return self._thread


def log_department_view(view) -> None:
    if not view:
        return
    orders = view.get("orders", [])
    logger.info("=" * 60)
    logger.info(f"{view.get('department')}: {len(orders)} pending orders")
    for order in orders:
        items = ", ".join(f"{i['quantity']}x {i['menu_item_name']}" for i in order.get("items", []))
        logger.info(f"  {order['order_number']} [{order['status']}] table {order.get('table_id')}: {items}")
    logger.info("=" * 60)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    client = RestaurantApiClient()

    def refresh():
        view = client.department_pending(DASHBOARD_DEPARTMENT)
        log_department_view(view)
        return view

    poller = DashboardPoller(refresh, name=DASHBOARD_DEPARTMENT)
    logger.info(f"Polling {DASHBOARD_DEPARTMENT} every {poller.interval} seconds...")
    try:
        poller.run()
    except KeyboardInterrupt:
        poller.stop()
        logger.info("Dashboard poller stopped")
