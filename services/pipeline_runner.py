"""
Background order processing with thread-per-order dispatch.

After the payment webhook confirms an order, the webhook request must be
acknowledged quickly; rendering and submission can take minutes. The
runner starts one named thread per order that calls
FulfillmentService.process_order and leaves the outcome in a result store.

Thread Safety:
    - Each pipeline thread works on one order id; the state machine's
      conditional updates keep two runs for the same order from both
      submitting
    - PipelineResultStore uses threading.Lock for all access
    - Active threads are tracked under their own lock for shutdown

Flow:
    1. Webhook thread calls runner.dispatch(order_id)
    2. Pipeline thread "Order-xxxxxxxx" runs process_order
    3. ProcessResult (or a failed result) lands in the result store
    4. Operator endpoints read it with runner.get_result(order_id)

Usage:
    runner = PipelineRunner(fulfillment_service)
    runner.dispatch(order_id)
    result = runner.get_result(order_id)
    runner.shutdown()
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Dict, Optional

from models.process_result import ProcessResult
from services.fulfillment_service import FulfillmentService
from logging_config import get_logger, get_order_logger, set_thread_name


logger = get_logger(__name__)

DEFAULT_MAX_RESULTS = 1000


class PipelineResultStore:
    """
    Thread-safe storage for pipeline results.

    Pipeline threads WRITE results here; request threads READ (and remove)
    them. get_result() is consume-once. Only the latest result per order is
    kept, and once max_results orders are held the oldest result is evicted.
    The order record stays the durable outcome (status and last_error).
    """

    def __init__(self, max_results: int = DEFAULT_MAX_RESULTS):
        if max_results < 1:
            raise ValueError("max_results must be at least 1")
        self._results: "OrderedDict[str, ProcessResult]" = OrderedDict()
        self._max_results = max_results
        self._lock = threading.Lock()

    def put_result(self, result: ProcessResult) -> None:
        with self._lock:
            self._results.pop(result.order_id, None)
            self._results[result.order_id] = result
            while len(self._results) > self._max_results:
                evicted, _ = self._results.popitem(last=False)
                logger.debug(f"Evicted result for order {evicted[:8]}")
            logger.debug(f"Stored result for order {result.order_id[:8]}")

    def get_result(self, order_id: str) -> Optional[ProcessResult]:
        """Get and remove a result; None if the run has not finished."""
        with self._lock:
            return self._results.pop(order_id, None)

    def peek_result(self, order_id: str) -> Optional[ProcessResult]:
        """Check for a result without consuming it."""
        with self._lock:
            return self._results.get(order_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def clear(self) -> int:
        with self._lock:
            count = len(self._results)
            self._results.clear()
            logger.info(f"Cleared {count} pipeline results from store")
            return count


class PipelineRunner:
    """
    Dispatches process_order onto one thread per order.

    No queue and no automatic retries: a failed run leaves the order in
    processing with last_error set, and an operator retries it.
    """

    def __init__(self, fulfillment_service: FulfillmentService,
                 max_results: int = DEFAULT_MAX_RESULTS):
        self._service = fulfillment_service
        self._result_store = PipelineResultStore(max_results)
        self._active_threads: Dict[str, threading.Thread] = {}
        self._threads_lock = threading.Lock()
        logger.info("PipelineRunner initialized")

    @property
    def result_store(self) -> PipelineResultStore:
        return self._result_store

    def dispatch(self, order_id: str, retry: bool = False) -> bool:
        """
        Start processing an order in the background.

        Returns:
            False if a run for this order is already in progress
        """
        with self._threads_lock:
            existing = self._active_threads.get(order_id)
            if existing is not None and existing.is_alive():
                logger.info(f"Order {order_id[:8]} already running; dispatch ignored")
                return False

            thread = threading.Thread(
                target=self._pipeline_thread_main,
                args=(order_id, retry),
                name=f"Order-{order_id[:8]}",
                daemon=True,
            )
            self._active_threads[order_id] = thread

        logger.info(f"Dispatching order {order_id[:8]}")
        thread.start()
        return True

    def get_result(self, order_id: str) -> Optional[ProcessResult]:
        return self._result_store.get_result(order_id)

    def is_running(self, order_id: str) -> bool:
        with self._threads_lock:
            thread = self._active_threads.get(order_id)
            return thread is not None and thread.is_alive()

    def wait(self, order_id: str, timeout: float = 30.0) -> bool:
        """Block until the order's thread finishes; True if it did."""
        with self._threads_lock:
            thread = self._active_threads.get(order_id)
        if thread is None:
            return True
        thread.join(timeout=timeout)
        return not thread.is_alive()

    def shutdown(self, timeout_per_thread: float = 5.0) -> None:
        """Wait for live pipeline threads; call at application shutdown."""
        with self._threads_lock:
            active = list(self._active_threads.items())

        if not active:
            logger.info("No active pipeline threads to wait for")
            return

        logger.info(f"Waiting for {len(active)} pipeline threads to complete...")
        for order_id, thread in active:
            if thread.is_alive():
                thread.join(timeout=timeout_per_thread)
                if thread.is_alive():
                    logger.warning(f"Pipeline thread {order_id[:8]} did not complete in time")

        logger.info("Pipeline runner shutdown complete")

    def _pipeline_thread_main(self, order_id: str, retry: bool) -> None:
        set_thread_name(f"Order-{order_id[:8]}")
        order_logger = get_order_logger(order_id)
        order_logger.info("Pipeline thread starting")

        try:
            result = self._service.process_order(order_id, retry=retry)
            order_logger.info(f"Pipeline finished: {result.outcome.value}")
        except Exception as e:
            order_logger.error(f"Pipeline failed: {e}")
            result = ProcessResult.failed(order_id, str(e), environment=self._service.environment)

        try:
            # Stored before the thread is untracked (see wait())
            self._result_store.put_result(result)
        finally:
            with self._threads_lock:
                if self._active_threads.get(order_id) is threading.current_thread():
                    del self._active_threads[order_id]
            order_logger.info("Pipeline thread exiting")
