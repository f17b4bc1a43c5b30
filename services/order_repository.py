"""
Order persistence.

OrderRepository is the seam to the relational store. Every status change
goes through compare_and_set, which applies changes only while the stored
row is still in one of the expected statuses. A database implementation
maps it to a single-row

    UPDATE orders SET ... WHERE id = ? AND status IN (...)

The in-memory implementation does the same under one lock and is used for
development and tests.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from core.exceptions import ValidationError
from models.order import Order, OrderStatus, utcnow


class OrderRepository(ABC):
    """Storage interface for orders."""

    @abstractmethod
    def add(self, order: Order) -> Order:
        """Insert a new order. Raises ValidationError on a duplicate id."""

    @abstractmethod
    def get(self, order_id: str) -> Optional[Order]:
        """Detached copy of the order, or None."""

    @abstractmethod
    def find_by_payment_session(self, session_id: str) -> Optional[Order]:
        """Order created for a checkout session, or None."""

    @abstractmethod
    def find_by_partner_job_id(self, partner_job_id: str) -> Optional[Order]:
        """Order submitted as this print job, or None."""

    @abstractmethod
    def compare_and_set(
        self,
        order_id: str,
        expected_statuses: Iterable[OrderStatus],
        changes: Dict[str, Any],
    ) -> Optional[Order]:
        """
        Apply `changes` if the order's status is one of `expected_statuses`.

        Returns:
            The updated order, or None when the order is missing or its
            status no longer matches (the caller lost the race)
        """

    @abstractmethod
    def update_fields(self, order_id: str, changes: Dict[str, Any]) -> Optional[Order]:
        """Unconditional update of non-status fields."""

    @abstractmethod
    def list(self, status: Optional[OrderStatus] = None) -> List[Order]:
        """All orders, optionally filtered by status."""


class InMemoryOrderRepository(OrderRepository):
    """
    Thread-safe in-memory order store.

    Thread Safety:
        - One threading.Lock guards every read and write
        - Callers only ever see copies; stored instances never leave the lock
    """

    def __init__(self, orders: Optional[Iterable[Order]] = None):
        self._orders: Dict[str, Order] = {}
        self._lock = threading.Lock()
        for order in orders or ():
            self._orders[order.id] = order.copy()

    def add(self, order: Order) -> Order:
        with self._lock:
            if order.id in self._orders:
                raise ValidationError(f"Order already exists: {order.id}", field="id")
            self._orders[order.id] = order.copy()
            return order.copy()

    def get(self, order_id: str) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(order_id)
            return order.copy() if order else None

    def find_by_payment_session(self, session_id: str) -> Optional[Order]:
        if not session_id:
            return None
        return self._find(lambda o: o.payment_session_id == session_id)

    def find_by_partner_job_id(self, partner_job_id: str) -> Optional[Order]:
        if not partner_job_id:
            return None
        return self._find(lambda o: o.partner_job_id == str(partner_job_id))

    def compare_and_set(
        self,
        order_id: str,
        expected_statuses: Iterable[OrderStatus],
        changes: Dict[str, Any],
    ) -> Optional[Order]:
        expected = frozenset(expected_statuses)
        with self._lock:
            current = self._orders.get(order_id)
            if current is None or current.status not in expected:
                return None
            updated = current.copy(**dict(changes, updated_at=utcnow()))
            self._orders[order_id] = updated
            return updated.copy()

    def update_fields(self, order_id: str, changes: Dict[str, Any]) -> Optional[Order]:
        if "status" in changes:
            raise ValueError("Status changes must go through compare_and_set")
        with self._lock:
            current = self._orders.get(order_id)
            if current is None:
                return None
            updated = current.copy(**dict(changes, updated_at=utcnow()))
            self._orders[order_id] = updated
            return updated.copy()

    def list(self, status: Optional[OrderStatus] = None) -> List[Order]:
        with self._lock:
            orders = [o.copy() for o in self._orders.values() if status is None or o.status is status]
        return sorted(orders, key=lambda o: o.created_at)

    def _find(self, predicate) -> Optional[Order]:
        with self._lock:
            for order in self._orders.values():
                if predicate(order):
                    return order.copy()
        return None
