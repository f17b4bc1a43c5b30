"""
Services layer for the storybook print service.

This module contains the business logic services:
- OrderStateMachine: every order mutation as a conditional update
- FulfillmentService: render -> preflight -> upload -> submit
- PipelineRunner: thread-per-order dispatch and result store
- WebhookService: payment and print partner event dispatch

Collaborator interfaces (with in-memory/local implementations):
- OrderRepository, ContentRepository, DocumentStorage, Notifier

Thread Model:
    Main Thread (Flask)
    └── PipelineRunner threads (one per paid order)
"""

from .order_repository import OrderRepository, InMemoryOrderRepository
from .content_repository import ContentRepository, InMemoryContentRepository
from .document_storage import DocumentStorage, LocalDocumentStorage
from .notifier import Notifier, EmailServiceNotifier, LoggingNotifier, notify_best_effort
from .order_state_machine import OrderStateMachine, TransitionResult, PARTNER_STATUS_MAP
from .fulfillment_service import FulfillmentService
from .pipeline_runner import PipelineRunner, PipelineResultStore
from .webhook_service import WebhookService, WebhookResult

__all__ = [
    "OrderRepository",
    "InMemoryOrderRepository",
    "ContentRepository",
    "InMemoryContentRepository",
    "DocumentStorage",
    "LocalDocumentStorage",
    "Notifier",
    "EmailServiceNotifier",
    "LoggingNotifier",
    "notify_best_effort",
    "OrderStateMachine",
    "TransitionResult",
    "PARTNER_STATUS_MAP",
    "FulfillmentService",
    "PipelineRunner",
    "PipelineResultStore",
    "WebhookService",
    "WebhookResult",
]
