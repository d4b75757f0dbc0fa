"""
Webhook Dispatcher

Authenticates, parses and routes POS webhook deliveries into the upsert
engine. Deliveries are at-least-once and unordered; there is no dedup
table because every write is a natural-key upsert guarded by the order
version.

Flow: received -> authenticated -> parsed -> routed -> applied | ignored | rejected
"""

from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import structlog
from prometheus_client import Counter
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import get_settings
from src.config.settings import Settings
from src.database.connection import session_scope
from src.ingestion.catalog import CatalogMapping, build_catalog_mapping
from src.ingestion.schemas import NORMALIZATION_ERRORS, normalize_order
from src.ingestion.upsert import OrderOutcome, UpsertEngine
from src.pos.client import PosApiClient
from src.webhooks.events import WebhookEvent, WebhookOutcome, WebhookStatus
from src.webhooks.verification import verify_signature

logger = structlog.get_logger(__name__)


WEBHOOK_EVENTS = Counter(
    "pos_webhook_events_total",
    "Webhook deliveries by event type and outcome",
    ["event_type", "outcome"],
)

ORDER_EVENTS = ("order.created", "order.updated")
PAYMENT_EVENTS = ("payment.created", "payment.updated")
FULFILLMENT_EVENTS = ("order.fulfillment.updated",)

ClientFactory = Callable[[], PosApiClient]


def _outcome(
    status: WebhookStatus,
    reason: Optional[str] = None,
    event: Optional[WebhookEvent] = None,
    order_id: Optional[str] = None,
) -> WebhookOutcome:
    return WebhookOutcome(
        status=status,
        reason=reason,
        event_id=event.event_id if event else None,
        event_type=event.type if event else None,
        order_id=order_id,
    )


class WebhookDispatcher:
    """
    One instance serves every delivery; per-delivery state (session, API
    client, catalog snapshot) is created inside dispatch().

    Example:
        dispatcher = WebhookDispatcher(get_session_factory())
        outcome = await dispatcher.dispatch(request.headers, await request.body())
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client_factory: ClientFactory = PosApiClient,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.settings = settings or get_settings()
        self._handlers: Dict[str, Callable[[WebhookEvent], Awaitable[WebhookOutcome]]] = {}
        for event_type in ORDER_EVENTS:
            self._handlers[event_type] = self._handle_order_event
        for event_type in PAYMENT_EVENTS:
            self._handlers[event_type] = self._handle_payment_event
        for event_type in FULFILLMENT_EVENTS:
            self._handlers[event_type] = self._handle_fulfillment_event

    async def dispatch(self, headers: Mapping[str, str], raw_body: bytes) -> WebhookOutcome:
        """
        Process one delivery.

        Authentication and parse failures come back as REJECTED outcomes.
        Remote API and persistence errors propagate so the POS retries.
        """
        outcome = await self._dispatch(headers, raw_body)
        WEBHOOK_EVENTS.labels(
            event_type=outcome.event_type if outcome.event_type in self._handlers else "other",
            outcome=outcome.status.value,
        ).inc()
        return outcome

    async def _dispatch(self, headers: Mapping[str, str], raw_body: bytes) -> WebhookOutcome:
        config = self.settings.webhook
        headers = {key.lower(): value for key, value in headers.items()}

        environment = headers.get(config.environment_header.lower())
        if environment != config.production_marker:
            logger.info("Ignoring non-production webhook", environment=environment)
            return _outcome(WebhookStatus.IGNORED, "non-production environment")

        signature = headers.get(config.signature_header.lower())
        if not signature:
            logger.warning("Webhook rejected: missing signature header")
            return _outcome(WebhookStatus.REJECTED, "missing signature")

        if config.signature_key is None:
            logger.error("Webhook rejected: signature key not configured")
            return _outcome(WebhookStatus.REJECTED, "webhook secret not configured")

        if not verify_signature(
            raw_body,
            signature,
            config.signature_key.get_secret_value(),
            config.notification_url,
        ):
            logger.warning("Webhook rejected: invalid signature", body_length=len(raw_body))
            return _outcome(WebhookStatus.REJECTED, "invalid signature")

        try:
            event = WebhookEvent.model_validate_json(raw_body)
        except ValidationError as e:
            logger.warning("Webhook rejected: malformed envelope", error_count=e.error_count())
            return _outcome(WebhookStatus.REJECTED, "malformed event")

        with structlog.contextvars.bound_contextvars(
            event_id=event.event_id, event_type=event.type
        ):
            retry_number = headers.get(config.retry_header.lower())
            if retry_number:
                logger.info("Processing webhook retry", retry_number=retry_number)

            handler = self._handlers.get(event.type)
            if handler is None:
                logger.info("Unhandled webhook event type")
                return _outcome(WebhookStatus.IGNORED, "unhandled event type", event)

            outcome = await handler(event)
            logger.info(
                "Webhook processed",
                outcome=outcome.status.value,
                reason=outcome.reason,
                order_id=outcome.order_id,
            )
            return outcome

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    async def _handle_order_event(self, event: WebhookEvent) -> WebhookOutcome:
        raw_order = event.full_order()
        if raw_order is not None:
            return await self._apply_order(event, raw_order, client=None)

        # Summary-only payload, fetch the full snapshot
        order_id = event.order_id()
        async with self.client_factory() as client:
            raw_order = await client.retrieve_order(order_id)
            if raw_order is None:
                logger.warning("Order not found in POS", order_id=order_id)
                return _outcome(WebhookStatus.IGNORED, "order not found", event, order_id)
            return await self._apply_order(event, raw_order, client)

    async def _handle_payment_event(self, event: WebhookEvent) -> WebhookOutcome:
        payment = event.payload_object("payment")
        if payment is None:
            logger.warning("Payment event without payment object")
            return _outcome(WebhookStatus.REJECTED, "missing payment object", event)

        status = payment.get("status")
        if status != "COMPLETED":
            logger.info("Skipping payment that is not completed", payment_id=payment.get("id"), payment_status=status)
            return _outcome(WebhookStatus.IGNORED, "payment not completed", event)

        order_id = payment.get("order_id")
        if not order_id:
            logger.info("Completed payment without order", payment_id=payment.get("id"))
            return _outcome(WebhookStatus.IGNORED, "payment has no order", event)

        async with self.client_factory() as client:
            raw_order = await client.retrieve_order(order_id)
            if raw_order is None:
                logger.warning("Order not found in POS", order_id=order_id)
                return _outcome(WebhookStatus.IGNORED, "order not found", event, order_id)
            return await self._apply_order(event, raw_order, client)

    async def _handle_fulfillment_event(self, event: WebhookEvent) -> WebhookOutcome:
        order_id = event.order_id()
        async with session_scope(self.session_factory) as session:
            touched = await UpsertEngine(session).touch_order(order_id)

        if not touched:
            logger.info("Fulfillment update for unknown order", order_id=order_id)
            return _outcome(WebhookStatus.IGNORED, "order not in replica", event, order_id)
        return _outcome(WebhookStatus.APPLIED, "fulfillment updated", event, order_id)

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    async def _catalog_for(self, client: Optional[PosApiClient]) -> CatalogMapping:
        if not self.settings.webhook.resolve_catalog:
            return CatalogMapping.empty()
        if client is not None:
            return await build_catalog_mapping(client)
        async with self.client_factory() as fresh_client:
            return await build_catalog_mapping(fresh_client)

    async def _apply_order(
        self,
        event: WebhookEvent,
        raw_order: Dict[str, Any],
        client: Optional[PosApiClient],
    ) -> WebhookOutcome:
        try:
            record = normalize_order(
                raw_order,
                default_currency=self.settings.pos_api.default_currency,
                location_id=event.location_id,
            )
        except NORMALIZATION_ERRORS as e:
            logger.error("Order payload could not be normalized", order_id=raw_order.get("id"), error=str(e))
            return _outcome(WebhookStatus.REJECTED, "malformed order", event, raw_order.get("id"))

        catalog = await self._catalog_for(client)

        async with session_scope(self.session_factory) as session:
            result = await UpsertEngine(session, catalog).apply_order(record)

        if result == OrderOutcome.STALE:
            return _outcome(WebhookStatus.IGNORED, "stale order version", event, record.external_order_id)
        return _outcome(WebhookStatus.APPLIED, "order upserted", event, record.external_order_id)
