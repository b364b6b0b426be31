"""Order lifecycle — drives orders through checkout and what follows it.

Every public operation is one database transaction. The order row is
locked first; the named before-steps for the target state run, then the
state change is recorded, then the named after-steps. Any exception rolls
the whole transaction back and leaves the stored order as it was.

Step pipelines:
    before address   ensure_line_items_present
    before delivery  ensure_line_items_present, create_proposed_shipments,
                     apply_adjusters, update_totals
    before complete  ensure_line_items_present, process_payments
    after complete   finalize
    after canceled   after_cancel
    after resumed    after_resume
    on approve       approve

Order mail is queued on the session and handed to the mailer only after
the transaction commits. A failed send is logged and never undoes the
committed work.
"""

from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal

import structlog
from sqlalchemy.event import listen
from sqlalchemy.orm import Session, sessionmaker

from inventory.stock.ledger import StockLedger
from notifications.channel import get_mailer
from notifications.channel.mail_port import MailTemplate, OrderMailPort
from ordering.order.checkout import CheckoutEvent, resolve
from ordering.order.order import Order, OrderState, Shipment
from ordering.order.shipping import ShipmentPlanner, SingleShipmentPlanner
from ordering.order.updater import OrderUpdater, UpdateHook
from payments.gateway.port import PaymentGateway
from payments.payment.payment import Payment, PaymentState
from payments.payment.processing import PaymentProcessor
from shared.config import Settings, get_settings
from shared.db import lock_row, utcnow
from shared.errors import ObjectNotFoundError, StateError, StorefrontError, ValidationError

logger = structlog.get_logger(__name__)

Adjuster = Callable[[Order], None]


@dataclass(frozen=True)
class Step:
    name: str
    run: Callable[[Session, Order], None]


class OrderLifecycleManager:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        gateway: PaymentGateway | None = None,
        mailer: OrderMailPort | None = None,
        ledger: StockLedger | None = None,
        planner: ShipmentPlanner | None = None,
        hooks: Iterable[UpdateHook] = (),
        adjusters: Iterable[Adjuster] = (),
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.mailer = mailer or get_mailer()
        self.ledger = ledger or StockLedger(settings=self.settings)
        self.planner = planner or SingleShipmentPlanner(self.settings)
        self.processor = PaymentProcessor(gateway, self.settings)
        self.updater = OrderUpdater(hooks)
        self.adjusters = list(adjusters)

        ensure_line_items = Step("ensure_line_items_present", self._ensure_line_items_present)
        self.before_steps: dict[OrderState, list[Step]] = {
            OrderState.ADDRESS: [ensure_line_items],
            OrderState.DELIVERY: [
                ensure_line_items,
                Step("create_proposed_shipments", self._create_proposed_shipments),
                Step("apply_adjusters", self._apply_adjusters),
                Step("update_totals", self._update_totals),
            ],
            OrderState.COMPLETE: [
                ensure_line_items,
                Step("process_payments", self._process_payments),
            ],
        }
        self.after_steps: dict[OrderState, list[Step]] = {
            OrderState.COMPLETE: [Step("finalize", self._finalize)],
            OrderState.CANCELED: [Step("after_cancel", self._after_cancel)],
            OrderState.RESUMED: [Step("after_resume", self._after_resume)],
        }
        self.event_steps: dict[CheckoutEvent, list[Step]] = {
            CheckoutEvent.APPROVE: [Step("approve", self._approve)],
        }

    # -------------------------------------------------------------------
    # Orders and payments
    # -------------------------------------------------------------------
    def create(self, email: str | None = None, user_id: int | None = None) -> Order:
        with self._transaction() as session:
            order = Order(email=email, user_id=user_id, currency=self.settings.currency)
            session.add(order)
            session.flush()
            logger.info("Order created", order_id=order.id, number=order.number)
        return order

    def add_payment(
        self,
        order_id: int,
        amount: Decimal | None = None,
        payment_method_id: int | None = None,
        source_token: str | None = None,
    ) -> Payment:
        """Attach an unprocessed payment; it defaults to the outstanding balance."""
        with self._transaction() as session:
            order = self._lock_order(session, order_id)
            payment = Payment(
                amount=order.outstanding_balance if amount is None else amount,
                payment_method_id=payment_method_id,
                source_token=source_token,
            )
            order.payments.append(payment)
            session.flush()
        return payment

    def capture_payment(self, order_id: int, payment_id: int) -> Decimal:
        """Capture an authorized payment and return the order's new outstanding balance."""
        with self._transaction() as session:
            order = self._lock_order(session, order_id)
            payment = self._payment_of(order, payment_id)

            self.processor.capture(payment)
            self.updater.update(order)
            logger.info("Payment captured", order_id=order.id, payment_id=payment.id)
            return order.outstanding_balance

    def refund_payment(self, order_id: int, payment_id: int, amount=None, reason: str | None = None) -> Decimal:
        """Refund a completed payment and return the order's new outstanding balance."""
        with self._transaction() as session:
            order = self._lock_order(session, order_id)
            payment = self._payment_of(order, payment_id)

            self.processor.refund(payment, amount, reason)
            self.updater.update(order)
            return order.outstanding_balance

    # -------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------
    def transition(self, order_id: int, event: CheckoutEvent | str) -> OrderState:
        try:
            event = CheckoutEvent(event)
        except ValueError:
            raise ValidationError({"event": [f"{event!r} is not a valid checkout event"]}) from None
        with self._transaction() as session:
            order = self._lock_order(session, order_id)
            return self._fire(session, order, event)

    def next(self, order_id: int) -> OrderState:
        return self.transition(order_id, CheckoutEvent.NEXT)

    def resume(self, order_id: int) -> OrderState:
        return self.transition(order_id, CheckoutEvent.RESUME)

    def canceled_by(self, order_id: int, user_id: int) -> OrderState:
        """Cancel the order on behalf of ``user_id``; state and stamp commit together."""
        with self._transaction() as session:
            order = self._lock_order(session, order_id)
            state = self._fire(session, order, CheckoutEvent.CANCEL)
            order.canceler_id = user_id
            order.canceled_at = utcnow()
            return state

    def approved_by(self, order_id: int, user_id: int) -> OrderState:
        """Approve the order on behalf of ``user_id``; state and stamp commit together."""
        with self._transaction() as session:
            order = self._lock_order(session, order_id)
            state = self._fire(session, order, CheckoutEvent.APPROVE)
            order.approver_id = user_id
            order.approved_at = utcnow()
            return state

    def finalize(self, order_id: int) -> None:
        with self._transaction() as session:
            order = self._lock_order(session, order_id)
            if not order.completed:
                raise StateError({"state": [f"Cannot finalize an order in {order.state} state"]})
            self._finalize(session, order)

    def empty(self, order_id: int) -> None:
        """Drop everything the customer put into the order and restart checkout."""
        with self._transaction() as session:
            order = self._lock_order(session, order_id)
            if order.completed:
                raise StateError({"order": ["Cannot empty a completed order"]})

            order.line_items.clear()
            order.adjustments.clear()
            order.shipments.clear()
            order.state_changes.clear()
            order.order_promotions.clear()
            session.flush()

            self.updater.update_totals(order)
            order.state = OrderState.CART.value
            logger.info("Order emptied", order_id=order.id)

    def update(self, order_id: int) -> None:
        with self._transaction() as session:
            order = self._lock_order(session, order_id)
            self.updater.update(order)

    def ship_shipment(self, order_id: int, shipment_id: int, tracking: str | None = None) -> None:
        with self._transaction() as session:
            order = self._lock_order(session, order_id)
            shipment = next((s for s in order.shipments if s.id == shipment_id), None)
            if shipment is None:
                raise ObjectNotFoundError({"shipment_id": [f"Shipment {shipment_id} does not belong to this order"]})
            if not order.can_ship:
                raise StateError({"state": [f"Cannot ship an order in {order.state} state"]})

            shipment.tracking = tracking
            shipment.ship(order)
            self.updater.update_shipment_state(order)
            logger.info("Shipment shipped", order_id=order.id, shipment=shipment.number)

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        with self.session_factory() as session:
            session.info["outbox"] = []
            listen(session, "after_commit", self._deliver_outbox)
            with session.begin():
                yield session

    def _lock_order(self, session: Session, order_id: int) -> Order:
        return lock_row(session, Order, order_id)

    def _payment_of(self, order: Order, payment_id: int) -> Payment:
        payment = next((p for p in order.payments if p.id == payment_id), None)
        if payment is None:
            raise ObjectNotFoundError({"payment_id": [f"Payment {payment_id} does not belong to this order"]})
        return payment

    def _fire(self, session: Session, order: Order, event: CheckoutEvent) -> OrderState:
        transition = resolve(order, event, self.settings)
        previous = OrderState(order.state)
        target = transition.target_for(order)

        try:
            if target is not previous:
                self._run_steps(session, order, self.before_steps.get(target, ()))
                order.state = target.value
                order.record_state_change("order", previous.value, target.value)
                self._run_steps(session, order, self.after_steps.get(target, ()))
            self._run_steps(session, order, self.event_steps.get(event, ()))
            session.flush()
        except StorefrontError as exc:
            logger.warning(
                "Order transition failed",
                order_id=order.id,
                checkout_event=event.value,
                state=previous.value,
                error=str(exc),
            )
            raise

        logger.info(
            "Order transitioned",
            order_id=order.id,
            number=order.number,
            checkout_event=event.value,
            previous=previous.value,
            state=target.value,
        )
        return target

    def _run_steps(self, session: Session, order: Order, steps: Iterable[Step]) -> None:
        for step in steps:
            logger.debug("Running order step", order_id=order.id, step=step.name)
            step.run(session, order)

    # Before steps

    def _ensure_line_items_present(self, session: Session, order: Order) -> None:
        if not order.line_items:
            raise StateError({"line_items": ["There are no items for this order"]})

    def _create_proposed_shipments(self, session: Session, order: Order) -> None:
        order.shipments.clear()
        session.flush()

        shipments = self.planner.plan(session, order)
        if not shipments:
            raise StateError({"shipments": ["No shipments could be planned for this order"]})
        order.shipments.extend(shipments)

    def _apply_adjusters(self, session: Session, order: Order) -> None:
        for adjuster in self.adjusters:
            adjuster(order)

    def _update_totals(self, session: Session, order: Order) -> None:
        self.updater.update_totals(order)

    def _process_payments(self, session: Session, order: Order) -> None:
        """Process unprocessed payments until the order total is covered."""
        if not order.payment_required() or order.payment_total >= order.total:
            return

        unprocessed = [p for p in order.payments if p.state == PaymentState.CHECKOUT.value]
        if not unprocessed:
            raise StateError({"payments": ["No payment found"]})

        for payment in unprocessed:
            if order.payment_total >= order.total:
                break
            self.processor.process(payment)
            if payment.completed:
                order.payment_total += payment.amount

    # After steps

    def _finalize(self, session: Session, order: Order) -> None:
        for adjustment in order.adjustments:
            adjustment.close()

        self.updater.update_payment_state(order)
        for shipment in order.shipments:
            shipment.update(order)
            self._finalize_shipment(session, shipment)

        self.updater.update_shipment_state(order)
        session.flush()
        self.updater.run_hooks(order)

        order.completed_at = utcnow()
        if not order.confirmation_delivered:
            order.confirmation_delivered = True
            self._queue_mail(session, order, MailTemplate.ORDER_CONFIRMATION)

        self._consider_risk(order)
        logger.info(
            "Order finalized",
            order_id=order.id,
            payment_state=order.payment_state,
            shipment_state=order.shipment_state,
        )

    def _after_cancel(self, session: Session, order: Order) -> None:
        for shipment in order.shipments:
            if not shipment.canceled:
                shipment.cancel(order)
                self._restock_shipment(session, shipment)

        for payment in order.payments:
            if payment.completed:
                self.processor.void(payment)

        self._queue_mail(session, order, MailTemplate.ORDER_CANCELLATION)
        self.updater.update(order)

    def _after_resume(self, session: Session, order: Order) -> None:
        for shipment in order.shipments:
            if shipment.canceled:
                shipment.resume(order)
                self._finalize_shipment(session, shipment)

        self.updater.update(order)
        self._consider_risk(order)

    def _approve(self, session: Session, order: Order) -> None:
        order.considered_risky = False

    # Stock

    def _finalize_shipment(self, session: Session, shipment: Shipment) -> None:
        """Take the shipment's units out of stock at its location."""
        if shipment.finalized:
            return

        for unit in shipment.inventory_units:
            if unit.backordered and unit.stock_item_id is None:
                unit.stock_item_id = self.ledger.stock_item_for(session, shipment.stock_location_id, unit.variant_id).id

        for variant_id, states in shipment.manifest().items():
            self.ledger.unstock(
                session,
                shipment.stock_location_id,
                variant_id,
                sum(states.values()),
                originator=f"shipment:{shipment.number}",
            )
        shipment.finalized_at = utcnow()

    def _restock_shipment(self, session: Session, shipment: Shipment) -> None:
        """Put a canceled shipment's units back; backordered units leave the queue."""
        if not shipment.finalized:
            return

        for unit in shipment.inventory_units:
            if unit.backordered:
                unit.stock_item_id = None
        session.flush()

        for variant_id, states in shipment.manifest().items():
            on_hand = states.get("on_hand", 0)
            backordered = states.get("backordered", 0)
            if on_hand:
                self.ledger.restock(
                    session,
                    shipment.stock_location_id,
                    variant_id,
                    on_hand,
                    originator=f"shipment:{shipment.number}",
                )
            if backordered:
                self.ledger.restock_backordered(session, shipment.stock_location_id, variant_id, backordered)
        shipment.finalized_at = None

    # Risk and mail

    def _consider_risk(self, order: Order) -> None:
        if order.is_risky() and not order.approved:
            order.considered_risky = True
            logger.warning("Order considered risky", order_id=order.id)

    def _queue_mail(self, session: Session, order: Order, template: MailTemplate) -> None:
        session.info["outbox"].append((order.id, template))

    def _deliver_outbox(self, session: Session) -> None:
        outbox = session.info.get("outbox", [])
        while outbox:
            order_id, template = outbox.pop(0)
            try:
                self.mailer.send(order_id, template)
            except Exception:
                logger.exception("Order mail delivery failed", order_id=order_id, template=template.value)
            else:
                logger.info("Order mail sent", order_id=order_id, template=template.value)
