"""
Order placement and lifecycle.

``OrderWorkflow`` owns the only code paths that move product stock:

- ``place_order`` checks and decrements stock and records the order in one
  unit of work, then notifies the buyer and the shop owner after commit.
- ``delete_order`` puts the reserved quantity back and removes the order,
  also in one unit of work.

Status updates and deletions are limited to the order's owner. Orders owned
by someone else are reported as not found.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from . import models
from .auth import Identity
from .config import Settings
from .errors import InsufficientStock, InvalidRequest, NotFound
from .notifier import Notifier
from .utils import round_amount

logger = logging.getLogger(__name__)

ALLOWED_STATUS_UPDATES = ("processed", "completed", "cancelled")


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def order_summary(order: models.Order, product_name: str) -> str:
    return (
        f"Order ID: {order.id}\n"
        f"Product: {product_name}\n"
        f"Quantity: {order.quantity}\n"
        f"Total price: ${order.total_price}\n"
        f"Status: {order.status}\n"
    )


class OrderWorkflow:
    def __init__(self, db: Session, notifier: Notifier, settings: Settings):
        self.db = db
        self.notifier = notifier
        self.settings = settings

    async def place_order(self, identity: Identity, product_id: Optional[int], quantity: Optional[int]) -> models.Order:
        if not _is_positive_int(product_id) or not _is_positive_int(quantity):
            raise InvalidRequest("Product ID and a positive quantity are required.")

        db = self.db
        try:
            # a token can outlive its account
            if db.get(models.User, identity.id) is None:
                logger.warning("Order attempt by deleted user %s (ID: %s)", identity.username, identity.id)
                raise NotFound("User not found.")
            product = db.get(models.Product, product_id, with_for_update=True)
            if product is None:
                logger.warning("Order attempt for non-existent product ID: %s by user %s", product_id, identity.username)
                raise NotFound("Product not found")
            if product.stock < quantity:
                logger.warning(
                    "Insufficient stock for product %s (ID: %s). Requested: %s, Available: %s",
                    product.name, product_id, quantity, product.stock,
                )
                raise InsufficientStock(product.name, quantity, product.stock)

            product.stock -= quantity
            order = models.Order(
                user_id=identity.id,
                product_id=product.id,
                quantity=quantity,
                status=models.STATUS_RESERVED,
                total_price=round_amount(Decimal(product.price) * quantity),
            )
            db.add(order)
            db.commit()
        except Exception:
            db.rollback()
            logger.info("Order transaction for user %s rolled back", identity.username)
            raise

        db.refresh(order)
        product_name = product.name
        logger.info("Order created successfully: %s by user %s", order.id, identity.username)

        await self._notify(identity, order, product_name)
        return order

    async def _notify(self, identity: Identity, order: models.Order, product_name: str) -> None:
        buyer = self.db.get(models.User, identity.id)
        buyer_email = buyer.email if buyer is not None else None
        summary = order_summary(order, product_name)

        if buyer_email:
            await self._send_quietly(
                buyer_email,
                "Order Confirmation",
                f"Your order for {product_name} has been reserved.\n\n{summary}",
                order.id,
            )
        if self.settings.owner_email:
            await self._send_quietly(
                self.settings.owner_email,
                "New Order Placed",
                f"New order by {identity.username} ({buyer_email or 'no email'}).\n\n{summary}",
                order.id,
            )

    async def _send_quietly(self, to: str, subject: str, body: str, order_id: int) -> None:
        try:
            await self.notifier.send(to, subject, body)
        except Exception:
            # the order is already committed; mail is best-effort
            logger.exception("Failed to send '%s' email to %s for order %s", subject, to, order_id)

    def list_orders(self, identity: Identity) -> List[models.Order]:
        query = (
            select(models.Order)
            .options(selectinload(models.Order.user), selectinload(models.Order.product))
            .order_by(models.Order.id)
        )
        if not identity.is_admin:
            query = query.where(models.Order.user_id == identity.id)
        return list(self.db.execute(query).scalars().all())

    def _owned_order(self, identity: Identity, order_id: int) -> models.Order:
        order = self.db.execute(
            select(models.Order).where(models.Order.id == order_id, models.Order.user_id == identity.id)
        ).scalar_one_or_none()
        if order is None:
            raise NotFound("Order not found")
        return order

    def update_order_status(self, identity: Identity, order_id: int, status: str) -> models.Order:
        order = self._owned_order(identity, order_id)
        if status not in ALLOWED_STATUS_UPDATES:
            raise InvalidRequest(f"Invalid status. Allowed values: {', '.join(ALLOWED_STATUS_UPDATES)}.")
        order.status = status
        self.db.commit()
        self.db.refresh(order)
        logger.info("Order %s status set to %s by user %s", order.id, status, identity.username)
        return order

    def delete_order(self, identity: Identity, order_id: int) -> None:
        db = self.db
        try:
            order = self._owned_order(identity, order_id)
            quantity = order.quantity
            product = db.get(models.Product, order.product_id, with_for_update=True)
            if product is not None:
                product.stock += quantity
            db.delete(order)
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info("Order %s deleted by user %s, %s unit(s) returned to stock", order_id, identity.username, quantity)
