"""
Order placement, cancellation and status management.

Stock is reserved line by line with a conditional decrement
(``quantity >= requested``) applied as a single document update, so two
buyers can never both take the last units. If any line fails, the units
already reserved for earlier lines are put back before the error surfaces,
and no order is written. A cancellation that fails while restoring stock
is taken back so the order stays pending and can be cancelled again.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from accounts import accounts_by_id
from database import ORDERS, PRODUCTS, parse_object_id, serialize_doc
from errors import InsufficientStock, InvalidRequest, InvalidTransition, NotFound
from schemas import Order, OrderItem, OrderStatus

logger = logging.getLogger(__name__)


def _parse_lines(lines: Sequence[Dict[str, Any]]) -> List[Tuple[ObjectId, int]]:
    parsed = []
    for line in lines:
        quantity = line.get("quantity")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise InvalidRequest("Quantity must be a positive integer", error=str(quantity))
        parsed.append((parse_object_id(line.get("product_id"), "product id"), quantity))
    return parsed


def reserve_stock(db: Database, product_id: ObjectId, quantity: int) -> Optional[Dict[str, Any]]:
    """Decrement stock iff enough is on hand; returns the product as it was before."""
    return db[PRODUCTS].find_one_and_update(
        {"_id": product_id, "quantity": {"$gte": quantity}},
        {"$inc": {"quantity": -quantity}},
        return_document=ReturnDocument.BEFORE,
    )


def release_stock(db: Database, product_id: ObjectId, quantity: int) -> bool:
    """Put units back on a product. False when the product no longer exists."""
    res = db[PRODUCTS].update_one({"_id": product_id}, {"$inc": {"quantity": quantity}})
    return res.matched_count > 0


def _release_all(db: Database, lines: Sequence[Tuple[ObjectId, int]]) -> None:
    """Release every line, carrying on past lines whose release fails."""
    for product_id, quantity in lines:
        try:
            release_stock(db, product_id, quantity)
        except PyMongoError:
            logger.exception("Could not release %d unit(s) of product %s", quantity, product_id)


def place_order(
    db: Database,
    account: Dict[str, Any],
    lines: Sequence[Dict[str, Any]],
    shipping_address: str,
) -> Dict[str, Any]:
    if not lines:
        raise InvalidRequest("No products to buy")
    if not shipping_address or not shipping_address.strip():
        raise InvalidRequest("Shipping address is required")
    parsed = _parse_lines(lines)

    reserved: List[Tuple[ObjectId, int]] = []
    items: List[OrderItem] = []
    total_amount = 0.0
    try:
        for product_id, quantity in parsed:
            product = reserve_stock(db, product_id, quantity)
            if product is None:
                existing = db[PRODUCTS].find_one({"_id": product_id}, {"name": 1})
                if not existing:
                    raise NotFound(f"Product not found: {product_id}")
                raise InsufficientStock(existing.get("name", str(product_id)), quantity)
            reserved.append((product_id, quantity))

            price = float(product.get("price", 0))
            items.append(
                OrderItem(
                    product_id=str(product_id),
                    name=product.get("name", ""),
                    price=price,
                    quantity=quantity,
                )
            )
            total_amount += price * quantity

        order = Order(
            user_id=account["id"],
            items=items,
            total_amount=total_amount,
            shipping_address=shipping_address.strip(),
        )
        res = db[ORDERS].insert_one(order.model_dump())
    except Exception:
        if reserved:
            logger.warning("Order for %s failed, releasing %d reserved line(s)", account["id"], len(reserved))
        _release_all(db, list(reversed(reserved)))
        raise

    logger.info("Order %s placed by %s total=%.2f", res.inserted_id, account["id"], order.total_amount)
    return serialize_doc(db[ORDERS].find_one({"_id": res.inserted_id}))


def cancel_order(db: Database, account: Dict[str, Any], order_id: str) -> Dict[str, Any]:
    """Cancel a pending order owned by ``account`` and restore its stock."""
    oid = parse_object_id(order_id, "order id")
    order = db[ORDERS].find_one({"_id": oid, "user_id": account["id"]})
    if not order:
        raise NotFound("Order not found")
    if order.get("status") != OrderStatus.pending.value:
        raise InvalidTransition("Cannot cancel order. Order already processed.")

    # The status flip is conditional so concurrent cancels restore stock once.
    order = db[ORDERS].find_one_and_update(
        {"_id": oid, "status": OrderStatus.pending.value},
        {"$set": {"status": OrderStatus.cancelled.value, "updated_at": datetime.now(timezone.utc)}},
        return_document=ReturnDocument.AFTER,
    )
    if not order:
        raise InvalidTransition("Cannot cancel order. Order already processed.")

    restored: List[Tuple[ObjectId, int]] = []
    try:
        for item in order.get("items", []):
            product_id = ObjectId(item["product_id"])
            if release_stock(db, product_id, item["quantity"]):
                restored.append((product_id, item["quantity"]))
            else:
                logger.warning(
                    "Order %s: product %s no longer exists, %d unit(s) not restored",
                    order_id, item["product_id"], item["quantity"],
                )
    except Exception:
        _reopen(db, oid, restored)
        raise
    logger.info("Order %s cancelled by %s", order_id, account["id"])
    return serialize_doc(order)


def _reopen(db: Database, oid: ObjectId, restored: Sequence[Tuple[ObjectId, int]]) -> None:
    """Undo a half-finished cancellation so it can be retried."""
    logger.error("Cancelling order %s failed, taking back %d restored line(s)", oid, len(restored))
    for product_id, quantity in restored:
        try:
            if reserve_stock(db, product_id, quantity) is None:
                logger.error("Order %s: %d unit(s) of product %s already resold", oid, quantity, product_id)
        except PyMongoError:
            logger.exception("Order %s: could not take back product %s", oid, product_id)
    try:
        db[ORDERS].update_one(
            {"_id": oid, "status": OrderStatus.cancelled.value},
            {"$set": {"status": OrderStatus.pending.value, "updated_at": datetime.now(timezone.utc)}},
        )
    except PyMongoError:
        logger.exception("Order %s left cancelled with stock partially restored", oid)


def set_order_status(db: Database, order_id: str, status: str) -> Dict[str, Any]:
    """Overwrite an order's status; any enumerated status is accepted."""
    if status not in {s.value for s in OrderStatus}:
        raise InvalidRequest("Invalid status")
    order = db[ORDERS].find_one_and_update(
        {"_id": parse_object_id(order_id, "order id")},
        {"$set": {"status": status, "updated_at": datetime.now(timezone.utc)}},
        return_document=ReturnDocument.AFTER,
    )
    if not order:
        raise NotFound("Order not found")
    logger.info("Order %s status set to %s", order_id, status)
    return serialize_doc(order)


def orders_for(db: Database, account: Dict[str, Any]) -> List[Dict[str, Any]]:
    cursor = db[ORDERS].find({"user_id": account["id"]}).sort("created_at", -1)
    return [serialize_doc(o) for o in cursor]


def order_for(db: Database, account: Dict[str, Any], order_id: str) -> Dict[str, Any]:
    order = db[ORDERS].find_one({"_id": parse_object_id(order_id, "order id"), "user_id": account["id"]})
    if not order:
        raise NotFound("Order not found")
    return serialize_doc(order)


def _with_owner(db: Database, orders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    owners = accounts_by_id(db, [o["user_id"] for o in orders if ObjectId.is_valid(o.get("user_id", ""))])
    for o in orders:
        o["user"] = owners.get(o.get("user_id"))
    return orders


def all_orders(db: Database) -> List[Dict[str, Any]]:
    orders = [serialize_doc(o) for o in db[ORDERS].find().sort("created_at", -1)]
    return _with_owner(db, orders)


def get_order(db: Database, order_id: str) -> Dict[str, Any]:
    order = db[ORDERS].find_one({"_id": parse_object_id(order_id, "order id")})
    if not order:
        raise NotFound("Order not found")
    return _with_owner(db, [serialize_doc(order)])[0]
