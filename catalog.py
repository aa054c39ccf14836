"""Product catalog storage and search."""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from database import PRODUCTS, parse_object_id, serialize_doc
from errors import InvalidRequest, NotFound
from schemas import Product

logger = logging.getLogger(__name__)


def create_product(db: Database, fields: Dict[str, Any], seller_id: Optional[str] = None) -> Dict[str, Any]:
    product = Product(**fields, seller_id=seller_id)
    res = db[PRODUCTS].insert_one(product.model_dump())
    created = db[PRODUCTS].find_one({"_id": res.inserted_id})
    logger.info("Product %s created by %s", res.inserted_id, seller_id)
    return serialize_doc(created)


def get_product(db: Database, product_id: str) -> Dict[str, Any]:
    product = db[PRODUCTS].find_one({"_id": parse_object_id(product_id, "product id")})
    if not product:
        raise NotFound("Product not found")
    return serialize_doc(product)


def list_products(db: Database, seller_id: Optional[str] = None) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if seller_id is not None:
        query["seller_id"] = seller_id
    return [serialize_doc(d) for d in db[PRODUCTS].find(query)]


def update_product(db: Database, product_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    obj_id = parse_object_id(product_id, "product id")
    update_dict = dict(fields)
    if not update_dict:
        raise InvalidRequest("No fields to update")
    update_dict["updated_at"] = datetime.now(timezone.utc)
    product = db[PRODUCTS].find_one_and_update(
        {"_id": obj_id},
        {"$set": update_dict},
        return_document=ReturnDocument.AFTER,
    )
    if not product:
        raise NotFound("Product not found")
    return serialize_doc(product)


def delete_product(db: Database, product_id: str) -> None:
    res = db[PRODUCTS].delete_one({"_id": parse_object_id(product_id, "product id")})
    if res.deleted_count == 0:
        raise NotFound("Product not found")
    logger.info("Product %s deleted", product_id)


def build_search_query(
    name: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    color: Optional[str] = None,
) -> Dict[str, Any]:
    """Translate search filters into a Mongo query; all filters are ANDed."""
    query: Dict[str, Any] = {}
    if name:
        query["name"] = {"$regex": re.escape(name), "$options": "i"}
    price_filter: Dict[str, Any] = {}
    if min_price is not None:
        price_filter["$gte"] = float(min_price)
    if max_price is not None:
        price_filter["$lte"] = float(max_price)
    if price_filter:
        query["price"] = price_filter
    if color:
        query["color"] = {"$regex": re.escape(color), "$options": "i"}
    return query


def search_products(
    db: Database,
    name: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    color: Optional[str] = None,
) -> List[Dict[str, Any]]:
    query = build_search_query(name, min_price, max_price, color)
    return [serialize_doc(d) for d in db[PRODUCTS].find(query)]


def count_products(db: Database) -> int:
    return db[PRODUCTS].count_documents({})
