import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import Field
from pymongo import ReturnDocument
from pymongo.database import Database

from ..context import get_db
from ..database import create_document, parse_object_id, serialize_doc, utcnow
from ..schemas import Cart as CartSchema, CartItem
from ..security import get_current_user
from . import RequestModel
from .orders import load_order, place_order, populate_order, restore_stock

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cart", tags=["cart"])


class AddCartBody(RequestModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class UpdateCartBody(RequestModel):
    quantity: int = Field(..., ge=1)


def _populate(db: Database, cart: dict) -> dict:
    out = serialize_doc(cart)
    ids = [parse_object_id(i["product_id"], "product") for i in cart.get("items", [])]
    products = {str(p["_id"]): serialize_doc(p) for p in db["product"].find({"_id": {"$in": ids}})}
    out["items"] = [
        {"product_id": i["product_id"], "quantity": i["quantity"], "product": products.get(i["product_id"])}
        for i in cart.get("items", [])
    ]
    return out


def _load_cart(db: Database, user: dict) -> dict:
    cart = db["cart"].find_one({"user_id": user["id"]})
    if not cart:
        raise HTTPException(status_code=404, detail="Cart not found")
    return cart


def _save_items(db: Database, cart: dict, items: list) -> dict:
    return db["cart"].find_one_and_update(
        {"_id": cart["_id"]},
        {"$set": {"items": items, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )


@router.post("/add")
def add_to_cart(body: AddCartBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    if not db["product"].find_one({"_id": parse_object_id(body.product_id, "product")}, {"_id": 1}):
        raise HTTPException(status_code=404, detail="Product not found")

    cart = db["cart"].find_one({"user_id": user["id"]})
    if not cart:
        cart_id = create_document(db, "cart", CartSchema(user_id=user["id"]))
        cart = db["cart"].find_one({"_id": parse_object_id(cart_id, "cart")})

    items = cart.get("items", [])
    for item in items:
        if item["product_id"] == body.product_id:
            item["quantity"] += body.quantity
            break
    else:
        items.append(CartItem(product_id=body.product_id, quantity=body.quantity).model_dump())
    cart = _save_items(db, cart, items)
    return {"message": "Item added to cart", "cart": _populate(db, cart)}


@router.get("")
def get_cart(user=Depends(get_current_user), db: Database = Depends(get_db)):
    cart = db["cart"].find_one({"user_id": user["id"]})
    if not cart:
        return {"cart": {"items": []}}
    return {"cart": _populate(db, cart)}


@router.put("/update/{product_id}")
def update_cart_item(product_id: str, body: UpdateCartBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    cart = _load_cart(db, user)
    items = cart.get("items", [])
    item = next((i for i in items if i["product_id"] == product_id), None)
    if item is None:
        raise HTTPException(status_code=404, detail="Item not found in cart")
    item["quantity"] = body.quantity
    cart = _save_items(db, cart, items)
    return {"message": "Cart updated", "cart": _populate(db, cart)}


@router.delete("/remove/{product_id}")
def remove_cart_item(product_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    cart = _load_cart(db, user)
    items = [i for i in cart.get("items", []) if i["product_id"] != product_id]
    cart = _save_items(db, cart, items)
    return {"message": "Item removed", "cart": _populate(db, cart)}


@router.delete("/clear")
def clear_cart(user=Depends(get_current_user), db: Database = Depends(get_db)):
    db["cart"].delete_one({"user_id": user["id"]})
    return {"message": "Cart cleared"}


def _discard_order(db: Database, order_id: str):
    order = load_order(db, order_id)
    restore_stock(db, order)
    db["order"].delete_one({"_id": order["_id"]})


@router.post("/checkout", status_code=201)
def checkout(user=Depends(get_current_user), db: Database = Depends(get_db)):
    """Place one order per cart line; any failure discards the orders already placed."""
    cart = db["cart"].find_one({"user_id": user["id"]})
    if not cart or not cart.get("items"):
        raise HTTPException(status_code=400, detail="Cart is empty")

    placed = []
    try:
        for item in cart["items"]:
            placed.append(place_order(db, user, item["product_id"], item["quantity"]))
    except Exception:
        for order_id in placed:
            _discard_order(db, order_id)
        logger.warning("Checkout for user %s rolled back after %s orders", user["id"], len(placed))
        raise

    db["cart"].delete_one({"_id": cart["_id"]})
    orders = [populate_order(db, load_order(db, oid)) for oid in placed]
    return {"message": "Checkout completed", "orders": orders}
