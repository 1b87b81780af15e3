import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import Field
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from ..context import AppContext, get_context, get_db
from ..database import create_document, parse_object_id, serialize_doc, utcnow
from ..schemas import ORDER_STATUSES, Order as OrderSchema
from ..security import get_current_user, require_admin
from . import RequestModel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])

OPEN_STATUSES = ("pending", "payment_sent", "paid")
MAX_PROOF_BYTES = 5 * 1024 * 1024


# ----------------------- Models -----------------------
class OrderCreateBody(RequestModel):
    seller: Optional[str] = None
    product: Optional[str] = None
    quantity: Optional[float] = Field(None, allow_inf_nan=False)


class StatusBody(RequestModel):
    status: Optional[str] = None


class DeliveryBody(RequestModel):
    tracking_number: Optional[str] = None
    courier: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


# ----------------------- Helpers -----------------------
def _user_summary(doc):
    if not doc:
        return None
    return {"id": str(doc["_id"]), "name": doc.get("name"), "email": doc.get("email")}


def populate_order(db: Database, order: dict) -> dict:
    out = serialize_doc(order)
    ids = [parse_object_id(order["buyer_id"], "buyer"), parse_object_id(order["seller_id"], "seller")]
    users = {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": ids}}, {"name": 1, "email": 1})}
    out["buyer"] = _user_summary(users.get(order["buyer_id"]))
    out["seller"] = _user_summary(users.get(order["seller_id"]))
    product = db["product"].find_one({"_id": parse_object_id(order["product_id"], "product")}, {"name": 1, "price": 1, "images": 1})
    out["product"] = serialize_doc(product)
    return out


def load_order(db: Database, order_id: str) -> dict:
    order = db["order"].find_one({"_id": parse_object_id(order_id, "order")})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def require_party(order: dict, user: dict, allowed=("buyer", "seller", "admin")):
    parties = set()
    if order["buyer_id"] == user["id"]:
        parties.add("buyer")
    if order["seller_id"] == user["id"]:
        parties.add("seller")
    if user.get("role") == "admin":
        parties.add("admin")
    if not parties.intersection(allowed):
        raise HTTPException(status_code=403, detail="You are not allowed to access this order")


def _positive_quantity(value) -> int:
    if value is None or value <= 0 or value != int(value):
        raise HTTPException(status_code=400, detail="Quantity must be a positive whole number")
    return int(value)


def restore_stock(db: Database, order: dict):
    db["product"].update_one(
        {"_id": parse_object_id(order["product_id"], "product")},
        {"$inc": {"stock": order["quantity"]}, "$set": {"updated_at": utcnow()}},
    )
    logger.info("Restored %s units of product %s from order %s", order["quantity"], order["product_id"], order["_id"])


def place_order(db: Database, buyer: dict, product_id: str, quantity: int, seller_id: Optional[str] = None) -> str:
    """Reserve stock with one conditional update, then record the order."""
    product = db["product"].find_one({"_id": parse_object_id(product_id, "product")})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    if seller_id is not None and seller_id != product["seller_id"]:
        raise HTTPException(status_code=400, detail="Seller does not match the product")
    if product["seller_id"] == buyer["id"]:
        raise HTTPException(status_code=400, detail="You cannot order your own product")

    reserved = db["product"].find_one_and_update(
        {"_id": product["_id"], "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if reserved is None:
        raise HTTPException(status_code=400, detail="Requested quantity exceeds stock")

    order = OrderSchema(
        buyer_id=buyer["id"],
        seller_id=product["seller_id"],
        product_id=str(product["_id"]),
        quantity=quantity,
        total_amount=round(reserved["price"] * quantity, 2),
    )
    try:
        order_id = create_document(db, "order", order)
    except PyMongoError:
        db["product"].update_one({"_id": product["_id"]}, {"$inc": {"stock": quantity}})
        raise
    logger.info("Order %s created: %s x %s for buyer %s", order_id, quantity, product_id, buyer["id"])
    return order_id


def cancel(db: Database, order: dict) -> dict:
    if order["status"] == "cancelled":
        raise HTTPException(status_code=400, detail="Order is already cancelled")
    if order["status"] in ("shipped", "completed"):
        raise HTTPException(status_code=400, detail="Shipped or completed orders cannot be cancelled")
    updated = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": {"$ne": "cancelled"}},
        {"$set": {"status": "cancelled", "delivery_status": "pending", "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=400, detail="Order is already cancelled")
    restore_stock(db, order)
    logger.info("Order %s cancelled", order["_id"])
    return updated


def _record_completion(db: Database, order: dict):
    # an order may re-enter completed; the flag makes the counters count it once
    first = db["order"].find_one_and_update(
        {"_id": order["_id"], "completion_recorded": {"$ne": True}},
        {"$set": {"completion_recorded": True}},
    )
    if first is None:
        return
    db["user"].update_one({"_id": parse_object_id(order["buyer_id"], "buyer")}, {"$inc": {"total_purchases": 1}})
    db["user"].update_one({"_id": parse_object_id(order["seller_id"], "seller")}, {"$inc": {"total_sales": 1}})


def _apply(db: Database, order: dict, update: dict) -> dict:
    update["updated_at"] = utcnow()
    updated = db["order"].find_one_and_update({"_id": order["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER)
    if updated["status"] == "completed":
        _record_completion(db, updated)
    return updated


# ----------------------- Routes -----------------------
@router.post("", status_code=201)
def create_order(body: OrderCreateBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    if not body.seller or not body.product or body.quantity is None:
        raise HTTPException(status_code=400, detail="Seller, product, and quantity are required")
    quantity = _positive_quantity(body.quantity)
    order_id = place_order(db, user, body.product, quantity, seller_id=body.seller)
    return {"message": "Order created successfully", "order": populate_order(db, load_order(db, order_id))}


@router.get("")
def list_orders(status: Optional[str] = None, user=Depends(get_current_user), db: Database = Depends(get_db)):
    filt = {}
    if user.get("role") != "admin":
        filt["$or"] = [{"buyer_id": user["id"]}, {"seller_id": user["id"]}]
    if status:
        filt["status"] = status
    orders = db["order"].find(filt).sort("created_at", -1)
    return {"orders": [populate_order(db, o) for o in orders]}


def _orders_for(db: Database, user: dict, field: str, party_id: str):
    parse_object_id(party_id, field.split("_")[0])
    if party_id != user["id"] and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="You can only view your own orders")
    return [populate_order(db, o) for o in db["order"].find({field: party_id}).sort("created_at", -1)]


@router.get("/buyer/{buyer_id}")
def orders_by_buyer(buyer_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    orders = _orders_for(db, user, "buyer_id", buyer_id)
    if not orders:
        raise HTTPException(status_code=404, detail="No orders found for this buyer")
    return {"orders": orders}


@router.get("/seller/{seller_id}")
def orders_by_seller(seller_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    orders = _orders_for(db, user, "seller_id", seller_id)
    if not orders:
        raise HTTPException(status_code=404, detail="No orders found for this seller")
    return {"orders": orders}


@router.get("/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    order = load_order(db, order_id)
    require_party(order, user)
    return {"order": populate_order(db, order)}


@router.put("/{order_id}/status")
def update_order_status(order_id: str, body: StatusBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    if body.status not in ORDER_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid order status")
    order = load_order(db, order_id)
    if body.status == "cancelled":
        require_party(order, user)
        updated = cancel(db, order)
    else:
        # buyers may only cancel
        require_party(order, user, allowed=("seller", "admin"))
        if order["status"] == "cancelled":
            raise HTTPException(status_code=400, detail="Cancelled orders cannot change status")
        info = order.get("delivery_info") or {}
        update = {"status": body.status}
        if body.status == "shipped":
            update["delivery_status"] = "shipped"
            if not info.get("shipped_at"):
                update["delivery_info.shipped_at"] = utcnow()
        elif body.status == "completed":
            update["delivery_status"] = "delivered"
            if not info.get("delivered_at"):
                update["delivery_info.delivered_at"] = utcnow()
        updated = _apply(db, order, update)
    return {"message": "Order status updated", "order": populate_order(db, updated)}


@router.put("/{order_id}/confirm-payment")
def confirm_payment(order_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    order = load_order(db, order_id)
    require_party(order, user, allowed=("seller", "admin"))
    if order["status"] == "cancelled":
        raise HTTPException(status_code=400, detail="Cancelled orders cannot be paid")
    updated = _apply(db, order, {"payment_confirmed_by_seller": True, "status": "paid"})
    return {"message": "Payment confirmed by seller", "order": populate_order(db, updated)}


@router.put("/{order_id}/accept")
def accept_order(order_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    order = load_order(db, order_id)
    require_party(order, user, allowed=("seller",))
    if order["status"] == "cancelled":
        raise HTTPException(status_code=400, detail="Cancelled orders cannot be accepted")
    updated = _apply(db, order, {"accepted_by_seller": True})
    return {"message": "Order accepted", "order": populate_order(db, updated)}


@router.put("/{order_id}/upload-proof")
def upload_payment_proof(
    order_id: str,
    payment_proof: Optional[UploadFile] = File(None, alias="paymentProof"),
    user=Depends(get_current_user),
    context: AppContext = Depends(get_context),
):
    db = context.db
    order = load_order(db, order_id)
    require_party(order, user, allowed=("buyer",))
    if payment_proof is None or not payment_proof.filename:
        raise HTTPException(status_code=400, detail="Payment proof is required")
    if order["status"] == "cancelled":
        raise HTTPException(status_code=400, detail="Cannot upload proof for a cancelled order")

    url = context.storage.save(payment_proof, "payment_proofs", max_bytes=MAX_PROOF_BYTES)
    update = {"payment_proof": url}
    if order["status"] == "pending":
        update["status"] = "payment_sent"
    updated = _apply(db, order, update)
    return {"message": "Payment proof uploaded", "order": populate_order(db, updated)}


@router.put("/{order_id}/delivery")
def update_delivery_info(order_id: str, body: DeliveryBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    order = load_order(db, order_id)
    require_party(order, user, allowed=("seller", "admin"))
    if order["status"] == "cancelled":
        raise HTTPException(status_code=400, detail="Cancelled orders cannot be shipped")

    update = {f"delivery_info.{k}": v for k, v in body.model_dump(exclude_none=True).items()}
    info = {**(order.get("delivery_info") or {}), **body.model_dump(exclude_none=True)}
    if info.get("delivered_at"):
        update.update(delivery_status="delivered", status="completed")
    elif info.get("shipped_at"):
        update.update(delivery_status="shipped", status="shipped")
    updated = _apply(db, order, update)
    return {"message": "Delivery info updated successfully", "order": populate_order(db, updated)}


@router.put("/{order_id}/cancel")
def cancel_order(order_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    order = load_order(db, order_id)
    require_party(order, user)
    updated = cancel(db, order)
    return {"message": "Order cancelled successfully", "order": populate_order(db, updated)}


@router.delete("/{order_id}")
def delete_order(order_id: str, admin=Depends(require_admin), db: Database = Depends(get_db)):
    order = load_order(db, order_id)
    if order["status"] in OPEN_STATUSES:
        restore_stock(db, order)
    db["order"].delete_one({"_id": order["_id"]})
    logger.info("Admin %s deleted order %s", admin["id"], order_id)
    return {"message": "Order deleted successfully"}
