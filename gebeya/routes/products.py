import json
import logging
import math
import re
from typing import List, Optional

from bson.objectid import ObjectId
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import Field, ValidationError
from pydantic.alias_generators import to_snake
from pymongo import ReturnDocument
from pymongo.database import Database

from ..context import AppContext, get_context, get_db
from ..database import create_document, parse_object_id, serialize_doc, utcnow
from ..schemas import PaymentOption, Product as ProductSchema, Review as ReviewSchema
from ..security import get_current_user
from . import RequestModel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])

MAX_IMAGES = 5
TOP_SELLERS = 5
SELLER_FIELDS = {"name": 1, "email": 1, "image": 1, "location": 1, "bio": 1, "rating": 1, "total_sales": 1, "created_at": 1}


# ----------------------- Models -----------------------
class ReviewBody(RequestModel):
    rating: float = Field(..., ge=0, le=5)
    comment: str = ""


class ReviewUpdateBody(RequestModel):
    rating: Optional[float] = Field(None, ge=0, le=5)
    comment: Optional[str] = None


class StockBody(RequestModel):
    amount: Optional[float] = Field(None, allow_inf_nan=False)


# ----------------------- Helpers -----------------------
def load_product(db: Database, product_id: str) -> dict:
    product = db["product"].find_one({"_id": parse_object_id(product_id, "product")})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def require_owner(product: dict, user: dict):
    if product["seller_id"] != user["id"]:
        raise HTTPException(status_code=403, detail="Only the seller can modify this product")


def parse_price(value: Optional[str]) -> float:
    try:
        price = float(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Price must be a number")
    if not math.isfinite(price) or price < 0:
        raise HTTPException(status_code=400, detail="Price must be a non-negative number")
    return price


def parse_stock(value: Optional[str]) -> int:
    try:
        stock = int(str(value).strip())
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Stock must be a whole number")
    if stock < 0:
        raise HTTPException(status_code=400, detail="Stock cannot be negative")
    return stock


def parse_payment_options(raw: Optional[str]) -> List[dict]:
    """Keep the well-formed options from a JSON list; at least one must survive."""
    data = []
    if raw:
        try:
            data = json.loads(raw)
        except ValueError:
            raise HTTPException(status_code=400, detail="paymentOptions must be valid JSON")
    if isinstance(data, dict):
        data = [data]
    options = []
    for item in data if isinstance(data, list) else []:
        try:
            option = PaymentOption.model_validate(item)
        except ValidationError:
            continue
        if option.account_number.strip():
            options.append({"method": option.method, "account_number": option.account_number.strip()})
    if not options:
        raise HTTPException(status_code=400, detail="At least one valid payment option is required")
    return options


def parse_existing_images(values: Optional[List[str]]) -> Optional[List[str]]:
    if values is None:
        return None
    # the client may send one JSON-encoded list instead of repeated fields
    if len(values) == 1 and values[0].strip().startswith("["):
        try:
            return [str(v) for v in json.loads(values[0])]
        except ValueError:
            raise HTTPException(status_code=400, detail="existingImages must be valid JSON")
    return [v for v in values if v]


def build_product_filter(category=None, search=None, min_price=None, max_price=None, in_stock=None) -> dict:
    filt = {}
    if category:
        filt["category"] = {"$regex": re.escape(category), "$options": "i"}
    if min_price is not None or max_price is not None:
        filt["price"] = {}
        if min_price is not None:
            filt["price"]["$gte"] = min_price
        if max_price is not None:
            filt["price"]["$lte"] = max_price
    if in_stock:
        filt["stock"] = {"$gt": 0}
    if search:
        pattern = re.escape(search)
        filt["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    return filt


def recalculate_rating(db: Database, product_id: str) -> float:
    """Store the mean review rating (2 decimals, 0 without reviews) on the product."""
    ratings = [r["rating"] for r in db["review"].find({"product_id": product_id}, {"rating": 1})]
    rating = round(sum(ratings) / len(ratings), 2) if ratings else 0
    db["product"].update_one(
        {"_id": parse_object_id(product_id, "product")},
        {"$set": {"rating": rating, "updated_at": utcnow()}},
    )
    return rating


def _stock_amount(body: StockBody) -> int:
    amount = body.amount
    if amount is None or amount <= 0 or amount != int(amount):
        raise HTTPException(status_code=400, detail="Amount must be a positive whole number")
    return int(amount)


# ----------------------- Products -----------------------
@router.post("", status_code=201)
def create_product(
    name: Optional[str] = Form(None),
    description: str = Form(""),
    category: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    stock: Optional[str] = Form(None),
    payment_options: Optional[str] = Form(None, alias="paymentOptions"),
    images: Optional[List[UploadFile]] = File(None),
    user=Depends(get_current_user),
    context: AppContext = Depends(get_context),
):
    if not name or not name.strip() or price in (None, "") or stock in (None, ""):
        raise HTTPException(status_code=400, detail="Name, price, and stock are required.")
    images = [f for f in images or [] if f.filename]
    if len(images) > MAX_IMAGES:
        raise HTTPException(status_code=400, detail=f"At most {MAX_IMAGES} images are allowed")

    product = ProductSchema(
        seller_id=user["id"],
        name=name.strip(),
        description=description or "",
        category=(category or "").strip() or "Uncategorized",
        price=parse_price(price),
        stock=parse_stock(stock),
        payment_options=parse_payment_options(payment_options),
    )
    product.images = context.storage.save_many(images, "products")

    db = context.db
    product_id = create_document(db, "product", product)
    logger.info("User %s listed product %s", user["id"], product_id)
    return {"message": "Product created successfully", "product": serialize_doc(load_product(db, product_id))}


@router.get("")
def list_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice"),
    max_price: Optional[float] = Query(None, alias="maxPrice"),
    in_stock: Optional[bool] = Query(None, alias="inStock"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = Query("created_at", alias="sortBy"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Database = Depends(get_db),
):
    sort_field = to_snake(sort_by)
    if sort_field.startswith("$"):
        raise HTTPException(status_code=400, detail="Invalid sort field")
    direction = -1 if order == "desc" else 1

    filt = build_product_filter(category, search, min_price, max_price, in_stock)
    total = db["product"].count_documents(filt)
    cursor = (
        db["product"].find(filt)
        .sort([(sort_field, direction), ("_id", direction)])
        .skip((page - 1) * limit)
        .limit(limit)
    )
    return {
        "message": "Products fetched successfully",
        "page": page,
        "totalPages": math.ceil(total / limit),
        "totalProducts": total,
        "products": [serialize_doc(p) for p in cursor],
    }


@router.get("/top-rated")
def top_rated_products(limit: int = Query(10, ge=1, le=50), db: Database = Depends(get_db)):
    items = db["product"].find({}).sort([("rating", -1), ("created_at", -1)]).limit(limit)
    return {"products": [serialize_doc(p) for p in items]}


@router.get("/search")
def search_products(q: str = "", limit: int = Query(20, ge=1, le=100), db: Database = Depends(get_db)):
    if not q.strip():
        raise HTTPException(status_code=400, detail="Search query is required")
    items = db["product"].find(build_product_filter(search=q.strip())).limit(limit)
    return {"products": [serialize_doc(p) for p in items]}


@router.get("/category/{category}")
def products_by_category(category: str, db: Database = Depends(get_db)):
    items = db["product"].find({"category": {"$regex": f"^{re.escape(category)}$", "$options": "i"}})
    return {"products": [serialize_doc(p) for p in items]}


# ----------------------- Sellers -----------------------
@router.get("/seller/top")
def top_sellers(db: Database = Depends(get_db)):
    pipeline = [
        {"$group": {"_id": "$seller_id", "product_count": {"$sum": 1}, "average_rating": {"$avg": "$rating"}}},
        {"$sort": {"product_count": -1, "average_rating": -1}},
    ]
    sellers = []
    # sellers deleted since listing are skipped without shrinking the top five
    for g in db["product"].aggregate(pipeline):
        if len(sellers) == TOP_SELLERS:
            break
        if not ObjectId.is_valid(g["_id"]):
            continue
        profile = db["user"].find_one({"_id": ObjectId(g["_id"])}, {"name": 1, "email": 1, "image": 1})
        if not profile:
            continue
        sellers.append({
            "id": g["_id"],
            "name": profile.get("name"),
            "email": profile.get("email"),
            "image": profile.get("image", ""),
            "product_count": g["product_count"],
            "average_rating": round(g.get("average_rating") or 0, 2),
        })
    return {"sellers": sellers}


@router.get("/seller/info/{seller_id}")
def seller_info(seller_id: str, db: Database = Depends(get_db)):
    seller = db["user"].find_one({"_id": parse_object_id(seller_id, "seller")}, SELLER_FIELDS)
    if not seller:
        raise HTTPException(status_code=404, detail="Seller not found")
    seller = serialize_doc(seller)
    seller["product_count"] = db["product"].count_documents({"seller_id": seller_id})
    return {"seller": seller}


@router.get("/seller/products/{seller_id}")
def products_by_seller(seller_id: str, db: Database = Depends(get_db)):
    parse_object_id(seller_id, "seller")
    items = db["product"].find({"seller_id": seller_id}).sort("created_at", -1)
    return {"products": [serialize_doc(p) for p in items]}


# ----------------------- Single product -----------------------
@router.get("/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    product = serialize_doc(load_product(db, product_id))
    product["reviews"] = _reviews_for(db, product_id)
    seller = db["user"].find_one({"_id": parse_object_id(product["seller_id"], "seller")}, {"name": 1, "email": 1, "image": 1})
    product["seller"] = serialize_doc(seller)
    return {"product": product}


@router.put("/{product_id}")
def update_product(
    product_id: str,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    stock: Optional[str] = Form(None),
    payment_options: Optional[str] = Form(None, alias="paymentOptions"),
    existing_images: Optional[List[str]] = Form(None, alias="existingImages"),
    images: Optional[List[UploadFile]] = File(None),
    user=Depends(get_current_user),
    context: AppContext = Depends(get_context),
):
    db = context.db
    product = load_product(db, product_id)
    require_owner(product, user)

    update = {}
    if name is not None:
        if not name.strip():
            raise HTTPException(status_code=400, detail="Name cannot be empty")
        update["name"] = name.strip()
    if description is not None:
        update["description"] = description
    if category is not None:
        update["category"] = category.strip() or "Uncategorized"
    if price not in (None, ""):
        update["price"] = parse_price(price)
    if stock not in (None, ""):
        update["stock"] = parse_stock(stock)
    if payment_options is not None:
        update["payment_options"] = parse_payment_options(payment_options)

    uploads = [f for f in images or [] if f.filename]
    retained = parse_existing_images(existing_images)
    if retained is not None or uploads:
        current = product.get("images", [])
        kept = current if retained is None else [url for url in retained if url in current]
        if len(kept) + len(uploads) > MAX_IMAGES:
            raise HTTPException(status_code=400, detail=f"At most {MAX_IMAGES} images are allowed")
        update["images"] = kept + context.storage.save_many(uploads, "products")

    update["updated_at"] = utcnow()
    updated = db["product"].find_one_and_update(
        {"_id": product["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER
    )
    return {"message": "Product updated successfully", "product": serialize_doc(updated)}


@router.delete("/{product_id}")
def delete_product(product_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    product = load_product(db, product_id)
    require_owner(product, user)
    db["product"].delete_one({"_id": product["_id"]})
    db["review"].delete_many({"product_id": product_id})
    logger.info("User %s deleted product %s", user["id"], product_id)
    return {"message": "Product deleted successfully"}


# ----------------------- Reviews -----------------------
def _reviews_for(db: Database, product_id: str) -> List[dict]:
    reviews = list(db["review"].find({"product_id": product_id}).sort("created_at", -1))
    ids = {r["user_id"] for r in reviews}
    authors = {
        str(u["_id"]): serialize_doc(u)
        for u in db["user"].find({"_id": {"$in": [parse_object_id(i, "user") for i in ids]}}, {"name": 1, "image": 1})
    }
    out = []
    for r in reviews:
        review = serialize_doc(r)
        review["user"] = authors.get(r["user_id"])
        out.append(review)
    return out


def _load_review(db: Database, product_id: str, review_id: str) -> dict:
    review = db["review"].find_one({"_id": parse_object_id(review_id, "review"), "product_id": product_id})
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    return review


@router.post("/{product_id}/reviews", status_code=201)
def add_review(product_id: str, body: ReviewBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    load_product(db, product_id)
    review_id = create_document(db, "review", ReviewSchema(product_id=product_id, user_id=user["id"], comment=body.comment, rating=body.rating))
    rating = recalculate_rating(db, product_id)
    review = serialize_doc(db["review"].find_one({"_id": parse_object_id(review_id, "review")}))
    return {"message": "Review added successfully", "review": review, "rating": rating}


@router.put("/{product_id}/reviews/{review_id}")
def update_review(
    product_id: str,
    review_id: str,
    body: ReviewUpdateBody,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    load_product(db, product_id)
    review = _load_review(db, product_id, review_id)
    if review["user_id"] != user["id"]:
        raise HTTPException(status_code=403, detail="You can only edit your own review")

    update = {k: v for k, v in body.model_dump(exclude_none=True).items()}
    update["updated_at"] = utcnow()
    updated = db["review"].find_one_and_update({"_id": review["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER)
    rating = recalculate_rating(db, product_id)
    return {"message": "Review updated successfully", "review": serialize_doc(updated), "rating": rating}


@router.delete("/{product_id}/reviews/{review_id}")
def delete_review(product_id: str, review_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    load_product(db, product_id)
    review = _load_review(db, product_id, review_id)
    if review["user_id"] != user["id"]:
        raise HTTPException(status_code=403, detail="You can only delete your own review")
    db["review"].delete_one({"_id": review["_id"]})
    rating = recalculate_rating(db, product_id)
    return {"message": "Review deleted successfully", "rating": rating}


@router.get("/{product_id}/reviews")
def product_reviews(product_id: str, db: Database = Depends(get_db)):
    product = load_product(db, product_id)
    reviews = _reviews_for(db, product_id)
    return {"reviews": reviews, "count": len(reviews), "rating": product.get("rating", 0)}


# ----------------------- Stock -----------------------
@router.patch("/{product_id}/stock")
def increment_stock(product_id: str, body: StockBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    amount = _stock_amount(body)
    product = load_product(db, product_id)
    require_owner(product, user)
    updated = db["product"].find_one_and_update(
        {"_id": product["_id"]},
        {"$inc": {"stock": amount}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return {"message": "Stock incremented", "product": serialize_doc(updated)}


@router.patch("/{product_id}/stock/decrement")
def decrement_stock(product_id: str, body: StockBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    amount = _stock_amount(body)
    product = load_product(db, product_id)
    require_owner(product, user)
    updated = db["product"].find_one_and_update(
        {"_id": product["_id"], "stock": {"$gte": amount}},
        {"$inc": {"stock": -amount}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=400, detail="Insufficient stock")
    return {"message": "Stock decremented", "product": serialize_doc(updated)}
