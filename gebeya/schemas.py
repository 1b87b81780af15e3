"""
Database Schemas for the Gebeya marketplace

Each Pydantic model represents a MongoDB collection.
Model name is converted to lowercase for the collection name:
- User -> "user" collection
- Product -> "product" collection
- Review -> "review" collection (reviews are owned by their product)

References between collections are stored as string ids.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

ROLES = ("user", "moderator", "admin")
ORDER_STATUSES = ("pending", "payment_sent", "paid", "shipped", "completed", "cancelled")
PHONE_PATTERN = r"^\+?[0-9]{7,15}$"


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user" (lowercase of class name)
    """
    name: str = Field(..., min_length=2, max_length=100, description="Full name")
    email: EmailStr = Field(..., description="Unique, lowercased email address")
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN, description="Phone number")
    image: str = Field("", description="Avatar URL")
    location: str = Field("", description="Free-form location")
    bio: Optional[str] = Field(None, max_length=500)
    age: Optional[int] = Field(None, ge=0, le=120)
    auth_id: Optional[str] = Field(None, description="Subject id issued by the social-login provider")
    password_hash: Optional[str] = Field(None, description="bcrypt hash, never returned")
    is_verified: bool = False
    role: Literal["user", "moderator", "admin"] = "user"
    wallet_balance: float = Field(0, ge=0)
    rating: float = Field(0, ge=0, le=5)
    total_purchases: int = Field(0, ge=0)
    total_sales: int = Field(0, ge=0)
    is_banned: bool = False
    last_login: Optional[datetime] = None

    def to_document(self) -> dict:
        # auth_id is a sparse unique index, so absent rather than null
        return self.model_dump(exclude_none=True)


class PaymentOption(BaseModel):
    method: Literal["bank_transfer", "telebirr", "mepesa"]
    account_number: str = Field(..., min_length=1, alias="accountNumber")

    model_config = {"populate_by_name": True}


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"
    """
    seller_id: str = Field(..., description="Owning seller (user id)")
    name: str = Field(..., min_length=1)
    description: str = ""
    category: str = "Uncategorized"
    price: float = Field(..., ge=0)
    stock: int = Field(..., ge=0, description="Units available")
    images: List[str] = Field(default_factory=list, description="Image URLs")
    rating: float = Field(0, ge=0, le=5, description="Mean of review ratings")
    payment_options: List[PaymentOption] = Field(default_factory=list)


class Review(BaseModel):
    """
    Reviews collection schema, keyed by the parent product
    Collection name: "review"
    """
    product_id: str
    user_id: str
    comment: str = ""
    rating: float = Field(..., ge=0, le=5)


class DeliveryInfo(BaseModel):
    tracking_number: Optional[str] = None
    courier: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    buyer_id: str
    seller_id: str
    product_id: str
    quantity: int = Field(1, ge=1)
    total_amount: float = Field(..., ge=0, description="price x quantity at creation time")
    payment_proof: Optional[str] = Field(None, description="URL of the uploaded payment proof")
    payment_confirmed_by_seller: bool = False
    accepted_by_seller: bool = False
    delivery_status: Literal["pending", "shipped", "delivered"] = "pending"
    delivery_info: DeliveryInfo = Field(default_factory=DeliveryInfo)
    status: Literal["pending", "payment_sent", "paid", "shipped", "completed", "cancelled"] = "pending"
    completion_recorded: bool = Field(False, description="Buyer and seller counters already credited")


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)


class OTP(BaseModel):
    user_id: str
    code: str
    expires_at: datetime


class Session(BaseModel):
    """
    Sessions written by the social-login integration
    Collection name: "session"
    """
    token: str
    auth_id: str
    name: str
    email: EmailStr
    image: Optional[str] = None
    expires_at: datetime
