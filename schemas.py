"""
Database Schemas for the Artisy storefront

Each Pydantic model corresponds to a MongoDB collection. The collection name is the lowercase of the class name.

Example: class Product -> collection "product"

Request bodies for the HTTP API live at the bottom of this file.
"""
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field

OrderStatus = Literal["pending", "paid", "cancelled", "refunded"]

# Core domain models

class User(BaseModel):
    name: Optional[str] = None
    email: EmailStr
    hashed_password: str
    role: str = "user"
    is_active: bool = True

class Identity(BaseModel):
    """The narrow view of a user attached to an authenticated request."""
    id: str
    email: str
    role: str = "user"

class Product(BaseModel):
    name: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    image_url: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    art_form: Optional[str] = None
    origin_state: Optional[str] = None
    artist_name: Optional[str] = None
    material: Optional[str] = None
    dimensions: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    rating: float = Field(0, ge=0, le=5)
    review_count: int = Field(0, ge=0)
    stock_quantity: int = Field(0, ge=0)
    is_featured: bool = False
    is_handmade: bool = False
    embedding: Optional[List[float]] = None

class CartItem(BaseModel):
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    image_url: Optional[str] = None
    quantity: int = Field(1, ge=1)

class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)
    version: int = 0

class OrderItem(BaseModel):
    product_id: Optional[str] = None
    name: str
    price: float = Field(..., ge=0)
    image_url: Optional[str] = None
    quantity: int = Field(1, ge=1)

class Order(BaseModel):
    user_id: Optional[str] = None
    email: Optional[EmailStr] = None
    stripe_session_id: str = ""
    amount: float = Field(..., ge=0)
    currency: str = "inr"
    status: OrderStatus = "pending"
    items: List[OrderItem]

class WishlistItem(BaseModel):
    user_id: str
    product_id: str

class Review(BaseModel):
    product_id: str
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    review_text: Optional[str] = None

# Request bodies

class SignupRequest(BaseModel):
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    name: Optional[str] = None

class LoginRequest(BaseModel):
    email: Optional[EmailStr] = None
    password: Optional[str] = None

class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = None

class AddCartItemRequest(BaseModel):
    product_id: Optional[str] = None
    quantity: int = 1

class UpdateCartItemRequest(BaseModel):
    quantity: Optional[int] = None

class CheckoutItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: Optional[str] = Field(None, alias="id")
    name: str
    price: float = Field(..., ge=0)
    image_url: Optional[str] = None
    quantity: int = Field(1, ge=1)

class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: List[CheckoutItem] = Field(default_factory=list)
    user_email: Optional[EmailStr] = Field(None, alias="userEmail")
    user_id: Optional[str] = Field(None, alias="userId")

class AddWishlistRequest(BaseModel):
    product_id: Optional[str] = None

class ReviewRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review_text: Optional[str] = None

class SemanticSearchRequest(BaseModel):
    query: Optional[str] = None
    limit: int = Field(20, ge=1, le=100)
