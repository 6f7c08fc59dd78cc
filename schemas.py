"""
Database Schemas for the Storefront

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name (e.g. HeroSlide -> "heroslide").
Timestamps (created_at / updated_at) are added by database.create_document.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
DiscountType = Literal["percentage", "fixed"]


# ----------------------- Accounts -----------------------
class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr
    password_hash: Optional[str] = Field(None, description="Hashed password, credentials provider only")
    image: Optional[str] = None
    role: Literal["user", "admin"] = "user"
    provider: Literal["credentials", "google"] = "credentials"


# ----------------------- Catalog -----------------------
class Product(BaseModel):
    name: str
    description: str = ""
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    image: Optional[str] = None
    images: List[str] = []
    category: str
    colors: List[str] = []
    badge: Optional[str] = None
    stock: int = Field(0, ge=0)
    featured: bool = False
    special_discount: bool = False


class Category(BaseModel):
    name: str
    image: Optional[str] = None
    product_count: int = Field(0, ge=0, description="Denormalized, not kept in sync")


class Coupon(BaseModel):
    """
    Coupons collection schema
    Collection: "coupon"
    """
    code: str = Field(..., description="Stored uppercased")
    discount_type: DiscountType = "percentage"
    discount_value: float = Field(..., gt=0)
    min_purchase: float = Field(0, ge=0)
    max_discount: Optional[float] = Field(None, ge=0, description="Cap for percentage coupons")
    usage_limit: int = Field(100, ge=0)
    used_count: int = Field(0, ge=0)
    expiry_date: datetime
    is_active: bool = True


# ----------------------- Orders -----------------------
class ShippingAddress(BaseModel):
    street: str
    city: str
    state: str = ""
    zip: str = ""
    country: str


class OrderItem(BaseModel):
    product_id: str
    name: str
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)
    subtotal: float = Field(..., ge=0)
    image: Optional[str] = None


class Order(BaseModel):
    customer_name: str
    email: EmailStr
    phone: str
    order_date: datetime
    status: OrderStatus = "pending"
    subtotal: float = 0.0
    shipping_cost: float = 0.0
    discount: float = 0.0
    coupon_code: Optional[str] = None
    total_amount: float
    shipping_address: ShippingAddress
    items: List[OrderItem]
    payment_method: str = "Cash On Delivery"
    notes: str = ""


# ----------------------- Reviews -----------------------
class Review(BaseModel):
    product_id: str
    order_id: str
    user_id: str
    user_name: str = "Anonymous"
    user_email: EmailStr
    user_image: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    title: str = ""
    comment: str = ""
    images: List[str] = Field(default_factory=list, max_length=3)


# ----------------------- Site content -----------------------
class HeroSlide(BaseModel):
    image: str
    link: str = "/allProducts"
    alt: str = "Banner Image"
    type: Literal["main", "side"] = "main"
    order: int = 1
    active: bool = True


class GalleryImage(BaseModel):
    """Customer review screenshot shown on the reviews page."""
    image: str
    caption: str = ""
    order: int = 1


class ShippingSettings(BaseModel):
    standard_fee: float = Field(100, ge=0)
    free_shipping_threshold: float = Field(5000, ge=0)
    express_shipping_fee: float = Field(200, ge=0)
    enable_free_shipping: bool = True


class GeneralSettings(BaseModel):
    site_name: str = "BlackBerry"
    currency: str = "BDT"
    currency_symbol: str = "৳"


class TopBanner(BaseModel):
    message: str = ""
    enabled: bool = False
    background_color: str = "#1f2937"
    text_color: str = "#ffffff"


class SiteSettings(BaseModel):
    shipping: ShippingSettings = Field(default_factory=ShippingSettings)
    general: GeneralSettings = Field(default_factory=GeneralSettings)
    top_banner: TopBanner = Field(default_factory=TopBanner)
