"""
Document schemas for the ChezFlora shop

Each Pydantic model describes the records kept in one key-value collection
(see database.py). Services validate new and updated records through these
models before they are stored.

Collections:
- categories
- products
- cart (user id -> items), guest_cart (session id -> items)
- orders (user id -> orders)
- user_addresses (user id -> addresses)
- blog_posts, blog_comments (post id -> comments), scheduled_posts
- newsletter_subscribers
- users, audit_logs
- quotes (user id -> quotes)
"""
from typing import List, Optional, Dict, Any, Literal
from pydantic import BaseModel, Field, EmailStr

OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
PostStatus = Literal["draft", "published", "scheduled", "archived"]
QuoteStatus = Literal["pending", "processing", "sent", "accepted", "declined", "expired", "cancelled"]
AddressType = Literal["shipping", "billing"]
Role = Literal["client", "admin", "superadmin"]
UserStatus = Literal["active", "suspended", "locked"]


class Category(BaseModel):
    """
    Categories collection schema
    Collection name: "categories"
    """
    id: str = Field(..., min_length=1, description="Slug identifier")
    name: str = Field(..., min_length=1, description="Display name")
    description: Optional[str] = Field(None, description="Short description")
    parent_id: Optional[str] = Field(None, description="Parent category id, None for a main category")
    order: int = Field(1, description="Position among siblings")


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "products"
    """
    id: str
    name: str = Field(..., min_length=1, description="Product name")
    description: str = Field("", description="Product description")
    price: float = Field(..., ge=0, description="Unit price in EUR")
    stock: Optional[int] = Field(None, ge=0, description="Units in stock, None when not tracked")
    category: str = Field(..., description="Category id")
    images: List[str] = Field(default_factory=list, description="Image URLs")
    sku: Optional[str] = Field(None, description="Stock keeping unit")
    popular: bool = False
    featured: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class Tag(BaseModel):
    """
    Product tags schema
    Collection name: "tags"
    """
    id: str = Field(..., min_length=1, description="Slug identifier")
    name: str = Field(..., min_length=1)
    description: str = ""
    color: str = Field("#6b7280", description="Badge colour, CSS hex")
    created_at: str
    updated_at: str


class CartProduct(BaseModel):
    id: str
    name: str
    price: float
    images: List[str] = Field(default_factory=list)
    sku: Optional[str] = None


class CartItem(BaseModel):
    product: CartProduct
    quantity: int = Field(1, ge=1)


class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float
    quantity: int = Field(1, ge=1)
    image: Optional[str] = None


class Address(BaseModel):
    """
    Address book schema
    Collection name: "user_addresses"
    """
    id: str
    type: AddressType
    nickname: Optional[str] = None
    first_name: str
    last_name: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    postal_code: str
    country: str = "France"
    phone: Optional[str] = None
    is_default: bool = False


class AddressSnapshot(BaseModel):
    id: str
    first_name: str
    last_name: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    postal_code: str
    country: str
    phone: Optional[str] = None


class StatusChange(BaseModel):
    status: str
    date: str
    comment: str = ""


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "orders"
    """
    id: str
    user_id: Optional[str] = None
    items: List[OrderItem]
    shipping_address: AddressSnapshot
    billing_address: AddressSnapshot
    status: OrderStatus = "pending"
    payment_method: str
    subtotal: float = Field(..., ge=0)
    shipping_cost: float = Field(0, ge=0)
    total: float = Field(..., ge=0)
    status_history: List[StatusChange] = Field(default_factory=list)
    created_at: str
    updated_at: str


class BlogPost(BaseModel):
    """
    Blog posts schema
    Collection name: "blog_posts"
    """
    id: int
    title: str = "Untitled"
    excerpt: str = ""
    content: str = ""
    date: str
    publish_date: Optional[str] = None
    author: str = "Unknown author"
    author_id: Optional[str] = None
    category: str = "Uncategorized"
    image_url: str = ""
    tags: List[str] = Field(default_factory=list)
    status: PostStatus = "draft"
    featured: bool = False
    view_count: int = 0
    scheduled_date: Optional[str] = None
    created_at: str
    updated_at: str


class ScheduledPost(BaseModel):
    post_id: int
    scheduled_date: str


class Reaction(BaseModel):
    type: str
    count: int = 0


class Comment(BaseModel):
    """
    Blog comments schema
    Collection name: "blog_comments"
    """
    id: int
    post_id: int
    author: str
    content: str
    date: str
    approved: bool = False
    parent_id: Optional[int] = None
    email: Optional[str] = None
    reactions: List[Reaction] = Field(default_factory=list)


class Subscriber(BaseModel):
    email: str
    subscribed_at: str


class User(BaseModel):
    """
    Users collection schema
    Collection name: "users"
    """
    id: str
    email: EmailStr = Field(..., description="Email address")
    first_name: str = Field(..., description="First name")
    last_name: str = Field(..., description="Last name")
    password_hash: str = Field(..., description="BCrypt password hash")
    role: Role = Field("client", description="client | admin | superadmin")
    status: UserStatus = Field("active", description="active | suspended | locked")
    created_at: str
    updated_at: Optional[str] = None


class AuditLog(BaseModel):
    id: str
    timestamp: str
    action: str
    actor_id: Optional[str] = None
    target_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class QuoteLine(BaseModel):
    description: str
    quantity: int = Field(1, ge=1)
    unit_price: float = Field(..., ge=0)


class Quote(BaseModel):
    """
    Quote requests schema
    Collection name: "quotes"
    """
    id: str
    user_id: Optional[str] = None
    status: QuoteStatus = "pending"
    title: str = "Quote request"
    event_type: Optional[str] = None
    event_date: Optional[str] = None
    description: Optional[str] = None
    budget: Optional[float] = None
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    address: Optional[str] = None
    attachments: List[str] = Field(default_factory=list)
    notes: str = ""
    admin_notes: str = ""
    quote_items: List[QuoteLine] = Field(default_factory=list)
    subtotal: float = 0
    tax: float = 0
    total: float = 0
    valid_until: Optional[str] = None
    status_history: List[StatusChange] = Field(default_factory=list)
    created_at: str
    updated_at: str
