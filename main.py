import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Depends, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, EmailStr, Field

from addresses import AddressBook
from auth import create_token, decode_token, is_admin
from blog import BlogService, ScheduledPostPoller, PUBLISHED
from cart import CartService
from categories import CategoryTree
from database import DATABASE_URL, Storage, create_local_store, db
from errors import ShopError
from newsletter import NewsletterService
from orders import OrderService
from products import ProductRepository
from quotes import QuoteService
from schemas import AddressType, PostStatus, Role
from tags import TagService
from users import UserService

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# App init
app = FastAPI(title="ChezFlora API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class Services:
    """Every shop service, wired around one Storage."""

    def __init__(self, storage: Storage, poll_interval: float = 60):
        self.storage = storage
        self.categories = CategoryTree(storage)
        self.products = ProductRepository(storage, self.categories)
        self.cart = CartService(storage, self.products)
        self.addresses = AddressBook(storage)
        self.orders = OrderService(storage, self.cart, self.addresses)
        self.blog = BlogService(storage)
        self.newsletter = NewsletterService(storage)
        self.users = UserService(storage)
        self.quotes = QuoteService(storage)
        self.tags = TagService(storage)
        self.poller = ScheduledPostPoller(self.blog, interval=poll_interval)


app.state.services = Services(
    Storage(create_local_store()),
    poll_interval=float(os.getenv("BLOG_POLL_INTERVAL", "60")),
)


def get_services(request: Request) -> Services:
    return request.app.state.services


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Auth helpers
def get_current_user(authorization: Optional[str] = Header(None), services: Services = Depends(get_services)):
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    token = authorization.replace("Bearer ", "").strip()
    payload = decode_token(token)
    if payload is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = services.users.get_user(payload.get("sub"))
    if not user:
        raise HTTPException(status_code=401, detail="Invalid token user")
    if user.get("status") != "active":
        raise HTTPException(status_code=403, detail=f"Account is {user.get('status')}")
    return user


def get_optional_user(authorization: Optional[str] = Header(None), services: Services = Depends(get_services)):
    if not authorization:
        return None
    return get_current_user(authorization, services)


def require_admin(user=Depends(get_current_user)):
    if not is_admin(user):
        raise HTTPException(status_code=403, detail="Admin only")
    return user


def require_superadmin(user=Depends(get_current_user)):
    if user.get("role") != "superadmin":
        raise HTTPException(status_code=403, detail="Super admin only")
    return user


def require_session(x_session_id: Optional[str] = Header(None)):
    if not x_session_id:
        raise HTTPException(status_code=400, detail="Missing X-Session-Id header")
    return x_session_id


def envelope(data: Any = None, message: str = "") -> Dict[str, Any]:
    return {"success": True, "message": message, "data": data}


def audit(services: Services, admin: dict, action: str, target_id: Optional[str] = None, **details):
    services.users.add_audit_log(action, actor_id=admin["id"], target_id=target_id, details=details)


def login_response(services: Services, user: dict, session_id: Optional[str]):
    merged = False
    if session_id:
        merged = services.cart.migrate_guest_cart(user["id"], session_id)
    return {"token": create_token(user), "user": user, "cart_merged": merged}


# Request models
class SignupRequest(BaseModel):
    first_name: str
    last_name: str
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdateRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class CategoryCreateRequest(BaseModel):
    name: str
    id: Optional[str] = None
    description: Optional[str] = None
    parent_id: Optional[str] = None
    order: Optional[int] = None


class CategoryUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    parent_id: Optional[str] = None
    order: Optional[int] = None


class CategoryReorderRequest(BaseModel):
    order: int = Field(..., ge=1)
    parent_id: Optional[str] = None


class ProductCreateRequest(BaseModel):
    name: str
    description: str = ""
    price: float = Field(..., ge=0)
    stock: Optional[int] = Field(None, ge=0)
    category: str
    images: List[str] = []
    sku: Optional[str] = None
    popular: bool = False
    featured: bool = False


class ProductUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    images: Optional[List[str]] = None
    sku: Optional[str] = None
    popular: Optional[bool] = None
    featured: Optional[bool] = None


class StockUpdateRequest(BaseModel):
    stock: Optional[int] = None


class TagCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    id: Optional[str] = None
    description: str = ""
    color: Optional[str] = None


class TagUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    color: Optional[str] = None


class ProductTagsRequest(BaseModel):
    tag_ids: List[str]



class CartItemRequest(BaseModel):
    product_id: str
    quantity: int = 1


class CartQuantityRequest(BaseModel):
    quantity: int


class AddressRequest(BaseModel):
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


class AddressUpdateRequest(BaseModel):
    type: Optional[AddressType] = None
    nickname: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None
    is_default: Optional[bool] = None


class OrderCreateRequest(BaseModel):
    shipping_address_id: Optional[str] = None
    billing_address_id: Optional[str] = None
    payment_method: str
    shipping_cost: float = Field(0, ge=0)


class StatusUpdateRequest(BaseModel):
    status: str
    comment: str = ""


class ReasonRequest(BaseModel):
    reason: str = ""


class PostCreateRequest(BaseModel):
    title: str
    excerpt: str = ""
    content: str = ""
    category: Optional[str] = None
    image_url: Optional[str] = None
    tags: List[str] = []
    status: PostStatus = "draft"
    featured: bool = False
    scheduled_date: Optional[datetime] = None


class PostUpdateRequest(BaseModel):
    title: Optional[str] = None
    excerpt: Optional[str] = None
    content: Optional[str] = None
    category: Optional[str] = None
    image_url: Optional[str] = None
    tags: Optional[List[str]] = None
    status: Optional[PostStatus] = None
    featured: Optional[bool] = None
    scheduled_date: Optional[datetime] = None


class ScheduleRequest(BaseModel):
    scheduled_date: datetime


class CommentRequest(BaseModel):
    content: str = Field(..., min_length=1)
    author: Optional[str] = None
    email: Optional[EmailStr] = None
    parent_id: Optional[int] = None


class ReactionRequest(BaseModel):
    type: str


class NewsletterRequest(BaseModel):
    email: str


class QuoteCreateRequest(BaseModel):
    title: str
    event_type: Optional[str] = None
    event_date: Optional[str] = None
    description: Optional[str] = None
    budget: Optional[float] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    attachments: List[str] = []
    notes: str = ""


class QuoteUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    budget: Optional[float] = None
    admin_notes: Optional[str] = None
    notes: Optional[str] = None


class QuoteLineRequest(BaseModel):
    description: str
    quantity: int = Field(1, ge=1)
    unit_price: float = Field(..., ge=0)


class QuoteSendRequest(BaseModel):
    quote_items: List[QuoteLineRequest]
    tax: float = 0
    admin_notes: Optional[str] = None
    valid_until: Optional[str] = None


class UserCreateRequest(BaseModel):
    first_name: str
    last_name: str
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Role = "client"


class UserUpdateRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None


class UserStatusRequest(BaseModel):
    status: str


class UserRoleRequest(BaseModel):
    role: str


def updates_of(req: BaseModel) -> Dict[str, Any]:
    return {k: v for k, v in req.model_dump().items() if v is not None}


# Routes
@app.get("/")
def root():
    return {"message": "ChezFlora API running"}


@app.get("/test")
def test_database(services: Services = Depends(get_services)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if DATABASE_URL else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "storage": type(services.storage.local).__name__,
        "keys": [],
    }
    if db is not None:
        response["database_name"] = db.name
        response["connection_status"] = "Connected"
        try:
            db.command("ping")
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    else:
        response["database"] = "⚠️  Using in-memory storage"
    response["keys"] = services.storage.local.keys()[:20]
    return response


# Auth
@app.post("/api/auth/signup")
def signup(req: SignupRequest, x_session_id: Optional[str] = Header(None),
           services: Services = Depends(get_services)):
    user = services.users.register(req.email, req.password, req.first_name, req.last_name)
    return login_response(services, user, x_session_id)


@app.post("/api/auth/login")
def login(req: LoginRequest, x_session_id: Optional[str] = Header(None),
          services: Services = Depends(get_services)):
    user = services.users.authenticate(req.email, req.password)
    return login_response(services, user, x_session_id)


@app.get("/api/auth/me")
def me(user=Depends(get_current_user)):
    return user


@app.put("/api/auth/me")
def update_me(req: ProfileUpdateRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return services.users.update_user(user["id"], updates_of(req))


@app.put("/api/auth/password")
def change_password(req: PasswordChangeRequest, user=Depends(get_current_user),
                    services: Services = Depends(get_services)):
    services.users.authenticate(user["email"], req.current_password)
    services.users.change_user_password(user["id"], req.new_password)
    return {"updated": True}


# Categories
@app.get("/api/categories")
def list_categories(services: Services = Depends(get_services)):
    return services.categories.get_all_categories()


@app.get("/api/categories/main")
def main_categories(services: Services = Depends(get_services)):
    return services.categories.get_main_categories()


@app.get("/api/categories/{category_id}")
def get_category(category_id: str, services: Services = Depends(get_services)):
    category = services.categories.get_category(category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return {
        **category,
        "children": services.categories.get_child_categories(category_id),
        "path": services.categories.get_category_path(category_id),
    }


# Products
@app.get("/api/products")
def list_products(search: Optional[str] = None, category: Optional[str] = None, popular: bool = False,
                  featured: bool = False, limit: int = 0, services: Services = Depends(get_services)):
    if popular:
        return services.products.get_popular_products(limit)
    if featured:
        return services.products.get_featured_products(limit)
    if category and category.lower() != "all":
        products = services.products.get_products_by_category(category)
    else:
        products = services.products.get_all_products()
    if search:
        matches = {p["id"] for p in services.products.search_products(search)}
        products = [p for p in products if p["id"] in matches]
    return products[:limit] if limit > 0 else products


@app.get("/api/products/{product_id}")
def get_product(product_id: str, services: Services = Depends(get_services)):
    product = services.products.get_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@app.get("/api/products/{product_id}/tags")
def get_product_tags(product_id: str, services: Services = Depends(get_services)):
    return services.tags.get_product_tags(product_id)


# Tags
@app.get("/api/tags")
def list_tags(search: Optional[str] = None, services: Services = Depends(get_services)):
    return services.tags.search_tags(search)


@app.get("/api/tags/{tag_id}")
def get_tag(tag_id: str, services: Services = Depends(get_services)):
    tag = services.tags.get_tag(tag_id)
    if not tag:
        raise HTTPException(status_code=404, detail="Tag not found")
    return tag


@app.get("/api/tags/{tag_id}/products")
def list_tag_products(tag_id: str, services: Services = Depends(get_services)):
    if not services.tags.get_tag(tag_id):
        raise HTTPException(status_code=404, detail="Tag not found")
    return services.tags.get_products_by_tag(tag_id)


# Cart

def cart_payload(services: Services, user_id: Optional[str] = None, session_id: Optional[str] = None):
    return {
        "items": services.cart.get_cart(user_id=user_id, session_id=session_id),
        "total": services.cart.get_cart_total(user_id=user_id, session_id=session_id),
        "count": services.cart.get_cart_item_count(user_id=user_id, session_id=session_id),
    }


@app.get("/api/cart")
def get_cart(user=Depends(get_current_user), services: Services = Depends(get_services)):
    return envelope(cart_payload(services, user_id=user["id"]))


@app.post("/api/cart/items")
def add_cart_item(req: CartItemRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    services.cart.add_to_cart(req.product_id, req.quantity, user_id=user["id"])
    return envelope(cart_payload(services, user_id=user["id"]), "Product added to cart")


@app.put("/api/cart/items/{product_id}")
def update_cart_item(product_id: str, req: CartQuantityRequest, user=Depends(get_current_user),
                     services: Services = Depends(get_services)):
    if not services.cart.update_cart_item_quantity(product_id, req.quantity, user_id=user["id"]):
        raise HTTPException(status_code=404, detail="Item not in cart")
    return envelope(cart_payload(services, user_id=user["id"]), "Cart updated")


@app.delete("/api/cart/items/{product_id}")
def remove_cart_item(product_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    if not services.cart.remove_from_cart(product_id, user_id=user["id"]):
        raise HTTPException(status_code=404, detail="Item not in cart")
    return envelope(cart_payload(services, user_id=user["id"]), "Product removed from cart")


@app.delete("/api/cart")
def clear_cart(user=Depends(get_current_user), services: Services = Depends(get_services)):
    services.cart.clear_cart(user_id=user["id"])
    return envelope(cart_payload(services, user_id=user["id"]), "Cart cleared")


@app.get("/api/guest-cart")
def get_guest_cart(session_id: str = Depends(require_session), services: Services = Depends(get_services)):
    return envelope(cart_payload(services, session_id=session_id))


@app.post("/api/guest-cart/items")
def add_guest_cart_item(req: CartItemRequest, session_id: str = Depends(require_session),
                        services: Services = Depends(get_services)):
    services.cart.add_to_cart(req.product_id, req.quantity, session_id=session_id)
    return envelope(cart_payload(services, session_id=session_id), "Product added to cart")


@app.put("/api/guest-cart/items/{product_id}")
def update_guest_cart_item(product_id: str, req: CartQuantityRequest, session_id: str = Depends(require_session),
                           services: Services = Depends(get_services)):
    if not services.cart.update_cart_item_quantity(product_id, req.quantity, session_id=session_id):
        raise HTTPException(status_code=404, detail="Item not in cart")
    return envelope(cart_payload(services, session_id=session_id), "Cart updated")


@app.delete("/api/guest-cart/items/{product_id}")
def remove_guest_cart_item(product_id: str, session_id: str = Depends(require_session),
                           services: Services = Depends(get_services)):
    if not services.cart.remove_from_cart(product_id, session_id=session_id):
        raise HTTPException(status_code=404, detail="Item not in cart")
    return envelope(cart_payload(services, session_id=session_id), "Product removed from cart")


@app.delete("/api/guest-cart")
def clear_guest_cart(session_id: str = Depends(require_session), services: Services = Depends(get_services)):
    services.cart.clear_cart(session_id=session_id)
    return envelope(cart_payload(services, session_id=session_id), "Cart cleared")


# Addresses
@app.get("/api/addresses")
def list_addresses(type: Optional[str] = None, user=Depends(get_current_user),
                   services: Services = Depends(get_services)):
    if type:
        return services.addresses.get_addresses_by_type(user["id"], type)
    return services.addresses.get_user_addresses(user["id"])


@app.post("/api/addresses")
def create_address(req: AddressRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return services.addresses.add_address(user["id"], req.model_dump())


@app.put("/api/addresses/{address_id}")
def update_address(address_id: str, req: AddressUpdateRequest, user=Depends(get_current_user),
                   services: Services = Depends(get_services)):
    address = services.addresses.update_address(user["id"], address_id, updates_of(req))
    if not address:
        raise HTTPException(status_code=404, detail="Address not found")
    return address


@app.put("/api/addresses/{address_id}/default")
def set_default_address(address_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    if not services.addresses.set_default_address(user["id"], address_id):
        raise HTTPException(status_code=404, detail="Address not found")
    return {"updated": True}


@app.delete("/api/addresses/{address_id}")
def delete_address(address_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    if not services.addresses.delete_address(user["id"], address_id):
        raise HTTPException(status_code=404, detail="Address not found")
    return {"deleted": True}


# Orders
@app.get("/api/orders")
def list_orders(user=Depends(get_current_user), services: Services = Depends(get_services)):
    return services.orders.get_user_orders(user["id"])


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    order = services.orders.get_order(user["id"], order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@app.post("/api/orders")
def create_order(req: OrderCreateRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    order = services.orders.create_order(
        user["id"],
        req.shipping_address_id,
        req.billing_address_id,
        req.payment_method,
        shipping_cost=req.shipping_cost,
    )
    return envelope(order, "Order placed")


@app.post("/api/orders/{order_id}/cancel")
def cancel_order(order_id: str, req: ReasonRequest, user=Depends(get_current_user),
                 services: Services = Depends(get_services)):
    if not services.orders.get_order(user["id"], order_id):
        raise HTTPException(status_code=404, detail="Order not found")
    return envelope(services.orders.cancel_order(order_id, req.reason), "Order cancelled")


# Blog
@app.get("/api/blog/posts")
def list_posts(category: Optional[str] = None, tag: Optional[str] = None, search: Optional[str] = None,
               sort: str = "date", services: Services = Depends(get_services)):
    if search:
        posts = services.blog.search_posts(search)
    elif category:
        posts = services.blog.get_posts_by_category(category)
    elif tag:
        posts = services.blog.get_posts_by_tag(tag)
    else:
        posts = services.blog.get_all_posts()
    return services.blog.sort_posts([p for p in posts if p["status"] == PUBLISHED], sort)


@app.get("/api/blog/posts/recent")
def recent_posts(count: int = 3, services: Services = Depends(get_services)):
    return services.blog.get_recent_posts(count)


@app.get("/api/blog/posts/popular")
def popular_posts(count: int = 3, services: Services = Depends(get_services)):
    return services.blog.get_popular_posts(count)


@app.get("/api/blog/posts/featured")
def featured_posts(count: int = 3, services: Services = Depends(get_services)):
    return services.blog.get_featured_posts(count)


@app.get("/api/blog/tags")
def blog_tags(services: Services = Depends(get_services)):
    return services.blog.get_all_tags()


@app.get("/api/blog/categories")
def blog_categories(services: Services = Depends(get_services)):
    return services.blog.get_all_categories()


@app.get("/api/blog/posts/{post_id}")
def get_post(post_id: int, services: Services = Depends(get_services)):
    post = services.blog.get_post(post_id)
    if not post or post["status"] != PUBLISHED:
        raise HTTPException(status_code=404, detail="Post not found")
    return services.blog.get_post(post_id, increment_view=True)


@app.get("/api/blog/posts/{post_id}/comments")
def list_comments(post_id: int, services: Services = Depends(get_services)):
    return services.blog.get_comments(post_id)


@app.post("/api/blog/posts/{post_id}/comments")
def add_comment(post_id: int, req: CommentRequest, user=Depends(get_optional_user),
                services: Services = Depends(get_services)):
    if user:
        author = f"{user['first_name']} {user['last_name']}".strip()
        email = user["email"]
    else:
        author = req.author or "Anonymous"
        email = req.email
    comment = services.blog.add_comment(post_id, author, req.content, parent_id=req.parent_id, email=email)
    if not comment:
        raise HTTPException(status_code=404, detail="Post not found")
    return envelope(comment, "Comment submitted for moderation")


@app.post("/api/blog/posts/{post_id}/comments/{comment_id}/reactions")
def react_to_comment(post_id: int, comment_id: int, req: ReactionRequest, services: Services = Depends(get_services)):
    if not services.blog.add_reaction(post_id, comment_id, req.type):
        raise HTTPException(status_code=404, detail="Comment not found")
    return {"updated": True}


# Newsletter
@app.post("/api/newsletter/subscribe")
def subscribe(req: NewsletterRequest, services: Services = Depends(get_services)):
    if not services.newsletter.add_subscriber(req.email):
        return envelope(None, "Already subscribed")
    return envelope(None, "Subscribed")


@app.post("/api/newsletter/unsubscribe")
def unsubscribe(req: NewsletterRequest, services: Services = Depends(get_services)):
    if not services.newsletter.remove_subscriber(req.email):
        raise HTTPException(status_code=404, detail="Subscriber not found")
    return envelope(None, "Unsubscribed")


# Quotes
@app.post("/api/quotes")
def create_quote(req: QuoteCreateRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return envelope(services.quotes.create_quote(user, req.model_dump()), "Quote request sent")


@app.get("/api/quotes")
def list_quotes(user=Depends(get_current_user), services: Services = Depends(get_services)):
    return services.quotes.get_user_quotes(user["id"])


def own_quote(services: Services, user: dict, quote_id: str) -> dict:
    quote = services.quotes.get_quote(user["id"], quote_id)
    if not quote:
        raise HTTPException(status_code=404, detail="Quote not found")
    return quote


@app.get("/api/quotes/{quote_id}")
def get_quote(quote_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return own_quote(services, user, quote_id)


@app.post("/api/quotes/{quote_id}/accept")
def accept_quote(quote_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    if own_quote(services, user, quote_id)["status"] != "sent":
        raise HTTPException(status_code=409, detail="Only a sent quote can be accepted")
    return services.quotes.accept_quote(quote_id)


@app.post("/api/quotes/{quote_id}/decline")
def decline_quote(quote_id: str, req: ReasonRequest, user=Depends(get_current_user),
                  services: Services = Depends(get_services)):
    if own_quote(services, user, quote_id)["status"] != "sent":
        raise HTTPException(status_code=409, detail="Only a sent quote can be declined")
    return services.quotes.decline_quote(quote_id, req.reason)


@app.post("/api/quotes/{quote_id}/cancel")
def cancel_quote(quote_id: str, req: ReasonRequest, user=Depends(get_current_user),
                 services: Services = Depends(get_services)):
    if own_quote(services, user, quote_id)["status"] not in ("pending", "processing"):
        raise HTTPException(status_code=409, detail="This quote can no longer be cancelled")
    return services.quotes.cancel_quote(quote_id, req.reason)


# Admin: catalog
@app.post("/api/admin/categories")
def admin_create_category(req: CategoryCreateRequest, admin=Depends(require_admin),
                          services: Services = Depends(get_services)):
    category = services.categories.add_category(req.model_dump())
    audit(services, admin, "category.create", category["id"])
    return category


@app.put("/api/admin/categories/{category_id}")
def admin_update_category(category_id: str, req: CategoryUpdateRequest, admin=Depends(require_admin),
                          services: Services = Depends(get_services)):
    updates = updates_of(req)
    if "parent_id" in req.model_fields_set:
        updates["parent_id"] = req.parent_id
    if not updates:
        raise HTTPException(status_code=400, detail="No updates provided")
    category = services.categories.update_category(category_id, updates)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    audit(services, admin, "category.update", category_id, fields=sorted(updates))
    return category


@app.put("/api/admin/categories/{category_id}/reorder")
def admin_reorder_category(category_id: str, req: CategoryReorderRequest, admin=Depends(require_admin),
                           services: Services = Depends(get_services)):
    if not services.categories.reorder_category(category_id, req.order, req.parent_id):
        raise HTTPException(status_code=404, detail="Category not found")
    audit(services, admin, "category.reorder", category_id, order=req.order, parent_id=req.parent_id)
    return {"updated": True}


@app.delete("/api/admin/categories/{category_id}")
def admin_delete_category(category_id: str, reassign_products: bool = False, admin=Depends(require_admin),
                          services: Services = Depends(get_services)):
    if not services.categories.delete_category(category_id, reassign_products=reassign_products):
        raise HTTPException(status_code=404, detail="Category not found")
    audit(services, admin, "category.delete", category_id, reassign_products=reassign_products)
    return {"deleted": True}


@app.post("/api/admin/products")
def admin_create_product(req: ProductCreateRequest, admin=Depends(require_admin),
                         services: Services = Depends(get_services)):
    product = services.products.add_product(req.model_dump())
    audit(services, admin, "product.create", product["id"])
    return product


@app.put("/api/admin/products/{product_id}")
def admin_update_product(product_id: str, req: ProductUpdateRequest, admin=Depends(require_admin),
                         services: Services = Depends(get_services)):
    updates = updates_of(req)
    if not updates:
        raise HTTPException(status_code=400, detail="No updates provided")
    product = services.products.update_product(product_id, updates)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    audit(services, admin, "product.update", product_id, fields=sorted(updates))
    return product


@app.put("/api/admin/products/{product_id}/stock")
def admin_update_stock(product_id: str, req: StockUpdateRequest, admin=Depends(require_admin),
                       services: Services = Depends(get_services)):
    product = services.products.update_product_stock(product_id, req.stock)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    audit(services, admin, "product.stock", product_id, stock=req.stock)
    return product


@app.delete("/api/admin/products/{product_id}")
def admin_delete_product(product_id: str, admin=Depends(require_admin), services: Services = Depends(get_services)):
    if not services.products.delete_product(product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    audit(services, admin, "product.delete", product_id)
    return {"deleted": True}


@app.post("/api/admin/tags")
def admin_create_tag(req: TagCreateRequest, admin=Depends(require_admin), services: Services = Depends(get_services)):
    tag = services.tags.add_tag(updates_of(req))
    audit(services, admin, "tag.create", tag["id"])
    return tag


@app.put("/api/admin/tags/{tag_id}")
def admin_update_tag(tag_id: str, req: TagUpdateRequest, admin=Depends(require_admin),
                     services: Services = Depends(get_services)):
    updates = updates_of(req)
    if not updates:
        raise HTTPException(status_code=400, detail="No updates provided")
    tag = services.tags.update_tag(tag_id, updates)
    if not tag:
        raise HTTPException(status_code=404, detail="Tag not found")
    audit(services, admin, "tag.update", tag_id, fields=sorted(updates))
    return tag


@app.delete("/api/admin/tags/{tag_id}")
def admin_delete_tag(tag_id: str, admin=Depends(require_admin), services: Services = Depends(get_services)):
    if not services.tags.delete_tag(tag_id):
        raise HTTPException(status_code=404, detail="Tag not found")
    audit(services, admin, "tag.delete", tag_id)
    return {"deleted": True}


@app.put("/api/admin/products/{product_id}/tags")
def admin_set_product_tags(product_id: str, req: ProductTagsRequest, admin=Depends(require_admin),
                           services: Services = Depends(get_services)):
    tag_ids = services.tags.set_product_tags(product_id, req.tag_ids)
    audit(services, admin, "product.tags", product_id, tags=tag_ids)
    return {"product_id": product_id, "tag_ids": tag_ids}


@app.post("/api/admin/products/{product_id}/tags/{tag_id}")
def admin_add_product_tag(product_id: str, tag_id: str, admin=Depends(require_admin),
                          services: Services = Depends(get_services)):
    added = services.tags.add_tag_to_product(product_id, tag_id)
    if added:
        audit(services, admin, "product.tag.add", product_id, tag=tag_id)
    return {"added": added}


@app.delete("/api/admin/products/{product_id}/tags/{tag_id}")
def admin_remove_product_tag(product_id: str, tag_id: str, admin=Depends(require_admin),
                             services: Services = Depends(get_services)):
    if not services.tags.remove_tag_from_product(product_id, tag_id):
        raise HTTPException(status_code=404, detail="Tag not linked to this product")
    audit(services, admin, "product.tag.remove", product_id, tag=tag_id)
    return {"deleted": True}


# Admin: orders

@app.get("/api/admin/orders")
def admin_list_orders(status: Optional[str] = None, admin=Depends(require_admin),
                      services: Services = Depends(get_services)):
    orders = services.orders.get_all_orders()
    if status:
        orders = [o for o in orders if o["status"] == status]
    return orders


@app.get("/api/admin/orders/{order_id}")
def admin_get_order(order_id: str, admin=Depends(require_admin), services: Services = Depends(get_services)):
    order = services.orders.get_any_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@app.put("/api/admin/orders/{order_id}/status")
def admin_update_order_status(order_id: str, req: StatusUpdateRequest, admin=Depends(require_admin),
                              services: Services = Depends(get_services)):
    order = services.orders.update_order_status(order_id, req.status, req.comment)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    audit(services, admin, "order.status", order_id, status=req.status)
    return order


# Admin: blog
@app.get("/api/admin/blog/posts")
def admin_list_posts(status: Optional[str] = None, admin=Depends(require_admin),
                     services: Services = Depends(get_services)):
    if status:
        return services.blog.get_posts_by_status(status)
    return services.blog.get_all_posts(include_all=True)


@app.post("/api/admin/blog/posts")
def admin_create_post(req: PostCreateRequest, admin=Depends(require_admin), services: Services = Depends(get_services)):
    post = services.blog.create_post(req.model_dump(), author=admin)
    audit(services, admin, "post.create", str(post["id"]))
    return post


@app.put("/api/admin/blog/posts/{post_id}")
def admin_update_post(post_id: int, req: PostUpdateRequest, admin=Depends(require_admin),
                      services: Services = Depends(get_services)):
    post = services.blog.update_post(post_id, updates_of(req))
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    audit(services, admin, "post.update", str(post_id))
    return post


@app.post("/api/admin/blog/posts/{post_id}/schedule")
def admin_schedule_post(post_id: int, req: ScheduleRequest, admin=Depends(require_admin),
                        services: Services = Depends(get_services)):
    post = services.blog.schedule_post(post_id, req.scheduled_date)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    audit(services, admin, "post.schedule", str(post_id), scheduled_date=post["scheduled_date"])
    return post


@app.delete("/api/admin/blog/posts/{post_id}")
def admin_delete_post(post_id: int, admin=Depends(require_admin), services: Services = Depends(get_services)):
    if not services.blog.delete_post(post_id):
        raise HTTPException(status_code=404, detail="Post not found")
    audit(services, admin, "post.delete", str(post_id))
    return {"deleted": True}


@app.get("/api/admin/blog/scheduled")
def admin_scheduled_posts(admin=Depends(require_admin), services: Services = Depends(get_services)):
    return services.blog.get_scheduled_posts()


@app.post("/api/admin/blog/publish-scheduled")
def admin_publish_scheduled(admin=Depends(require_admin), services: Services = Depends(get_services)):
    return {"published": services.blog.publish_scheduled_posts()}


@app.get("/api/admin/blog/comments/pending")
def admin_pending_comments(admin=Depends(require_admin), services: Services = Depends(get_services)):
    return services.blog.get_pending_comments()


@app.put("/api/admin/blog/posts/{post_id}/comments/{comment_id}/approve")
def admin_approve_comment(post_id: int, comment_id: int, admin=Depends(require_admin),
                          services: Services = Depends(get_services)):
    if not services.blog.approve_comment(post_id, comment_id):
        raise HTTPException(status_code=404, detail="Comment not found")
    audit(services, admin, "comment.approve", f"{post_id}/{comment_id}")
    return {"updated": True}


@app.delete("/api/admin/blog/posts/{post_id}/comments/{comment_id}")
def admin_delete_comment(post_id: int, comment_id: int, admin=Depends(require_admin),
                         services: Services = Depends(get_services)):
    if not services.blog.delete_comment(post_id, comment_id):
        raise HTTPException(status_code=404, detail="Comment not found")
    audit(services, admin, "comment.delete", f"{post_id}/{comment_id}")
    return {"deleted": True}


# Admin: newsletter
@app.get("/api/admin/newsletter/subscribers")
def admin_subscribers(admin=Depends(require_admin), services: Services = Depends(get_services)):
    return services.newsletter.get_all_subscribers()


@app.get("/api/admin/newsletter/export")
def admin_export_subscribers(admin=Depends(require_admin), services: Services = Depends(get_services)):
    return PlainTextResponse(
        services.newsletter.export_subscribers_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=newsletter_subscribers.csv"},
    )


@app.delete("/api/admin/newsletter/subscribers/{email}")
def admin_remove_subscriber(email: str, admin=Depends(require_admin), services: Services = Depends(get_services)):
    if not services.newsletter.remove_subscriber(email):
        raise HTTPException(status_code=404, detail="Subscriber not found")
    audit(services, admin, "newsletter.remove", email)
    return {"deleted": True}


# Admin: quotes
@app.get("/api/admin/quotes")
def admin_list_quotes(status: Optional[str] = None, admin=Depends(require_admin),
                      services: Services = Depends(get_services)):
    if status:
        return services.quotes.get_quotes_by_status(status)
    return services.quotes.get_all_quotes()


@app.get("/api/admin/quotes/{quote_id}")
def admin_get_quote(quote_id: str, admin=Depends(require_admin), services: Services = Depends(get_services)):
    quote = services.quotes.get_any_quote(quote_id)
    if not quote:
        raise HTTPException(status_code=404, detail="Quote not found")
    return quote


@app.put("/api/admin/quotes/{quote_id}")
def admin_update_quote(quote_id: str, req: QuoteUpdateRequest, admin=Depends(require_admin),
                       services: Services = Depends(get_services)):
    quote = services.quotes.update_quote(quote_id, updates_of(req))
    if not quote:
        raise HTTPException(status_code=404, detail="Quote not found")
    audit(services, admin, "quote.update", quote_id)
    return quote


@app.put("/api/admin/quotes/{quote_id}/status")
def admin_update_quote_status(quote_id: str, req: StatusUpdateRequest, admin=Depends(require_admin),
                              services: Services = Depends(get_services)):
    quote = services.quotes.update_quote_status(quote_id, req.status, req.comment)
    if not quote:
        raise HTTPException(status_code=404, detail="Quote not found")
    audit(services, admin, "quote.status", quote_id, status=req.status)
    return quote


@app.post("/api/admin/quotes/{quote_id}/send")
def admin_send_quote(quote_id: str, req: QuoteSendRequest, admin=Depends(require_admin),
                     services: Services = Depends(get_services)):
    quote = services.quotes.send_quote(quote_id, updates_of(req))
    if not quote:
        raise HTTPException(status_code=404, detail="Quote not found")
    audit(services, admin, "quote.send", quote_id, total=quote["total"])
    return quote


@app.delete("/api/admin/quotes/{quote_id}")
def admin_delete_quote(quote_id: str, admin=Depends(require_admin), services: Services = Depends(get_services)):
    if not services.quotes.delete_quote(quote_id):
        raise HTTPException(status_code=404, detail="Quote not found")
    audit(services, admin, "quote.delete", quote_id)
    return {"deleted": True}


# Admin: users
@app.get("/api/admin/users")
def admin_list_users(admin=Depends(require_admin), services: Services = Depends(get_services)):
    return services.users.get_all_users()


@app.get("/api/admin/users/{user_id}")
def admin_get_user(user_id: str, admin=Depends(require_admin), services: Services = Depends(get_services)):
    user = services.users.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@app.post("/api/admin/users")
def admin_create_user(req: UserCreateRequest, admin=Depends(require_admin), services: Services = Depends(get_services)):
    if req.role != "client" and admin["role"] != "superadmin":
        raise HTTPException(status_code=403, detail="Super admin only")
    user = services.users.create_user(req.model_dump())
    audit(services, admin, "user.create", user["id"], role=user["role"])
    return user


@app.put("/api/admin/users/{user_id}")
def admin_update_user(user_id: str, req: UserUpdateRequest, admin=Depends(require_admin),
                      services: Services = Depends(get_services)):
    user = services.users.update_user(user_id, updates_of(req))
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    audit(services, admin, "user.update", user_id)
    return user


@app.put("/api/admin/users/{user_id}/status")
def admin_change_user_status(user_id: str, req: UserStatusRequest, admin=Depends(require_admin),
                             services: Services = Depends(get_services)):
    if user_id == admin["id"]:
        raise HTTPException(status_code=400, detail="You cannot change your own status")
    user = services.users.change_user_status(user_id, req.status)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    audit(services, admin, "user.status", user_id, status=req.status)
    return user


@app.put("/api/admin/users/{user_id}/role")
def admin_change_user_role(user_id: str, req: UserRoleRequest, admin=Depends(require_superadmin),
                           services: Services = Depends(get_services)):
    user = services.users.change_user_role(user_id, req.role)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    audit(services, admin, "user.role", user_id, role=req.role)
    return user


@app.delete("/api/admin/users/{user_id}")
def admin_delete_user(user_id: str, admin=Depends(require_superadmin), services: Services = Depends(get_services)):
    if user_id == admin["id"]:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    if not services.users.delete_user(user_id):
        raise HTTPException(status_code=404, detail="User not found")
    audit(services, admin, "user.delete", user_id)
    return {"deleted": True}


@app.get("/api/admin/audit-logs")
def admin_audit_logs(limit: int = 100, admin=Depends(require_admin), services: Services = Depends(get_services)):
    return services.users.get_audit_logs()[:limit]


# Admin stats
@app.get("/api/admin/stats")
def admin_stats(admin=Depends(require_admin), services: Services = Depends(get_services)):
    orders = services.orders.get_all_orders()
    return {
        "users": len(services.users.get_all_users()),
        "orders": len(orders),
        "pending_orders": sum(1 for o in orders if o["status"] == "pending"),
        "revenue": round(sum(o["total"] for o in orders if o["status"] != "cancelled"), 2),
        "products": len(services.products.get_all_products()),
        "subscribers": len(services.newsletter.get_all_subscribers()),
        "pending_quotes": len(services.quotes.get_quotes_by_status("pending")),
        "pending_comments": len(services.blog.get_pending_comments()),
    }


# Seed demo data on startup
DEMO_CATEGORIES: List[dict] = [
    {"id": "bouquets", "name": "Bouquets", "description": "Hand-tied seasonal bouquets"},
    {"id": "roses", "name": "Roses", "description": "Roses by the stem or in bunches", "parent_id": "bouquets"},
    {"id": "wildflowers", "name": "Wildflowers", "description": "Country-style mixed bunches",
     "parent_id": "bouquets"},
    {"id": "plants", "name": "Plants", "description": "Indoor and outdoor plants"},
    {"id": "orchids", "name": "Orchids", "description": "Potted orchids", "parent_id": "plants"},
    {"id": "events", "name": "Events", "description": "Wedding and event decoration"},
]

DEMO_PRODUCTS: List[dict] = [
    {
        "name": "Red Rose Bouquet",
        "description": "Twelve long-stem red roses wrapped in kraft paper",
        "price": 49.9,
        "stock": 25,
        "category": "roses",
        "images": ["https://images.unsplash.com/photo-1561181286-d3fee7d55364?q=80&w=1200&auto=format&fit=crop"],
        "sku": "BQ-ROSE-12",
        "popular": True,
        "featured": True,
    },
    {
        "name": "Pastel Garden Bouquet",
        "description": "Peonies, ranunculus and eucalyptus in soft tones",
        "price": 39.0,
        "stock": 18,
        "category": "bouquets",
        "images": ["https://images.unsplash.com/photo-1487070183336-b863922373d4?q=80&w=1200&auto=format&fit=crop"],
        "sku": "BQ-PASTEL",
        "popular": True,
    },
    {
        "name": "Meadow Wildflowers",
        "description": "A loose bunch of cornflowers, daisies and grasses",
        "price": 29.5,
        "stock": 30,
        "category": "wildflowers",
        "images": ["https://images.unsplash.com/photo-1490750967868-88aa4486c946?q=80&w=1200&auto=format&fit=crop"],
        "sku": "BQ-MEADOW",
    },
    {
        "name": "White Phalaenopsis",
        "description": "Double-stem white orchid in a ceramic pot",
        "price": 34.9,
        "stock": 12,
        "category": "orchids",
        "images": ["https://images.unsplash.com/photo-1566907225472-514215c9e5a6?q=80&w=1200&auto=format&fit=crop"],
        "sku": "PL-ORCH-W",
        "featured": True,
    },
    {
        "name": "Olive Tree",
        "description": "Young olive tree, 80 cm, for terrace or bright interior",
        "price": 59.0,
        "stock": 8,
        "category": "plants",
        "images": ["https://images.unsplash.com/photo-1520412099551-62b6bafeb5bb?q=80&w=1200&auto=format&fit=crop"],
        "sku": "PL-OLIVE-80",
    },
    {
        "name": "Wedding Table Centrepiece",
        "description": "Made to order, priced per table",
        "price": 45.0,
        "stock": None,
        "category": "events",
        "images": ["https://images.unsplash.com/photo-1519225421980-715cb0215aed?q=80&w=1200&auto=format&fit=crop"],
        "sku": "EV-CENTRE",
    },
]

DEMO_POSTS: List[dict] = [
    {
        "title": "Keeping cut roses fresh for longer",
        "excerpt": "Five simple habits that double the vase life of your roses.",
        "content": "Trim the stems at an angle, change the water every two days, keep them away from fruit...",
        "author": "ChezFlora",
        "category": "Care tips",
        "tags": ["roses", "care"],
        "status": "published",
        "featured": True,
    },
    {
        "title": "Choosing wedding flowers by season",
        "excerpt": "Which blooms are at their best for a spring, summer or autumn wedding.",
        "content": "Spring brings peonies and ranunculus, summer is the time for garden roses...",
        "author": "ChezFlora",
        "category": "Events",
        "tags": ["wedding", "seasonal"],
        "status": "published",
    },
]


def seed_demo_data(services: Services) -> None:
    if not services.categories.get_all_categories():
        for category in DEMO_CATEGORIES:
            services.categories.add_category(category)
        logger.info("Seeded %d demo categories", len(DEMO_CATEGORIES))
    if not services.products.get_all_products():
        for product in DEMO_PRODUCTS:
            services.products.add_product(product)
        logger.info("Seeded %d demo products", len(DEMO_PRODUCTS))
    services.tags.seed_default_tags(services.products.get_all_products())
    if not services.blog.get_all_posts(include_all=True):
        for post in DEMO_POSTS:
            services.blog.create_post(post)
        logger.info("Seeded %d demo blog posts", len(DEMO_POSTS))


def seed_admin(services: Services) -> None:
    email = os.getenv("ADMIN_EMAIL")
    password = os.getenv("ADMIN_PASSWORD")
    if not email or not password or services.users.get_user_by_email(email):
        return
    services.users.create_user({
        "email": email,
        "password": password,
        "first_name": "Admin",
        "last_name": "ChezFlora",
        "role": "superadmin",
    })
    logger.info("Seeded super admin %s", email)


@app.on_event("startup")
async def startup():
    services: Services = app.state.services
    try:
        if os.getenv("SEED_DEMO_DATA", "1") == "1":
            seed_demo_data(services)
        seed_admin(services)
    except ShopError:
        logger.exception("Seeding demo data failed")
    services.poller.start()


@app.on_event("shutdown")
async def shutdown():
    await app.state.services.poller.stop()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
