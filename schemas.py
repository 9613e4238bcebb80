"""
Database Schemas for the storefront

Each Pydantic model represents a MongoDB collection:

- User -> "users"
- Product -> "products"
- Order -> "orders"
- Home -> "homes" (home page carousel)

Validators raise ValueError with the message shown to the client; the error
handler reports the first failing field only.
"""
import math
from datetime import datetime
from typing import List, Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, Field, field_validator

DEFAULT_PROGRESS = "已收到訂單"

MEMBER = 0
ADMIN = 1


class CartItem(BaseModel):
    product: str = Field(..., description="Product id")
    amount: int = Field(..., description="Quantity")


class UserCreate(BaseModel):
    """Registration payload, validated before the password is hashed"""
    account: Optional[str] = Field(None, validate_default=True)
    password: Optional[str] = Field(None, validate_default=True)
    email: Optional[str] = Field(None, validate_default=True)
    address: Optional[str] = None

    @field_validator("account")
    @classmethod
    def check_account(cls, v):
        if not v:
            raise ValueError("帳號不能為空")
        if len(v) < 4:
            raise ValueError("帳號必須 4 個字以上")
        if len(v) > 20:
            raise ValueError("帳號不能超過 20 個字")
        return v

    @field_validator("password")
    @classmethod
    def check_password(cls, v):
        if not v:
            raise ValueError("密碼不能為空")
        if len(v) < 4:
            raise ValueError("密碼必須 4 個字以上")
        if len(v) > 20:
            raise ValueError("密碼不能超過 20 個字")
        return v

    @field_validator("email")
    @classmethod
    def check_email(cls, v):
        if not v:
            raise ValueError("信箱不能為空")
        try:
            validate_email(v, check_deliverability=False)
        except EmailNotValidError:
            raise ValueError("信箱格式不正確")
        return v


class User(BaseModel):
    account: str = Field(..., description="Login name, unique")
    password: str = Field(..., description="bcrypt hash")
    email: str = Field(..., description="Email address, unique")
    role: int = Field(MEMBER, description="0 = member, 1 = admin")
    tokens: List[str] = Field(default_factory=list, description="Active session tokens")
    image: Optional[str] = Field(None, description="Avatar file name")
    address: Optional[str] = Field(None, description="Default delivery address")
    cart: List[CartItem] = Field(default_factory=list)
    favorite: List[CartItem] = Field(default_factory=list)


def _check_name(v):
    if v is None or not str(v).strip():
        raise ValueError("品名不能為空")
    return v


def _check_price(v):
    if v is None or v == "":
        raise ValueError("價格不能為空")
    try:
        v = float(v)
    except (TypeError, ValueError):
        raise ValueError("價格格式不正確")
    if not math.isfinite(v) or v < 0:
        raise ValueError("價格格式不正確")
    return v


class Product(BaseModel):
    name: Optional[str] = Field(None, validate_default=True, description="Product name")
    price: Optional[float] = Field(None, validate_default=True, description="Price, not negative")
    description: Optional[str] = None
    detail: Optional[str] = None
    image: Optional[str] = None
    brand: Optional[str] = None
    cate: Optional[str] = Field(None, description="Category")
    sell: bool = Field(True, description="Listed for sale")

    @field_validator("name")
    @classmethod
    def check_name(cls, v):
        return _check_name(v)

    @field_validator("price", mode="before")
    @classmethod
    def check_price(cls, v):
        return _check_price(v)


class ProductUpdate(BaseModel):
    """Only the fields that were sent; everything else stays as stored"""
    name: Optional[str] = None
    price: Optional[float] = None
    description: Optional[str] = None
    detail: Optional[str] = None
    image: Optional[str] = None
    brand: Optional[str] = None
    cate: Optional[str] = None
    sell: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def check_name(cls, v):
        return _check_name(v)

    @field_validator("price", mode="before")
    @classmethod
    def check_price(cls, v):
        return _check_price(v)


class Order(BaseModel):
    user: str = Field(..., description="User id")
    products: List[CartItem]
    date: datetime
    address: Optional[str] = Field(None, validate_default=True)
    progress: str = Field(DEFAULT_PROGRESS, description="Free text order status")

    @field_validator("address")
    @classmethod
    def check_address(cls, v):
        if not v or not v.strip():
            raise ValueError("缺少收貨地址")
        return v


class Home(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    link: Optional[str] = None
    date: datetime
