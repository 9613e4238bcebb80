from datetime import datetime, timezone
from typing import List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, Form, HTTPException
from pydantic import BaseModel, Field, field_validator
from pymongo import ReturnDocument
from pymongo.database import Database

from auth import (
    CurrentUser,
    get_current_user,
    get_extendable_user,
    hash_password,
    issue_token,
    require_admin,
    verify_password,
)
from cart import DuplicateEntryError, add_entry, add_favorite, remove_entry, set_entry_amount
from database import create_document, get_db, parse_object_id, to_str_id
from logger import log_event
from responses import ok
from schemas import CartItem, Order, User, UserCreate
from upload import discard_on_error, image_upload, require_json, require_multipart

router = APIRouter(prefix="/users", tags=["users"])

NOT_FOUND = "資料不存在"
HIDDEN_FIELDS = {"password": 0, "tokens": 0}


# Request bodies
class UserLogin(BaseModel):
    account: Optional[str] = None
    password: Optional[str] = None


class CartChange(BaseModel):
    product: Optional[str] = Field(None, validate_default=True)
    amount: int = 1

    @field_validator("product")
    @classmethod
    def check_product(cls, v):
        if not v:
            raise ValueError("缺少商品 ID")
        return v

    @field_validator("amount", mode="before")
    @classmethod
    def check_amount(cls, v):
        try:
            return int(v)
        except (TypeError, ValueError):
            raise ValueError("缺少商品數量")


class CartEdit(CartChange):
    # No default: an edit must say which amount to store
    amount: Optional[int] = Field(None, validate_default=True)


class CheckoutRequest(BaseModel):
    address: Optional[str] = None


class OrderUpdate(BaseModel):
    address: Optional[str] = None
    progress: Optional[str] = None
    products: Optional[List[CartItem]] = None


# Helpers
def listed_product(db: Database, product_id: str) -> dict:
    product = db["products"].find_one({"_id": parse_object_id(product_id, NOT_FOUND)})
    if not product or not product.get("sell"):
        raise HTTPException(status_code=404, detail=NOT_FOUND)
    return product


def populate_products(db: Database, entries: List[dict]) -> List[dict]:
    ids = [ObjectId(it["product"]) for it in entries if ObjectId.is_valid(str(it["product"]))]
    docs = {str(d["_id"]): to_str_id(d) for d in db["products"].find({"_id": {"$in": ids}})}
    items = []
    for it in entries:
        prod = docs.get(str(it["product"]))
        if not prod:
            continue
        items.append({"product": prod, "amount": it["amount"]})
    return items


def populate_orders(db: Database, orders: List[dict]) -> List[dict]:
    user_ids = {o["user"] for o in orders if ObjectId.is_valid(o.get("user", ""))}
    accounts = {
        str(u["_id"]): u.get("account")
        for u in db["users"].find({"_id": {"$in": [ObjectId(i) for i in user_ids]}}, {"account": 1})
    }
    result = []
    for o in orders:
        d = to_str_id(o)
        d["user"] = {"id": d["user"], "account": accounts.get(d["user"])}
        d["products"] = populate_products(db, o.get("products", []))
        result.append(d)
    return result


# Account
@router.post("", dependencies=[Depends(require_multipart)])
def register(
    account: Optional[str] = Form(None),
    password: Optional[str] = Form(None),
    email: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
    image: Optional[str] = Depends(image_upload),
    db: Database = Depends(get_db),
):
    with discard_on_error(image):
        payload = UserCreate(account=account, password=password, email=email, address=address)
        if db["users"].find_one({"account": payload.account}):
            raise HTTPException(status_code=400, detail="帳號已存在")
        if db["users"].find_one({"email": payload.email}):
            raise HTTPException(status_code=400, detail="信箱已存在")

        user = User(
            account=payload.account,
            password=hash_password(payload.password),
            email=payload.email,
            address=payload.address,
            image=image,
        )
        user_id = create_document(db, "users", user)
    log_event(f"Registered user {payload.account} ({user_id})")
    return ok()


@router.get("")
def get_user_info(current: CurrentUser = Depends(get_current_user)):
    u = current.user
    return ok({
        "account": u.get("account"),
        "role": u.get("role"),
        "email": u.get("email"),
        "image": u.get("image"),
        "address": u.get("address"),
    })


@router.get("/all")
def list_users(current: CurrentUser = Depends(require_admin), db: Database = Depends(get_db)):
    return ok([to_str_id(u) for u in db["users"].find({}, HIDDEN_FIELDS)])


@router.post("/login", dependencies=[Depends(require_json)])
def login(creds: UserLogin, db: Database = Depends(get_db)):
    user = db["users"].find_one({"account": creds.account}) if creds.account else None
    if not user:
        raise HTTPException(status_code=400, detail="帳號錯誤")
    if not verify_password(creds.password, user.get("password", "")):
        raise HTTPException(status_code=400, detail="密碼錯誤")

    token = issue_token(user["_id"])
    db["users"].update_one({"_id": user["_id"]}, {"$push": {"tokens": token}})
    log_event(f"User {user['account']} logged in")
    return ok(
        {
            "token": token,
            "email": user.get("email"),
            "account": user.get("account"),
            "role": user.get("role"),
            "image": user.get("image"),
        },
        message="登入成功",
    )


@router.delete("/logout")
def logout(current: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    db["users"].update_one({"_id": current.id}, {"$pull": {"tokens": current.token}})
    return ok()


@router.post("/extend")
def extend(current: CurrentUser = Depends(get_extendable_user), db: Database = Depends(get_db)):
    token = issue_token(current.id)
    users = db["users"]
    users.update_one({"_id": current.id}, {"$push": {"tokens": token}})
    users.update_one({"_id": current.id}, {"$pull": {"tokens": current.token}})
    return ok(token)


# Cart
@router.post("/cart")
def add_cart(body: CartChange, current: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    if body.amount <= 0:
        raise HTTPException(status_code=400, detail="數量格式不正確")
    product = listed_product(db, body.product)
    add_entry(db["users"], current.id, "cart", str(product["_id"]), body.amount)
    return ok()


@router.get("/cart")
def get_cart(current: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(populate_products(db, current.user.get("cart", [])))


@router.patch("/cart")
def edit_cart(body: CartEdit, current: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    if not set_entry_amount(db["users"], current.id, "cart", body.product, body.amount):
        raise HTTPException(status_code=404, detail=NOT_FOUND)
    return ok()


# Favorites
@router.post("/favorite")
def add_to_favorite(body: CartChange, current: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    product = listed_product(db, body.product)
    amount = max(body.amount, 0) if "amount" in body.model_fields_set else 0
    try:
        add_favorite(db["users"], current.id, str(product["_id"]), amount)
    except DuplicateEntryError:
        raise HTTPException(status_code=400, detail="已加入最愛")
    return ok()


@router.get("/favorite")
def get_favorite(current: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(populate_products(db, current.user.get("favorite", [])))


@router.delete("/favorite/{product_id}")
def remove_favorite(product_id: str, current: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    if not remove_entry(db["users"], current.id, "favorite", product_id):
        raise HTTPException(status_code=404, detail=NOT_FOUND)
    return ok()


# Checkout -> create order and clear cart
@router.post("/checkout")
def checkout(
    body: Optional[CheckoutRequest] = None,
    current: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    address = body.address if body and body.address else current.user.get("address")
    if not address or not address.strip():
        if not current.user.get("cart"):
            return ok()
        raise HTTPException(status_code=400, detail="缺少收貨地址")

    # Take the cart and empty it in one step; the order is built from what was taken
    before = db["users"].find_one_and_update(
        {"_id": current.id, "cart.0": {"$exists": True}},
        {"$set": {"cart": []}},
        return_document=ReturnDocument.BEFORE,
    )
    if before is None:
        return ok()

    order = Order(
        user=str(current.id),
        products=before["cart"],
        date=datetime.now(timezone.utc),
        address=address,
    )
    order_id = create_document(db, "orders", order)
    log_event(f"Order {order_id} created for user {current.user.get('account')}")
    return ok(order_id)


# Orders
@router.get("/orders")
def get_orders(current: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    orders = list(db["orders"].find({"user": str(current.id)}))
    return ok(populate_orders(db, orders))


@router.get("/orders/all")
def get_all_orders(current: CurrentUser = Depends(require_admin), db: Database = Depends(get_db)):
    return ok(populate_orders(db, list(db["orders"].find())))


@router.patch("/orders/{order_id}")
def edit_order(
    order_id: str,
    body: OrderUpdate,
    current: CurrentUser = Depends(require_admin),
    db: Database = Depends(get_db),
):
    _id = parse_object_id(order_id, "查無訂單")
    order = db["orders"].find_one({"_id": _id})
    if not order:
        raise HTTPException(status_code=404, detail="查無訂單")

    data = {}
    if body.address is not None:
        if not body.address.strip():
            raise HTTPException(status_code=400, detail="缺少收貨地址")
        data["address"] = body.address
    if body.progress is not None:
        data["progress"] = body.progress

    ordered = {str(it["product"]) for it in order.get("products", [])}
    for it in body.products or []:
        if it.product not in ordered:
            raise HTTPException(status_code=404, detail=NOT_FOUND)

    if data:
        db["orders"].update_one({"_id": _id}, {"$set": data})
    for it in body.products or []:
        set_entry_amount(db["orders"], _id, "products", it.product, it.amount)

    order = db["orders"].find_one({"_id": _id})
    if not order:
        raise HTTPException(status_code=404, detail="查無訂單")
    return ok(populate_orders(db, [order])[0])


@router.delete("/orders/{order_id}")
def delete_order(order_id: str, current: CurrentUser = Depends(require_admin), db: Database = Depends(get_db)):
    result = db["orders"].delete_one({"_id": parse_object_id(order_id, "查無訂單")})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="查無訂單")
    log_event(f"Order {order_id} deleted by {current.user.get('account')}")
    return ok()


# Declared last so it does not shadow the fixed DELETE paths above
@router.delete("/{user_id}")
def delete_user(user_id: str, current: CurrentUser = Depends(require_admin), db: Database = Depends(get_db)):
    result = db["users"].delete_one({"_id": parse_object_id(user_id, "查無使用者")})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="查無使用者")
    log_event(f"User {user_id} deleted by {current.user.get('account')}")
    return ok()
