import re
from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Query
from pymongo import ReturnDocument
from pymongo.database import Database

from auth import CurrentUser, require_admin
from database import create_document, get_db, get_documents, parse_object_id, to_str_id
from logger import log_event
from responses import ok
from schemas import Product, ProductUpdate
from upload import discard_on_error, image_upload, require_multipart

router = APIRouter(prefix="/products", tags=["products"])

NOT_FOUND = "查無商品"


def _sent(**fields) -> dict:
    return {k: v for k, v in fields.items() if v is not None}


def _to_int(value: Optional[str]) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@router.post("", dependencies=[Depends(require_admin), Depends(require_multipart)])
def create_product(
    current: CurrentUser = Depends(require_admin),
    name: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    detail: Optional[str] = Form(None),
    brand: Optional[str] = Form(None),
    cate: Optional[str] = Form(None),
    sell: Optional[bool] = Form(None),
    image: Optional[str] = Depends(image_upload),
    db: Database = Depends(get_db),
):
    with discard_on_error(image):
        product = Product(**_sent(
            name=name, price=price, description=description, detail=detail,
            brand=brand, cate=cate, sell=sell, image=image,
        ))
        product_id = create_document(db, "products", product)
    log_event(f"Product {product.name} ({product_id}) created by {current.user.get('account')}")
    return ok(to_str_id(db["products"].find_one({"_id": parse_object_id(product_id)})))


@router.get("")
def list_products(db: Database = Depends(get_db)):
    return ok([to_str_id(d) for d in get_documents(db, "products", {"sell": True})])


@router.get("/query")
def search_products(
    pricegte: Optional[str] = None,
    pricelte: Optional[str] = None,
    keywords: Optional[str] = None,
    db: Database = Depends(get_db),
):
    """Listed products within a price range and/or matching any keyword.

    Keywords are comma separated and matched case-insensitively against the
    name and description. Non-numeric price bounds are ignored.
    """
    query = {"sell": True}
    price = {}
    gte = _to_int(pricegte)
    if gte is not None:
        price["$gte"] = gte
    lte = _to_int(pricelte)
    if lte is not None:
        price["$lte"] = lte
    if price:
        query["price"] = price

    if keywords:
        conditions = []
        for keyword in (k.strip() for k in keywords.split(",")):
            if not keyword:
                continue
            pattern = re.escape(keyword)
            conditions.append({"name": {"$regex": pattern, "$options": "i"}})
            conditions.append({"description": {"$regex": pattern, "$options": "i"}})
        if conditions:
            query["$or"] = conditions

    return ok([to_str_id(d) for d in get_documents(db, "products", query)])


@router.get("/cate")
def products_by_category(
    cate: Optional[str] = Query(None),
    brand: Optional[str] = Query(None),
    db: Database = Depends(get_db),
):
    query = {"sell": True, **_sent(cate=cate, brand=brand)}
    return ok([to_str_id(d) for d in get_documents(db, "products", query)])


@router.get("/all")
def list_all_products(current: CurrentUser = Depends(require_admin), db: Database = Depends(get_db)):
    return ok([to_str_id(d) for d in get_documents(db, "products")])


@router.get("/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    doc = db["products"].find_one({"_id": parse_object_id(product_id, NOT_FOUND)})
    if not doc:
        raise HTTPException(status_code=404, detail=NOT_FOUND)
    return ok(to_str_id(doc))


@router.patch("/{product_id}", dependencies=[Depends(require_admin), Depends(require_multipart)])
def edit_product(
    product_id: str,
    current: CurrentUser = Depends(require_admin),
    name: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    detail: Optional[str] = Form(None),
    brand: Optional[str] = Form(None),
    cate: Optional[str] = Form(None),
    sell: Optional[bool] = Form(None),
    image: Optional[str] = Depends(image_upload),
    db: Database = Depends(get_db),
):
    with discard_on_error(image):
        _id = parse_object_id(product_id, NOT_FOUND)
        update = ProductUpdate(**_sent(
            name=name, price=price, description=description, detail=detail,
            brand=brand, cate=cate, sell=sell, image=image,
        ))
        data = update.model_dump(exclude_none=True)
        if data:
            doc = db["products"].find_one_and_update({"_id": _id}, {"$set": data}, return_document=ReturnDocument.AFTER)
        else:
            doc = db["products"].find_one({"_id": _id})
        if not doc:
            raise HTTPException(status_code=404, detail=NOT_FOUND)
    return ok(to_str_id(doc))


@router.delete("/{product_id}")
def delete_product(product_id: str, current: CurrentUser = Depends(require_admin), db: Database = Depends(get_db)):
    result = db["products"].delete_one({"_id": parse_object_id(product_id, NOT_FOUND)})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail=NOT_FOUND)
    log_event(f"Product {product_id} deleted by {current.user.get('account')}")
    return ok()
