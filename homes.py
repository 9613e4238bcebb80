"""Home page carousel entries."""
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from auth import CurrentUser, require_admin
from database import create_document, get_db, parse_object_id, to_str_id
from responses import ok
from schemas import Home
from upload import discard_on_error, image_upload, require_multipart

router = APIRouter(prefix="/homes", tags=["homes"])

NOT_FOUND = "查無資料"


@router.post("", dependencies=[Depends(require_admin), Depends(require_multipart)])
def add_carousel(
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    link: Optional[str] = Form(None),
    image: Optional[str] = Depends(image_upload),
    db: Database = Depends(get_db),
):
    with discard_on_error(image):
        home = Home(title=title, description=description, link=link, image=image, date=datetime.now(timezone.utc))
        home_id = create_document(db, "homes", home)
    return ok(to_str_id(db["homes"].find_one({"_id": parse_object_id(home_id)})))


@router.get("")
def list_carousel(db: Database = Depends(get_db)):
    return ok([to_str_id(d) for d in db["homes"].find().sort("date", DESCENDING)])


@router.patch("/{home_id}", dependencies=[Depends(require_admin), Depends(require_multipart)])
def edit_carousel(
    home_id: str,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    link: Optional[str] = Form(None),
    image: Optional[str] = Depends(image_upload),
    db: Database = Depends(get_db),
):
    with discard_on_error(image):
        _id = parse_object_id(home_id, NOT_FOUND)
        data = {k: v for k, v in {"title": title, "description": description, "link": link, "image": image}.items() if v is not None}
        if data:
            doc = db["homes"].find_one_and_update({"_id": _id}, {"$set": data}, return_document=ReturnDocument.AFTER)
        else:
            doc = db["homes"].find_one({"_id": _id})
        if not doc:
            raise HTTPException(status_code=404, detail=NOT_FOUND)
    return ok(to_str_id(doc))


@router.delete("/{home_id}")
def delete_carousel(home_id: str, current: CurrentUser = Depends(require_admin), db: Database = Depends(get_db)):
    result = db["homes"].delete_one({"_id": parse_object_id(home_id, NOT_FOUND)})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail=NOT_FOUND)
    return ok()
