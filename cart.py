"""
Cart and favorite list operations.

Entries are embedded documents {"product": <product id>, "amount": <int>} in
an array field (`cart` / `favorite` on users, `products` on orders). Each
operation is a single-document update, so concurrent requests on the same
owner never overwrite each other's entries.
"""
from pymongo.collection import Collection


class DuplicateEntryError(Exception):
    pass


def add_entry(collection: Collection, owner_id, field: str, product_id: str, amount: int) -> bool:
    """Increment the matching entry, or append a new one when none matches.

    Returns False when the owner document does not exist.
    """
    # Two rounds cover a concurrent append of the same product between the steps
    for _ in range(2):
        result = collection.update_one(
            {"_id": owner_id, f"{field}.product": product_id},
            {"$inc": {f"{field}.$.amount": amount}},
        )
        if result.matched_count:
            return True
        result = collection.update_one(
            {"_id": owner_id, f"{field}.product": {"$ne": product_id}},
            {"$push": {field: {"product": product_id, "amount": amount}}},
        )
        if result.matched_count:
            return True
    return False


def set_entry_amount(collection: Collection, owner_id, field: str, product_id: str, amount: int) -> bool:
    """Overwrite the amount, or drop the entry when amount <= 0.

    Returns False when the product is not in the list.
    """
    query = {"_id": owner_id, f"{field}.product": product_id}
    if amount <= 0:
        update = {"$pull": {field: {"product": product_id}}}
    else:
        update = {"$set": {f"{field}.$.amount": amount}}
    return collection.update_one(query, update).matched_count > 0


def add_favorite(collection: Collection, owner_id, product_id: str, amount: int = 0):
    result = collection.update_one(
        {"_id": owner_id, "favorite.product": {"$ne": product_id}},
        {"$push": {"favorite": {"product": product_id, "amount": amount}}},
    )
    if not result.matched_count:
        raise DuplicateEntryError(product_id)


def remove_entry(collection: Collection, owner_id, field: str, product_id: str) -> bool:
    result = collection.update_one(
        {"_id": owner_id, f"{field}.product": product_id},
        {"$pull": {field: {"product": product_id}}},
    )
    return result.matched_count > 0
