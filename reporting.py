"""Administrative dashboard counts."""

from typing import Dict

from pymongo.database import Database

from catalog import count_products
from database import USERS
from schemas import Role


def dashboard(db: Database) -> Dict[str, int]:
    """Independent counts per role plus the catalog size; not a consistent snapshot."""
    users = db[USERS]
    return {
        "total_users": users.count_documents({"role": Role.user.value}),
        "total_sellers": users.count_documents({"role": Role.seller.value}),
        "total_admins": users.count_documents({"role": Role.admin.value}),
        "total_products": count_products(db),
    }
