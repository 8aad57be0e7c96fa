"""
Create the schema and seed an admin account plus a small starter catalog.

Safe to run repeatedly: rows that already exist (matched by username or
name) are left alone.

Usage:
  python -m storefront.seed --admin-password <password>
"""
import argparse
import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import models
from .auth import hash_password
from .db import Base, SessionLocal, engine

logger = logging.getLogger(__name__)

STARTER_CATALOG = [
    {
        "category": ("T-shirts", "Sports t-shirts for training"),
        "product": {
            "name": "Nike Pro T-shirt",
            "description": "Breathable t-shirt for intense workouts",
            "price": Decimal("29.99"),
            "stock": 100,
        },
    },
    {
        "category": ("Shorts", "Sports shorts for running and training"),
        "product": {
            "name": "Adidas Run Shorts",
            "description": "Lightweight running shorts",
            "price": Decimal("24.99"),
            "stock": 50,
        },
    },
]


def seed(db: Session, admin_username: str, admin_password: str, admin_email: str) -> None:
    admin = db.execute(select(models.User).where(models.User.username == admin_username)).scalar_one_or_none()
    if admin is None:
        db.add(models.User(
            username=admin_username,
            email=admin_email,
            password_hash=hash_password(admin_password),
            role=models.ROLE_ADMIN,
        ))
        logger.info("Seeded admin user %s", admin_username)

    for entry in STARTER_CATALOG:
        name, description = entry["category"]
        category = db.execute(select(models.Category).where(models.Category.name == name)).scalar_one_or_none()
        if category is None:
            category = models.Category(name=name, description=description)
            db.add(category)
            db.flush()
            logger.info("Seeded category %s", name)

        product_name = entry["product"]["name"]
        exists = db.execute(select(models.Product.id).where(models.Product.name == product_name)).first()
        if not exists:
            db.add(models.Product(category_id=category.id, **entry["product"]))
            logger.info("Seeded product %s", product_name)

    db.commit()


def main():
    parser = argparse.ArgumentParser(description="Create tables and seed initial data")
    parser.add_argument("--admin-username", default="admin")
    parser.add_argument("--admin-password", required=True)
    parser.add_argument("--admin-email", default="admin@example.com")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        seed(db, args.admin_username, args.admin_password, args.admin_email)


if __name__ == "__main__":
    main()
