import logging
import math
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas
from .auth import Identity, authorize_self_or_admin, hash_password, verify_password
from .errors import Conflict, Forbidden, InvalidRequest, NotFound, is_unique_violation
from .utils import round_amount, sanitize_text

logger = logging.getLogger(__name__)


def _commit_unique(db: Session, message: str) -> None:
    """Commit, turning a unique-constraint violation into Conflict."""
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        if not is_unique_violation(e):
            raise
        logger.error("%s (%s)", message, e.orig)
        raise Conflict(message) from e


# -------------------- Users --------------------

def register_user(db: Session, data: schemas.RegisterRequest) -> models.User:
    user = models.User(
        username=data.username,
        email=data.email,
        password_hash=hash_password(data.password),
        role=models.ROLE_USER,
    )
    db.add(user)
    _commit_unique(db, "Username or email already exists.")
    db.refresh(user)
    logger.info("User registered: %s", user.username)
    return user


def authenticate_user(db: Session, username: str, password: str) -> Optional[models.User]:
    user = db.execute(select(models.User).where(models.User.username == username)).scalar_one_or_none()
    if user is None or not verify_password(password, user.password_hash):
        logger.warning("Failed login attempt for username: %s", username)
        return None
    logger.info("User logged in: %s", username)
    return user


def list_users(db: Session) -> List[models.User]:
    return db.query(models.User).order_by(models.User.id).all()


def get_user(db: Session, identity: Identity, user_id: int) -> models.User:
    authorize_self_or_admin(identity, user_id)
    user = db.get(models.User, user_id)
    if not user:
        raise NotFound("User not found.")
    return user


def update_user(db: Session, identity: Identity, user_id: int, changes: schemas.UserUpdate) -> models.User:
    authorize_self_or_admin(identity, user_id)
    user = db.get(models.User, user_id)
    if not user:
        raise NotFound("User not found.")

    if changes.role is not None and changes.role != user.role:
        if not identity.is_admin:
            logger.warning("User %s (ID: %s) attempted to change role for user ID: %s", identity.username, identity.id, user_id)
            raise Forbidden("Access denied: Only administrators can change user roles.")
        if changes.role not in models.ROLES:
            raise InvalidRequest('Invalid role provided. Must be "admin" or "user".')
        user.role = changes.role

    if changes.username is not None:
        user.username = changes.username
    if changes.email is not None:
        user.email = changes.email
    if changes.password is not None:
        user.password_hash = hash_password(changes.password)

    _commit_unique(db, "Username or email already exists.")
    db.refresh(user)
    logger.info("User updated: %s (ID: %s) by %s", user.username, user.id, identity.username)
    return user


def delete_user(db: Session, identity: Identity, user_id: int) -> None:
    """Delete a user with no orders. Admins cannot delete their own account."""
    try:
        user = db.get(models.User, user_id)
        if not user:
            raise NotFound("User not found.")
        if identity.id == user_id:
            logger.warning("Admin user %s (ID: %s) attempted to delete their own account.", identity.username, identity.id)
            raise Forbidden("Admin cannot delete their own account.")
        order_count = db.scalar(select(func.count(models.Order.id)).where(models.Order.user_id == user_id))
        if order_count:
            logger.warning("Attempt to delete user %s (ID: %s) with existing orders.", user.username, user_id)
            raise InvalidRequest("Cannot delete user: existing orders are associated with this user. Please manage orders first.")
        username = user.username
        db.delete(user)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("User deleted: %s (ID: %s) by admin %s", username, user_id, identity.username)


# -------------------- Categories --------------------

def list_categories(db: Session) -> List[models.Category]:
    return db.query(models.Category).order_by(models.Category.id).all()


def create_category(db: Session, data: schemas.CategoryCreate) -> models.Category:
    name = sanitize_text(data.name)
    if not name:
        raise InvalidRequest("Category name is required.")
    category = models.Category(name=name, description=sanitize_text(data.description))
    db.add(category)
    _commit_unique(db, f"Category with name '{name}' already exists.")
    db.refresh(category)
    logger.info("Category created: %s", category.name)
    return category


def update_category(db: Session, category_id: int, data: schemas.CategoryCreate) -> models.Category:
    category = db.get(models.Category, category_id)
    if not category:
        logger.warning("Category not found for update with ID: %s", category_id)
        raise NotFound("Category not found.")
    name = sanitize_text(data.name)
    if not name:
        raise InvalidRequest("Category name is required for update.")
    category.name = name
    # description may be cleared by sending null
    category.description = sanitize_text(data.description)
    _commit_unique(db, f"Category with name '{name}' already exists.")
    db.refresh(category)
    logger.info("Category updated: %s (ID: %s)", category.name, category.id)
    return category


def delete_category(db: Session, category_id: int) -> None:
    category = db.get(models.Category, category_id)
    if not category:
        logger.warning("Category not found for deletion with ID: %s", category_id)
        raise NotFound("Category not found.")
    product_count = db.scalar(select(func.count(models.Product.id)).where(models.Product.category_id == category_id))
    if product_count:
        logger.warning("Attempt to delete category %s (ID: %s) with existing products.", category.name, category_id)
        raise InvalidRequest("Cannot delete category: products are associated with it. Please reassign or delete products first.")
    name = category.name
    db.delete(category)
    db.commit()
    logger.info("Category deleted: %s (ID: %s)", name, category_id)


# -------------------- Products --------------------

def list_products(db: Session, page: int = 1, limit: int = 10, category_id: Optional[int] = None) -> dict:
    query = select(models.Product)
    count_query = select(func.count(models.Product.id))
    if category_id is not None:
        query = query.where(models.Product.category_id == category_id)
        count_query = count_query.where(models.Product.category_id == category_id)

    total = db.scalar(count_query) or 0
    rows = db.execute(query.order_by(models.Product.id).limit(limit).offset((page - 1) * limit)).scalars().all()
    return {"products": rows, "total_pages": math.ceil(total / limit), "current_page": page}


def get_product(db: Session, product_id: int) -> models.Product:
    product = db.get(models.Product, product_id)
    if not product:
        logger.warning("Product not found with ID: %s", product_id)
        raise NotFound("Product not found")
    return product


def _require_category(db: Session, category_id: int) -> None:
    if db.get(models.Category, category_id) is None:
        raise NotFound("Category not found.")


def _validate_price_stock(price: Optional[Decimal], stock: Optional[int]) -> None:
    if price is not None and price < 0:
        raise InvalidRequest("Price must be non-negative.")
    if stock is not None and stock < 0:
        raise InvalidRequest("Stock must be a non-negative integer.")


def create_product(
    db: Session,
    name: str,
    price: Decimal,
    stock: int,
    category_id: int,
    description: Optional[str] = None,
    image_url: Optional[str] = None,
) -> models.Product:
    name = sanitize_text(name)
    if not name:
        raise InvalidRequest("Name, price, stock, and categoryId are required.")
    _validate_price_stock(price, stock)
    _require_category(db, category_id)

    product = models.Product(
        name=name,
        description=sanitize_text(description),
        price=round_amount(price),
        stock=stock,
        image_url=image_url,
        category_id=category_id,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    logger.info("Product created: %s (ID: %s)", product.name, product.id)
    return product


def update_product(
    db: Session,
    product: models.Product,
    name: Optional[str] = None,
    description: Optional[str] = None,
    price: Optional[Decimal] = None,
    stock: Optional[int] = None,
    category_id: Optional[int] = None,
    image_url: Optional[str] = None,
) -> models.Product:
    """Apply the provided fields to an already loaded product."""
    _validate_price_stock(price, stock)
    if category_id is not None:
        _require_category(db, category_id)
        product.category_id = category_id
    if name:
        product.name = sanitize_text(name) or product.name
    if description is not None:
        product.description = sanitize_text(description)
    if price is not None:
        product.price = round_amount(price)
    if stock is not None:
        product.stock = stock
    if image_url is not None:
        product.image_url = image_url
    db.commit()
    db.refresh(product)
    logger.info("Product updated: %s (ID: %s)", product.name, product.id)
    return product


def delete_product(db: Session, product: models.Product) -> None:
    order_count = db.scalar(select(func.count(models.Order.id)).where(models.Order.product_id == product.id))
    if order_count:
        logger.warning("Attempt to delete product %s (ID: %s) with existing orders.", product.name, product.id)
        raise InvalidRequest("Cannot delete product: orders reference it.")
    name, product_id = product.name, product.id
    db.delete(product)
    db.commit()
    logger.info("Product deleted: %s (ID: %s)", name, product_id)
