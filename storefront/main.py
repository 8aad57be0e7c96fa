import logging
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, Path, Query, UploadFile
from sqlalchemy.orm import Session

from . import config, crud, images, schemas
from .schemas import MAX_ID
from .auth import Identity, admin_identity, create_access_token, current_identity
from .db import Base, SessionLocal, engine
from .errors import Unauthenticated, install_error_handlers
from .notifier import Notifier, build_notifier
from .orders import OrderWorkflow

settings = config.get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create tables if not existing. Schema changes for real deployments go through migrations.
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Storefront API")
install_error_handlers(app)

app.mount("/uploads", images.UploadedImages(), name="uploads")

api = APIRouter(prefix="/api")


# Dependency to get DB session per request

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_notifier() -> Notifier:
    return build_notifier(config.get_settings())


def get_order_workflow(db: Session = Depends(get_db), notifier: Notifier = Depends(get_notifier)) -> OrderWorkflow:
    return OrderWorkflow(db, notifier, config.get_settings())


@app.get("/health")
async def health():
    return {"status": "ok"}


# -------------------- Accounts --------------------

@api.post("/register", response_model=schemas.Message, status_code=201)
async def register(payload: schemas.RegisterRequest, db: Session = Depends(get_db)):
    crud.register_user(db, payload)
    return {"message": "User registered successfully"}


@api.post("/login", response_model=schemas.TokenResponse)
async def login(payload: schemas.LoginRequest, db: Session = Depends(get_db)):
    user = crud.authenticate_user(db, payload.username, payload.password)
    if user is None:
        raise Unauthenticated("Invalid credentials")
    return {"token": create_access_token(user)}


@api.get("/users", response_model=List[schemas.UserRead])
async def list_users(db: Session = Depends(get_db), identity: Identity = Depends(admin_identity)):
    return crud.list_users(db)


@api.get("/users/{user_id}", response_model=schemas.UserRead)
async def get_user(user_id: int = Path(..., le=MAX_ID), db: Session = Depends(get_db), identity: Identity = Depends(current_identity)):
    return crud.get_user(db, identity, user_id)


@api.put("/users/{user_id}", response_model=schemas.UserUpdated)
async def update_user(
    payload: schemas.UserUpdate,
    user_id: int = Path(..., le=MAX_ID),
    db: Session = Depends(get_db),
    identity: Identity = Depends(current_identity),
):
    user = crud.update_user(db, identity, user_id, payload)
    return {"message": "User updated successfully", "user": user}


@api.delete("/users/{user_id}", response_model=schemas.Message)
async def delete_user(user_id: int = Path(..., le=MAX_ID), db: Session = Depends(get_db), identity: Identity = Depends(admin_identity)):
    crud.delete_user(db, identity, user_id)
    return {"message": "User deleted successfully."}


# -------------------- Categories --------------------

@api.get("/categories", response_model=List[schemas.CategoryRead])
async def list_categories(db: Session = Depends(get_db)):
    return crud.list_categories(db)


@api.post("/categories", response_model=schemas.CategoryRead, status_code=201)
async def create_category(
    payload: schemas.CategoryCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(admin_identity),
):
    return crud.create_category(db, payload)


@api.put("/categories/{category_id}", response_model=schemas.CategoryRead)
async def update_category(
    payload: schemas.CategoryCreate,
    category_id: int = Path(..., le=MAX_ID),
    db: Session = Depends(get_db),
    identity: Identity = Depends(admin_identity),
):
    return crud.update_category(db, category_id, payload)


@api.delete("/categories/{category_id}", response_model=schemas.Message)
async def delete_category(category_id: int = Path(..., le=MAX_ID), db: Session = Depends(get_db), identity: Identity = Depends(admin_identity)):
    crud.delete_category(db, category_id)
    return {"message": "Category deleted successfully."}


# -------------------- Products --------------------

@api.get("/products", response_model=schemas.ProductPage)
async def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category_id: Optional[int] = Query(None, alias="categoryId", le=MAX_ID),
    db: Session = Depends(get_db),
):
    return crud.list_products(db, page=page, limit=limit, category_id=category_id)


@api.get("/products/{product_id}", response_model=schemas.ProductRead)
async def get_product(product_id: int = Path(..., le=MAX_ID), db: Session = Depends(get_db)):
    return crud.get_product(db, product_id)


@api.post("/products", response_model=schemas.ProductRead, status_code=201)
async def create_product(
    name: str = Form(...),
    price: Decimal = Form(...),
    stock: int = Form(...),
    category_id: int = Form(..., alias="categoryId", le=MAX_ID),
    description: Optional[str] = Form(default=None),
    image_url: Optional[str] = Form(default=None, alias="imageUrl"),
    image: Optional[UploadFile] = File(default=None),
    db: Session = Depends(get_db),
    identity: Identity = Depends(admin_identity),
):
    if image is not None and image.filename:
        image_url = await images.save_product_image(image)
    try:
        product = crud.create_product(
            db, name=name, price=price, stock=stock, category_id=category_id,
            description=description, image_url=image_url,
        )
    except Exception:
        if image is not None and image.filename:
            images.delete_image(image_url)
        raise
    logger.info("Product %s created by user %s", product.id, identity.username)
    return product


@api.put("/products/{product_id}", response_model=schemas.ProductRead)
async def update_product(
    product_id: int = Path(..., le=MAX_ID),
    name: Optional[str] = Form(default=None),
    price: Optional[Decimal] = Form(default=None),
    stock: Optional[int] = Form(default=None),
    category_id: Optional[int] = Form(default=None, alias="categoryId", le=MAX_ID),
    description: Optional[str] = Form(default=None),
    image: Optional[UploadFile] = File(default=None),
    db: Session = Depends(get_db),
    identity: Identity = Depends(admin_identity),
):
    product = crud.get_product(db, product_id)
    old_image_url = product.image_url
    new_image_url = None
    if image is not None and image.filename:
        new_image_url = await images.save_product_image(image)
    try:
        product = crud.update_product(
            db, product, name=name, description=description, price=price,
            stock=stock, category_id=category_id, image_url=new_image_url,
        )
    except Exception:
        images.delete_image(new_image_url)
        raise
    if new_image_url:
        images.delete_image(old_image_url)
    logger.info("Product %s updated by user %s", product.id, identity.username)
    return product


@api.delete("/products/{product_id}", response_model=schemas.Message)
async def delete_product(product_id: int = Path(..., le=MAX_ID), db: Session = Depends(get_db), identity: Identity = Depends(admin_identity)):
    product = crud.get_product(db, product_id)
    image_url = product.image_url
    crud.delete_product(db, product)
    images.delete_image(image_url)
    logger.info("Product %s deleted by user %s", product_id, identity.username)
    return {"message": "Product deleted successfully"}


# -------------------- Orders --------------------

@api.post("/orders", response_model=schemas.OrderPlaced, status_code=201)
async def place_order(
    payload: schemas.OrderCreate,
    identity: Identity = Depends(current_identity),
    workflow: OrderWorkflow = Depends(get_order_workflow),
):
    order = await workflow.place_order(identity, payload.product_id, payload.quantity)
    return {"message": "Order placed successfully", "order_id": order.id, "order": order}


@api.get("/orders", response_model=List[schemas.OrderRead])
async def list_orders(identity: Identity = Depends(current_identity), workflow: OrderWorkflow = Depends(get_order_workflow)):
    return workflow.list_orders(identity)


@api.patch("/orders/{order_id}/status", response_model=schemas.OrderRead)
async def update_order_status(
    payload: schemas.OrderStatusUpdate,
    order_id: int = Path(..., le=MAX_ID),
    identity: Identity = Depends(current_identity),
    workflow: OrderWorkflow = Depends(get_order_workflow),
):
    return workflow.update_order_status(identity, order_id, payload.status)


@api.delete("/orders/{order_id}", response_model=schemas.Message)
async def delete_order(
    order_id: int = Path(..., le=MAX_ID),
    identity: Identity = Depends(current_identity),
    workflow: OrderWorkflow = Depends(get_order_workflow),
):
    workflow.delete_order(identity, order_id)
    return {"message": "Order deleted successfully"}


app.include_router(api)
