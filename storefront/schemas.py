from pydantic import BaseModel, Field
from pydantic.config import ConfigDict
from typing import List, Optional
from decimal import Decimal

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# largest value a 64-bit INTEGER column can hold
MAX_ID = 2**63 - 1


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=150)
    password: str = Field(..., min_length=1)
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserUpdate(BaseModel):
    username: Optional[str] = Field(default=None, min_length=1, max_length=150)
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=255)
    password: Optional[str] = Field(default=None, min_length=1)
    role: Optional[str] = None


class UserRead(BaseModel):
    id: int
    username: str
    email: str
    role: str = "user"

    model_config = ConfigDict(from_attributes=True)


class UserUpdated(BaseModel):
    message: str
    user: UserRead


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    description: Optional[str] = None


class CategoryRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ProductRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    price: Decimal
    stock: int
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    category_id: int = Field(..., alias="categoryId")
    category: Optional[CategoryRead] = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class ProductPage(BaseModel):
    products: List[ProductRead]
    total_pages: int = Field(..., alias="totalPages")
    current_page: int = Field(..., alias="currentPage")

    model_config = ConfigDict(populate_by_name=True)


class OrderCreate(BaseModel):
    # strict: booleans, strings and fractional numbers are rejected
    product_id: int = Field(..., alias="productId", gt=0, le=MAX_ID, strict=True)
    quantity: int = Field(..., gt=0, le=MAX_ID, strict=True)

    model_config = ConfigDict(populate_by_name=True)


class OrderStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1)


class OrderBuyer(BaseModel):
    username: str
    email: str

    model_config = ConfigDict(from_attributes=True)


class OrderProduct(BaseModel):
    name: str
    price: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderRead(BaseModel):
    id: int
    user_id: int = Field(..., alias="userId")
    product_id: int = Field(..., alias="productId")
    quantity: int
    status: str
    total_price: Decimal = Field(..., alias="totalPrice")
    user: Optional[OrderBuyer] = None
    product: Optional[OrderProduct] = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class OrderPlaced(BaseModel):
    message: str
    order_id: int = Field(..., alias="orderId")
    order: OrderRead

    model_config = ConfigDict(populate_by_name=True)


class Message(BaseModel):
    message: str


class TokenResponse(BaseModel):
    token: str
