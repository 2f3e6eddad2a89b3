"""
Database Schemas

Define your MongoDB collection schemas here using Pydantic models.
Each Pydantic model represents a collection in your database.
Model name lowercased is the collection name:
- Product -> "product"
- User -> "user" (cart line items are embedded in the user document)

Field names are snake_case in Python and camelCase on the wire and in storage.
"""
import math
import re
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    StringConstraints,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from database import serialize_doc

PRODUCT_ID_PATTERN = r"^PRD[0-9]{6}$"
_PRODUCT_ID_RE = re.compile(PRODUCT_ID_PATTERN)


def is_valid_product_id(value: Any) -> bool:
    return isinstance(value, str) and _PRODUCT_ID_RE.fullmatch(value.strip()) is not None


def discount_percentage(price: float, labelled_price: float) -> int:
    if labelled_price and labelled_price > price:
        # half-up, so 12.5 -> 13
        return int(math.floor((labelled_price - price) / labelled_price * 100 + 0.5))
    return 0


def normalize_email(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


def as_image_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    return value


Trimmed = Annotated[str, StringConstraints(strip_whitespace=True)]
NonEmpty = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
ProductID = Annotated[str, StringConstraints(strip_whitespace=True, pattern=PRODUCT_ID_PATTERN)]
ProductName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=200)]
Description = Annotated[str, StringConstraints(strip_whitespace=True, min_length=10)]
ImageList = Annotated[List[NonEmpty], Field(min_length=1, max_length=5)]
ProfileImages = Annotated[List[NonEmpty], BeforeValidator(as_image_list)]
NormalizedEmail = Annotated[str, BeforeValidator(normalize_email)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Products

class Product(CamelModel):
    """
    Products collection schema
    Collection name: "product"
    """
    product_id: ProductID = Field(..., alias="productID", description="PRD followed by 6 digits, immutable")
    name: ProductName
    alt_name: Trimmed = ""
    description: Description
    price: float = Field(..., ge=0)
    labelled_price: float = Field(..., ge=0, description="Price before discount")
    category: NonEmpty
    brand: NonEmpty
    stock: int = Field(0, ge=0)
    is_available: bool = True
    images: ImageList


class ProductCreate(Product):
    price: float = Field(..., gt=0)
    labelled_price: Optional[float] = None
    alt_name: Optional[Trimmed] = None
    is_available: Optional[bool] = None

    @field_validator("stock", mode="before")
    @classmethod
    def _floor_stock(cls, v):
        if v is None:
            return 0
        try:
            if float(v) < 0:
                return 0
        except (TypeError, ValueError):
            pass
        return v

    @model_validator(mode="after")
    def _apply_defaults(self):
        if self.labelled_price is None or self.labelled_price <= 0:
            self.labelled_price = self.price
        if self.alt_name is None:
            self.alt_name = ""
        if self.is_available is None:
            self.is_available = self.stock > 0
        return self

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ProductUpdate(CamelModel):
    product_id: Optional[Trimmed] = Field(None, alias="productID")
    name: Optional[ProductName] = None
    alt_name: Optional[Trimmed] = None
    description: Optional[Description] = None
    price: Optional[float] = Field(None, ge=0)
    labelled_price: Optional[float] = Field(None, ge=0)
    category: Optional[NonEmpty] = None
    brand: Optional[NonEmpty] = None
    stock: Optional[int] = Field(None, ge=0)
    is_available: Optional[bool] = None
    images: Optional[ImageList] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)


def product_response(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize_doc(doc)
    out["discountPercentage"] = discount_percentage(out.get("price", 0), out.get("labelledPrice", 0))
    return out


# Users

class CartItem(CamelModel):
    product_id: str = Field(..., description="Matches Product.productID")
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Price snapshot taken when the item was added")


class User(CamelModel):
    """
    Users collection schema
    Collection name: "user"
    """
    email: EmailStr
    first_name: str
    last_name: str
    password: str = Field(..., description="BCrypt hashed password")
    role: Literal["customer", "admin"] = "customer"
    is_blocked: bool = False
    is_email_verified: bool = False
    image: List[str] = Field(default_factory=list)
    cart: List[CartItem] = Field(default_factory=list)
    cart_version: int = 0


class RegisterInput(CamelModel):
    email: Annotated[EmailStr, BeforeValidator(normalize_email)]
    password: str = Field(..., min_length=1)
    first_name: NonEmpty
    last_name: NonEmpty
    image: ProfileImages = Field(..., min_length=1)


class LoginInput(CamelModel):
    email: NormalizedEmail
    password: str


class CheckEmailInput(CamelModel):
    email: Optional[NormalizedEmail] = None


class ProfileUpdate(CamelModel):
    first_name: Optional[NonEmpty] = None
    last_name: Optional[NonEmpty] = None
    image: Optional[ProfileImages] = None


class AddToCartInput(CamelModel):
    quantity: Optional[int] = 1


class SetCartQuantityInput(CamelModel):
    quantity: int


def user_response(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize_doc(doc)
    out.pop("password", None)
    out.pop("cartVersion", None)
    out["image"] = as_image_list(out.get("image"))
    return out
