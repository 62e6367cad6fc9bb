"""
Database Schemas for the secondhand marketplace

Each Pydantic model with a collection comment maps to a MongoDB collection
named after the lowercased class name (ShippingAddress -> "shippingaddress").
The *Create / *Update models are request payloads.
"""
import re
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, HttpUrl, field_validator, model_validator

Role = Literal["admin", "user"]
Condition = Literal["new-like", "very-good", "good", "fair"]
ProductStatus = Literal["draft", "pending", "approved", "rejected"]
Gender = Literal["male", "female", "unisex"]

MAX_CATEGORY_LEVEL = 3


class _Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)


# ---------- Users ----------

class Address(BaseModel):
    province: Optional[str] = None
    district: Optional[str] = None
    ward: Optional[str] = None
    street: Optional[str] = None


class Profile(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    phone_verified: bool = False
    email_verified: bool = False
    avatar: Optional[str] = None
    address: Address = Field(default_factory=Address)


class ContactMethods(BaseModel):
    internal_chat: bool = True
    phone: bool = False
    show_phone: bool = False


class PaymentMethods(BaseModel):
    e_wallet: bool = False
    bank_transfer: bool = False
    bank_account: Optional[str] = None


class Agreements(BaseModel):
    terms_accepted: bool = False
    no_prohibited_items: bool = False


class SellerInfo(BaseModel):
    shop_name: Optional[str] = None
    trading_area: Optional[str] = None
    contact_methods: ContactMethods = Field(default_factory=ContactMethods)
    payment_methods: PaymentMethods = Field(default_factory=PaymentMethods)
    agreements: Agreements = Field(default_factory=Agreements)


# Users collection
class User(_Document):
    email: EmailStr
    password_hash: str = Field(..., min_length=10)
    role: Role = "user"
    is_locked: bool = False
    profile: Profile = Field(default_factory=Profile)
    seller_info: SellerInfo = Field(default_factory=SellerInfo)


# ---------- Catalogue ----------

# Categories collection
class Category(_Document):
    name: str = Field(..., min_length=2, max_length=60)
    slug: str
    parent_id: Optional[ObjectId] = None
    level: int = Field(0, ge=0, le=MAX_CATEGORY_LEVEL)
    path: str
    description: Optional[str] = Field(None, max_length=500)
    is_active: bool = True
    sort_order: int = Field(0, ge=0, le=9999)
    created_by: ObjectId


# Products collection
class Product(_Document):
    title: str
    description: Optional[str] = None
    category_id: ObjectId
    brand: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None
    material: Optional[str] = None
    gender: Optional[Gender] = None
    style: Optional[str] = None
    price: float = Field(..., gt=0)
    condition: Condition
    defects: Optional[str] = None
    defect_images: List[str] = Field(default_factory=list)
    images: List[str] = Field(..., min_length=1)
    quantity: int = Field(1, ge=0)
    seller_id: ObjectId
    authenticity: Optional[bool] = None
    status: ProductStatus = "pending"
    is_available: bool = True


# ---------- Cart ----------

class CartItem(_Document):
    product_id: ObjectId
    quantity: int = Field(1, ge=1)


# Carts collection, one per user
class Cart(_Document):
    user_id: ObjectId
    items: List[CartItem] = Field(default_factory=list)


# Shipping addresses collection
class ShippingAddress(_Document):
    user_id: ObjectId
    full_name: str
    phone: str
    province: str
    district: str
    ward: str
    street: Optional[str] = None
    note: Optional[str] = None
    is_default: bool = False
    is_default_pickup: bool = False


# ---------- Request payloads ----------

class RegisterPayload(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginPayload(BaseModel):
    email: EmailStr
    password: str


class CategoryCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=2, max_length=60)
    parent_id: Optional[str] = None
    description: Optional[str] = Field(None, max_length=500)
    sort_order: int = Field(0, ge=0, le=9999)
    is_active: bool = True

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("name")
    @classmethod
    def name_has_letter_or_digit(cls, v: str) -> str:
        if not re.search(r"[^\W_]", v):
            raise ValueError("Category name must contain at least one letter or digit")
        return v

    @field_validator("parent_id", mode="before")
    @classmethod
    def empty_parent_is_root(cls, v):
        return None if v == "" else v


class ProductCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    category_id: str = Field(..., min_length=1)
    brand: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None
    material: Optional[str] = None
    gender: Optional[Gender] = None
    style: Optional[str] = None
    price: float = Field(..., gt=0)
    condition: Condition
    defects: Optional[str] = None
    defect_images: List[HttpUrl] = Field(default_factory=list)
    images: List[HttpUrl] = Field(..., min_length=1)
    quantity: int = Field(1, ge=0)
    authenticity: Optional[bool] = None

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v):
        return v.strip() if isinstance(v, str) else v

    @model_validator(mode="after")
    def check_defects(self):
        has_defects = bool(self.defects and self.defects.strip())
        if self.condition == "fair" and not has_defects:
            raise ValueError("Defects is required when condition is 'fair'")
        if has_defects and not self.defect_images:
            raise ValueError("At least one defect image is required when defects are specified")
        return self


class CartItemAdd(BaseModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = 1


class CartItemUpdate(BaseModel):
    quantity: int


class AddressIn(BaseModel):
    province: str = Field(..., min_length=1)
    district: str = Field(..., min_length=1)
    ward: str = Field(..., min_length=1)
    street: Optional[str] = None


class BasicInfoUpdate(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    avatar: Optional[str] = None
    address: AddressIn


class ContactMethodsUpdate(BaseModel):
    internal_chat: Optional[bool] = None
    phone: Optional[bool] = None
    show_phone: Optional[bool] = None


class PaymentMethodsUpdate(BaseModel):
    e_wallet: Optional[bool] = None
    bank_transfer: Optional[bool] = None
    bank_account: Optional[str] = None


class AgreementsUpdate(BaseModel):
    terms_accepted: Optional[bool] = None
    no_prohibited_items: Optional[bool] = None


class SellerInfoUpdate(BaseModel):
    shop_name: Optional[str] = None
    trading_area: Optional[str] = None
    contact_methods: Optional[ContactMethodsUpdate] = None
    payment_methods: Optional[PaymentMethodsUpdate] = None
    agreements: Optional[AgreementsUpdate] = None


class ShippingAddressCreate(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    province: str = Field(..., min_length=1)
    district: str = Field(..., min_length=1)
    ward: str = Field(..., min_length=1)
    street: Optional[str] = None
    note: Optional[str] = None
    is_default: Optional[bool] = None
    is_default_pickup: Optional[bool] = None


class ShippingAddressUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = Field(None, min_length=1)
    province: Optional[str] = Field(None, min_length=1)
    district: Optional[str] = Field(None, min_length=1)
    ward: Optional[str] = Field(None, min_length=1)
    street: Optional[str] = None
    note: Optional[str] = None
    is_default: Optional[bool] = None
    is_default_pickup: Optional[bool] = None
