import logging
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, List, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    ValidationError,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("cash", "pos", "transfer", "credit")
PaymentMethod = Literal["cash", "pos", "transfer", "credit"]
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


def _money(v: Any) -> Decimal:
    if v is None or v == "":
        return Decimal("0")
    try:
        d = Decimal(str(v))
    except (InvalidOperation, ValueError):
        raise ValueError(f"not a number: {v!r}")
    if not d.is_finite():
        raise ValueError(f"not a number: {v!r}")
    return d


def _count(v: Any) -> int:
    if v is None or v == "":
        return 0
    return int(_money(v))


def _opt_str(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


# ---------- Backend rows (normalized at the boundary) ----------

class StockItem(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    product_id: str = Field(validation_alias=AliasChoices("product_id", "productId", "id"))
    name: str = Field(default="", validation_alias=AliasChoices("productName", "product_name", "name"))
    sku: Optional[str] = None
    barcode: Optional[str] = None
    available: int = Field(
        default=0,
        validation_alias=AliasChoices("currentStock", "current_stock", "quantity", "available"),
    )
    unit_price: Decimal = Field(
        default=Decimal("0"),
        validation_alias=AliasChoices("sellingPrice", "selling_price", "shop_price", "price", "unit_price"),
    )
    category: Optional[str] = None

    @field_validator("product_id", mode="before")
    @classmethod
    def _product_id(cls, v):
        s = _opt_str(v)
        if s is None:
            raise ValueError("product id missing")
        return s

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v):
        return "" if v is None else str(v)

    @field_validator("sku", "barcode", "category", mode="before")
    @classmethod
    def _optional_text(cls, v):
        return _opt_str(v)

    @field_validator("available", mode="before")
    @classmethod
    def _available(cls, v):
        return max(0, _count(v))

    @field_validator("unit_price", mode="before")
    @classmethod
    def _price(cls, v):
        return max(Decimal("0"), _money(v))

    def matches_code(self, code: str) -> bool:
        code = code.strip().lower()
        return bool(code) and code in {c.lower() for c in (self.sku, self.barcode) if c}


class Customer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    phone: Optional[str] = None
    email: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, v):
        s = _opt_str(v)
        if s is None:
            raise ValueError("customer id missing")
        return s

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v):
        return "" if v is None else str(v)

    @field_validator("phone", "email", mode="before")
    @classmethod
    def _optional_text(cls, v):
        return _opt_str(v)


class SaleItem(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    product_id: Optional[str] = None
    product_name: str = Field(default="", validation_alias=AliasChoices("product_name", "productName", "name"))
    quantity: int = 0
    unit_price: Money = Decimal("0")
    total_price: Optional[Money] = None

    @field_validator("product_id", mode="before")
    @classmethod
    def _pid(cls, v):
        return _opt_str(v)

    @field_validator("product_name", mode="before")
    @classmethod
    def _pname(cls, v):
        return "" if v is None else str(v)

    @field_validator("quantity", mode="before")
    @classmethod
    def _qty(cls, v):
        return _count(v)

    @field_validator("unit_price", mode="before")
    @classmethod
    def _unit(cls, v):
        return _money(v)

    @field_validator("total_price", mode="before")
    @classmethod
    def _total(cls, v):
        return None if v in (None, "") else _money(v)

    @model_validator(mode="after")
    def _fill_total(self):
        if self.total_price is None:
            self.total_price = self.unit_price * self.quantity
        return self


class SaleRecord(BaseModel):
    """Sale as confirmed by the backend. Its totals are authoritative."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    sale_number: Optional[str] = None
    shop_name: Optional[str] = None
    staff_name: Optional[str] = None
    customer_name: Optional[str] = None
    created_at: Optional[str] = None
    payment_method: Optional[str] = None
    subtotal: Optional[Money] = None
    discount: Money = Field(default=Decimal("0"), validation_alias=AliasChoices("discount", "discount_amount"))
    total: Money = Field(default=Decimal("0"), validation_alias=AliasChoices("total", "total_amount"))
    items: List[SaleItem] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, v):
        s = _opt_str(v)
        if s is None:
            raise ValueError("sale id missing")
        return s

    @field_validator("sale_number", "shop_name", "staff_name", "customer_name", "created_at", "payment_method", mode="before")
    @classmethod
    def _optional_text(cls, v):
        return _opt_str(v)

    @field_validator("subtotal", mode="before")
    @classmethod
    def _subtotal(cls, v):
        return None if v in (None, "") else _money(v)

    @field_validator("discount", "total", mode="before")
    @classmethod
    def _amounts(cls, v):
        return _money(v)

    @field_validator("items", mode="before")
    @classmethod
    def _items(cls, v):
        return v if isinstance(v, list) else []


def unwrap(payload: Any) -> Any:
    """Backend answers either the bare value or ``{"data": value}``."""
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


def parse_stock_rows(payload: Any) -> List[StockItem]:
    rows = unwrap(payload)
    if not isinstance(rows, list):
        logger.warning("stock listing is not a list: %r", type(rows).__name__)
        return []
    out: List[StockItem] = []
    for row in rows:
        if not isinstance(row, dict):
            logger.warning("skipping malformed stock row: %r", row)
            continue
        try:
            out.append(StockItem.model_validate(row))
        except ValidationError as e:
            logger.warning("skipping malformed stock row %r: %s", row, e.errors()[0].get("msg"))
    return out


def parse_customers(payload: Any) -> List[Customer]:
    rows = unwrap(payload)
    if not isinstance(rows, list):
        return []
    out: List[Customer] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        try:
            out.append(Customer.model_validate(row))
        except ValidationError:
            logger.warning("skipping malformed customer row: %r", row)
    return out


def parse_sale(payload: Any) -> Optional[SaleRecord]:
    data = unwrap(payload)
    if not isinstance(data, dict):
        return None
    # some backends nest the record one more level: {"sale": {...}}
    if "id" not in data and isinstance(data.get("sale"), dict):
        data = data["sale"]
    try:
        return SaleRecord.model_validate(data)
    except ValidationError:
        logger.warning("unparseable sale record: %r", data)
        return None


# ---------- Cart value objects ----------

class DiscountSpec(BaseModel):
    kind: Literal["flat", "percent"] = "flat"
    value: Decimal = Field(default=Decimal("0"), ge=0)


class CheckoutItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: str
    quantity: int
    unit_price: Decimal


class CheckoutPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    shop_id: str
    customer_id: Optional[str] = None
    payment_method: str
    discount_amount: Decimal
    other_charges: Decimal
    items: tuple[CheckoutItem, ...]

    def to_json(self) -> dict:
        return {
            "shop_id": self.shop_id,
            "customer_id": self.customer_id,
            "payment_method": self.payment_method,
            "discount_amount": float(self.discount_amount),
            "other_charges": float(self.other_charges),
            "items": [
                {"product_id": i.product_id, "quantity": i.quantity, "unit_price": float(i.unit_price)}
                for i in self.items
            ],
        }


# ---------- Local API bodies ----------

class SessionOpenIn(BaseModel):
    shop_id: Optional[str] = None
    user_id: Optional[str] = None
    terminal_id: Optional[str] = None


class AddItemIn(BaseModel):
    product_id: str = Field(..., min_length=1)


class QuantityIn(BaseModel):
    quantity: int


class ChargesIn(BaseModel):
    amount: Decimal = Field(..., ge=0)


class CustomerIn(BaseModel):
    customer_id: Optional[str] = None


class PaymentMethodIn(BaseModel):
    method: PaymentMethod


class ScanIn(BaseModel):
    code: str = Field(..., min_length=1)
