from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

QuotationStatus = Literal["To Send", "Sent", "Won", "Lost", "Rejected"]
InvoiceStatus = Literal["To Send", "Sent", "Partly Paid", "Fully Paid"]
StatementStatus = Literal["Draft", "Sent"]
ProductType = Literal["Physical", "Service", "Digital Download"]
Role = Literal["Super Admin", "Admin", "User"]


# Clients
class ClientIn(BaseModel):
    client_name: str = Field(..., min_length=1)
    client_email: EmailStr
    client_company: Optional[str] = None
    client_phone: Optional[str] = None
    client_address: Optional[str] = None
    client_brn: Optional[str] = None


class ClientUpdate(BaseModel):
    client_name: Optional[str] = Field(None, min_length=1)
    client_email: Optional[EmailStr] = None
    client_company: Optional[str] = None
    client_phone: Optional[str] = None
    client_address: Optional[str] = None
    client_brn: Optional[str] = None


# Products
class ProductIn(BaseModel):
    name: str = Field(..., min_length=2)
    type: ProductType = "Physical"
    description: str = ""
    unit_price: float = Field(..., ge=0)
    bulk_price: float = Field(0, ge=0)
    rrp: Optional[float] = Field(None, ge=0, description="Defaults to unit price + 20%")
    min_order: int = Field(1, ge=1)
    inventory: int = Field(0, ge=0, description="Only meaningful for Physical products")


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2)
    type: Optional[ProductType] = None
    description: Optional[str] = None
    unit_price: Optional[float] = Field(None, ge=0)
    bulk_price: Optional[float] = Field(None, ge=0)
    rrp: Optional[float] = Field(None, ge=0)
    min_order: Optional[int] = Field(None, ge=1)
    inventory: Optional[int] = Field(None, ge=0)


# Quotations / invoices
class DocumentItemIn(BaseModel):
    id: Optional[str] = None
    product_type_id: str
    description: Optional[str] = None
    quantity: float = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)


class QuotationIn(BaseModel):
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[EmailStr] = None
    client_company: Optional[str] = None
    client_phone: Optional[str] = None
    client_address: Optional[str] = None
    client_brn: Optional[str] = None
    items: List[DocumentItemIn] = Field(..., min_length=1)
    discount: float = Field(0, ge=0)
    currency: Optional[str] = None
    notes: Optional[str] = None
    status: QuotationStatus = "To Send"


class QuotationUpdate(BaseModel):
    client_id: Optional[str] = None
    items: Optional[List[DocumentItemIn]] = Field(None, min_length=1)
    discount: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None
    notes: Optional[str] = None
    expiry_date: Optional[datetime] = None


class QuotationStatusChange(BaseModel):
    status: QuotationStatus


class InvoiceIn(BaseModel):
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[EmailStr] = None
    client_company: Optional[str] = None
    client_phone: Optional[str] = None
    client_address: Optional[str] = None
    client_brn: Optional[str] = None
    items: List[DocumentItemIn] = Field(..., min_length=1)
    discount: float = Field(0, ge=0)
    currency: Optional[str] = None
    notes: Optional[str] = None


class InvoiceUpdate(BaseModel):
    notes: Optional[str] = None
    due_date: Optional[datetime] = None


class InvoiceStatusChange(BaseModel):
    status: InvoiceStatus


class PaymentIn(BaseModel):
    amount: float
    payment_method: str = "Cash"


# Statements
class StatementIn(BaseModel):
    client_id: Optional[str] = None
    client_name: str
    period: str
    amount: float = Field(0, ge=0)
    status: StatementStatus = "Draft"


class StatementGenerate(BaseModel):
    client_name: str


class StatementStatusChange(BaseModel):
    status: StatementStatus


# Users and onboarding
class UserCreate(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Role = "User"
    company_id: Optional[str] = None


class BusinessDetailsIn(BaseModel):
    business_name: str
    business_address: str
    brn: str
    telephone: str
    position: str
    email: EmailStr
    vat_no: Optional[str] = None
    mobile_phone: Optional[str] = None
    whatsapp: Optional[str] = None
    facebook_page: Optional[str] = None
    instagram: Optional[str] = None
    tiktok: Optional[str] = None
    website: Optional[str] = None


class OnboardingIn(BaseModel):
    business: BusinessDetailsIn
    products: List[ProductIn] = []


class ProfileUpdate(BaseModel):
    business_name: Optional[str] = None
    business_address: Optional[str] = None
    brn: Optional[str] = None
    vat_no: Optional[str] = None
    telephone: Optional[str] = None
    website: Optional[str] = None
