from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class GstSettingsDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    gstEnabled: Optional[bool] = None
    gstRate: Optional[Decimal] = None
    gstIncluded: bool = False
    gstNumber: Optional[str] = None


class CreateOrderItemDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    productName: Optional[str] = None
    photoUrl: Optional[str] = None
    quantity: int = 1
    pricePerDay: Decimal


class CreateOrderDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    customerID: str
    branchID: Optional[str] = None
    staffID: Optional[str] = None
    invoiceNumber: Optional[str] = None
    startDate: datetime
    endDate: datetime
    rentalDays: Optional[int] = None
    securityDeposit: Optional[Decimal] = None
    gst: Optional[GstSettingsDto] = None
    items: List[CreateOrderItemDto] = []


class UpdateOrderDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    customerID: Optional[str] = None
    invoiceNumber: Optional[str] = None
    startDate: datetime
    endDate: datetime
    rentalDays: Optional[int] = None
    securityDeposit: Optional[Decimal] = None
    items: List[CreateOrderItemDto] = []


class QuoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    startDate: datetime
    endDate: datetime
    rentalDays: Optional[int] = None
    gst: Optional[GstSettingsDto] = None
    items: List[CreateOrderItemDto] = []


class ItemReturnDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    itemID: int
    returnedQuantity: int = 0
    damageCost: Optional[Decimal] = None
    damageDescription: Optional[str] = None
    missingNote: Optional[str] = None
    actualReturnDate: Optional[datetime] = None
    undo: bool = False


class ProcessReturnRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    operatorUserID: Optional[str] = None
    actualReturnDate: Optional[datetime] = None
    lateFee: Optional[Decimal] = None
    items: List[ItemReturnDto] = []


class UpdateItemQuantityRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    quantity: int


class UpdateItemDamageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    damageCost: Optional[Decimal] = None
    damageDescription: Optional[str] = None


class LateFeeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    lateFee: Decimal


class CancelOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    reason: Optional[str] = None
