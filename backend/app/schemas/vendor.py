"""Pydantic schemas for vendor operations"""
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class CreateCustomerRequest(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None


class SetupIntentRequest(BaseModel):
    customer_id: str


class CreateInvoiceRequest(BaseModel):
    customer_id: str
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=500)


class SubscribeRequest(BaseModel):
    payment_method_id: str


class PayoutRequest(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
