from __future__ import annotations

from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, EmailStr
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def now_utc() -> datetime:
    return datetime.now(UTC)


class AssignmentStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    COMPLETED = "completed"


class ContractStatus(StrEnum):
    ACTIVE = "active"
    EXPIRED = "expired"
    TERMINATED = "terminated"


class BillingCycle(StrEnum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Tenant(SQLModel, table=True):
    __tablename__ = "tenants"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    email: str | None = Field(default=None, unique=True)
    phone: str | None = None
    address: str | None = None
    logo: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str | None = Field(default=None, foreign_key="tenants.id", index=True)
    client_id: str | None = Field(default=None, foreign_key="clients.id", index=True)
    name: str | None = None
    email: str = Field(index=True, unique=True)
    # Stored as plain text so rows written under older role names stay readable.
    role: str = Field(index=True)
    password_hash: str
    avatar: str | None = None
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Client(SQLModel, table=True):
    __tablename__ = "clients"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    name: str = Field(index=True)
    phone: str | None = None
    address: str | None = None
    branch_id: str | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Branch(SQLModel, table=True):
    __tablename__ = "branches"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    client_id: str = Field(foreign_key="clients.id", index=True)
    name: str = Field(index=True)
    address: str | None = None
    supervisor_id: str | None = Field(default=None, foreign_key="users.id")
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Assignment(SQLModel, table=True):
    __tablename__ = "assignments"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    employee_id: str = Field(foreign_key="users.id", index=True)
    client_id: str = Field(foreign_key="clients.id", index=True)
    start_date: date | None = None
    end_date: date | None = None
    status: AssignmentStatus = Field(default=AssignmentStatus.ACTIVE)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Contract(SQLModel, table=True):
    __tablename__ = "contracts"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    client_id: str = Field(foreign_key="clients.id", index=True)
    start_date: date | None = None
    end_date: date | None = None
    terms: str | None = None
    status: ContractStatus = Field(default=ContractStatus.ACTIVE)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Invoice(SQLModel, table=True):
    __tablename__ = "invoices"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    contract_id: str = Field(foreign_key="contracts.id", index=True)
    amount_cents: int = Field(default=0)
    due_date: date | None = None
    paid: bool = Field(default=False)
    paid_at: datetime | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class SubscriptionPlan(SQLModel, table=True):
    __tablename__ = "subscription_plans"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    description: str | None = None
    price_cents: int = Field(default=0)
    billing_cycle: BillingCycle = Field(default=BillingCycle.MONTHLY)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Subscription(SQLModel, table=True):
    __tablename__ = "subscriptions"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    plan_id: str = Field(foreign_key="subscription_plans.id", index=True)
    start_date: date | None = None
    end_date: date | None = None
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class UpdateModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class RegisterRequest(BaseModel):
    tenant_name: str
    name: str | None = None
    email: EmailStr
    password: str = PydanticField(min_length=8)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime


class PrincipalRead(BaseModel):
    id: str
    role: str
    tenant_id: str | None = None
    client_id: str | None = None
    is_active: bool


class PasswordChangeRequest(BaseModel):
    current_password: str | None = None
    new_password: str = PydanticField(min_length=8)


class TenantCreate(BaseModel):
    name: str
    email: EmailStr | None = None
    phone: str | None = None
    address: str | None = None
    logo: str | None = None


class TenantUpdate(UpdateModel):
    name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    address: str | None = None
    logo: str | None = None


class TenantRead(ORMReadModel):
    id: str
    name: str
    email: str | None
    phone: str | None
    address: str | None
    logo: str | None
    created_at: datetime


class UserCreate(BaseModel):
    email: EmailStr
    password: str = PydanticField(min_length=8)
    role: str
    name: str | None = None
    tenant_id: str | None = None
    client_id: str | None = None
    is_active: bool = True


class UserUpdate(UpdateModel):
    name: str | None = None
    email: EmailStr | None = None
    avatar: str | None = None


class UserRead(ORMReadModel):
    id: str
    tenant_id: str | None
    client_id: str | None
    name: str | None
    email: str
    role: str
    avatar: str | None
    is_active: bool
    created_at: datetime


class ClientCreate(BaseModel):
    tenant_id: str
    name: str
    phone: str | None = None
    address: str | None = None
    branch_id: str | None = None


class ClientUpdate(UpdateModel):
    name: str | None = None
    phone: str | None = None
    address: str | None = None
    branch_id: str | None = None


class ClientRead(ORMReadModel):
    id: str
    tenant_id: str
    name: str
    phone: str | None
    address: str | None
    branch_id: str | None
    created_at: datetime


class BranchCreate(BaseModel):
    client_id: str
    name: str
    address: str | None = None
    supervisor_id: str | None = None


class BranchUpdate(UpdateModel):
    name: str | None = None
    address: str | None = None
    supervisor_id: str | None = None


class BranchRead(ORMReadModel):
    id: str
    tenant_id: str
    client_id: str
    name: str
    address: str | None
    supervisor_id: str | None
    created_at: datetime


class AssignmentCreate(BaseModel):
    employee_id: str
    client_id: str
    start_date: date | None = None
    end_date: date | None = None
    status: AssignmentStatus = AssignmentStatus.ACTIVE


class AssignmentUpdate(UpdateModel):
    employee_id: str | None = None
    client_id: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    status: AssignmentStatus | None = None


class AssignmentRead(ORMReadModel):
    id: str
    employee_id: str
    client_id: str
    start_date: date | None
    end_date: date | None
    status: AssignmentStatus
    created_at: datetime


class ContractCreate(BaseModel):
    client_id: str
    start_date: date | None = None
    end_date: date | None = None
    terms: str | None = None
    status: ContractStatus = ContractStatus.ACTIVE


class ContractUpdate(UpdateModel):
    start_date: date | None = None
    end_date: date | None = None
    terms: str | None = None
    status: ContractStatus | None = None


class ContractRead(ORMReadModel):
    id: str
    tenant_id: str
    client_id: str
    start_date: date | None
    end_date: date | None
    terms: str | None
    status: ContractStatus
    created_at: datetime


class InvoiceCreate(BaseModel):
    contract_id: str
    amount_cents: int = PydanticField(ge=0)
    due_date: date | None = None


class InvoiceUpdate(UpdateModel):
    amount_cents: int | None = PydanticField(default=None, ge=0)
    due_date: date | None = None
    paid: bool | None = None


class InvoiceRead(ORMReadModel):
    id: str
    contract_id: str
    amount_cents: int
    due_date: date | None
    paid: bool
    paid_at: datetime | None
    created_at: datetime


class PlanCreate(BaseModel):
    name: str
    description: str | None = None
    price_cents: int = PydanticField(ge=0)
    billing_cycle: BillingCycle = BillingCycle.MONTHLY


class PlanUpdate(UpdateModel):
    name: str | None = None
    description: str | None = None
    price_cents: int | None = PydanticField(default=None, ge=0)
    billing_cycle: BillingCycle | None = None


class PlanRead(ORMReadModel):
    id: str
    name: str
    description: str | None
    price_cents: int
    billing_cycle: BillingCycle
    created_at: datetime


class SubscriptionCreate(BaseModel):
    tenant_id: str
    plan_id: str
    start_date: date | None = None
    end_date: date | None = None
    is_active: bool = True


class SubscriptionUpdate(UpdateModel):
    plan_id: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    is_active: bool | None = None


class SubscriptionRead(ORMReadModel):
    id: str
    tenant_id: str
    plan_id: str
    start_date: date | None
    end_date: date | None
    is_active: bool
    created_at: datetime


class ActivityLogRead(BaseModel):
    id: str
    tenant_id: str
    actor_id: str | None
    actor_name: str | None = None
    actor_email: str | None = None
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime
    detail: dict[str, Any]


class CurrentPlanRead(BaseModel):
    subscription_id: str
    plan_id: str
    name: str


class DashboardMetricsRead(BaseModel):
    tenants: int | None = None
    clients: int | None = None
    employees: int | None = None
    supervisors: int | None = None
    branches: int | None = None
    plan: CurrentPlanRead | None = None
