"""
Stage items API — permits, approvals and invoices under a stage, subgroups under a lot.

The four resources share one shape: list filtered by parent id, create, and
update/delete addressed by the id in the request body.
"""
from decimal import Decimal
from typing import Optional, Type
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.api.crud import delete_row, get_or_404, insert_row, update_row
from app.api.deps import get_current_user, get_db, get_permissions
from app.db import Base
from app.models.orm_models import Approval, Invoice, LotSubgroup, Permit, User
from app.services.permissions import UserPermissions, require_delete, require_edit
from app.services.serialization import row_to_dict, rows_to_dicts


class IdBody(BaseModel):
    id: int


class PermitCreate(BaseModel):
    stage_id: int
    name: str
    permit_number: Optional[str] = None
    status: Optional[str] = None
    sort_order: Optional[int] = 0


class PermitUpdate(BaseModel):
    id: int
    stage_id: Optional[int] = None
    name: Optional[str] = None
    permit_number: Optional[str] = None
    status: Optional[str] = None
    sort_order: Optional[int] = None


class ApprovalCreate(BaseModel):
    stage_id: int
    name: str
    approval_number: Optional[str] = None
    status: Optional[str] = None
    sort_order: Optional[int] = 0


class ApprovalUpdate(BaseModel):
    id: int
    stage_id: Optional[int] = None
    name: Optional[str] = None
    approval_number: Optional[str] = None
    status: Optional[str] = None
    sort_order: Optional[int] = None


class InvoiceCreate(BaseModel):
    stage_id: int
    invoice_number: str
    amount: Optional[Decimal] = None
    status: Optional[str] = None
    sort_order: Optional[int] = 0


class InvoiceUpdate(BaseModel):
    id: int
    stage_id: Optional[int] = None
    invoice_number: Optional[str] = None
    amount: Optional[Decimal] = None
    status: Optional[str] = None
    sort_order: Optional[int] = None


class SubgroupCreate(BaseModel):
    lot_id: int
    name: str
    description: Optional[str] = None
    sort_order: Optional[int] = 0


class SubgroupUpdate(BaseModel):
    id: int
    lot_id: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    sort_order: Optional[int] = None


def build_item_router(
    prefix: str,
    model: Type[Base],
    parent_field: str,
    create_schema: Type[BaseModel],
    update_schema: Type[BaseModel],
    label: str,
) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=["Stage Items"])
    parent_column = getattr(model, parent_field)

    @router.get("")
    async def list_items(
        parent_id: Optional[int] = Query(None, alias=parent_field),
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ):
        stmt = select(model).order_by(model.sort_order, model.id)
        if parent_id is not None:
            stmt = stmt.where(parent_column == parent_id)
        result = await db.execute(stmt)
        return rows_to_dicts(result.scalars().all())

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_item(
        req: create_schema,
        perms: UserPermissions = Depends(get_permissions),
        db: AsyncSession = Depends(get_db),
    ):
        require_edit(perms)
        row = await insert_row(db, model, req.model_dump(exclude_unset=True))
        return row_to_dict(row)

    @router.put("")
    async def update_item(
        req: update_schema,
        perms: UserPermissions = Depends(get_permissions),
        db: AsyncSession = Depends(get_db),
    ):
        require_edit(perms)
        row = await get_or_404(db, model, req.id, label)
        row = await update_row(db, row, req.model_dump(exclude_unset=True, exclude={"id"}))
        return row_to_dict(row)

    @router.delete("")
    async def delete_item(
        req: IdBody,
        perms: UserPermissions = Depends(get_permissions),
        db: AsyncSession = Depends(get_db),
    ):
        require_delete(perms)
        row = await get_or_404(db, model, req.id, label)
        await delete_row(db, row)
        return {"success": True}

    return router


permits_router = build_item_router("/api/permits", Permit, "stage_id", PermitCreate, PermitUpdate, "Permit")
approvals_router = build_item_router("/api/approvals", Approval, "stage_id", ApprovalCreate, ApprovalUpdate, "Approval")
invoices_router = build_item_router("/api/invoices", Invoice, "stage_id", InvoiceCreate, InvoiceUpdate, "Invoice")
lot_subgroups_router = build_item_router(
    "/api/lot-subgroups", LotSubgroup, "lot_id", SubgroupCreate, SubgroupUpdate, "Lot subgroup"
)
