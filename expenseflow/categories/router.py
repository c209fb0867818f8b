"""Categories router — catalog reads (everyone) and writes (system admins)."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from expenseflow.auth.dependencies import Actor, get_current_actor, require_role
from expenseflow.categories.schemas import CategoryCreate, CategoryListResponse, CategoryOut
from expenseflow.categories.service import CategoryService
from expenseflow.common.constants import UserRole
from expenseflow.database import get_db

router = APIRouter(prefix="", tags=["categories"])


@router.get("/", response_model=CategoryListResponse)
async def list_categories(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    categories = await CategoryService.list_active(db)
    return CategoryListResponse(data=[CategoryOut.model_validate(c) for c in categories])


@router.post("/", response_model=CategoryOut, status_code=201)
async def create_category(
    body: CategoryCreate,
    actor: Actor = Depends(require_role(UserRole.system_admin)),
    db: AsyncSession = Depends(get_db),
):
    """Introduce a category (benefit budgets are back-filled)."""
    category = await CategoryService.create_category(
        db,
        actor.id,
        name=body.name,
        expense_type=body.expense_type,
        default_allocation=body.default_allocation,
        requires_receipt=body.requires_receipt,
    )
    await db.commit()
    return CategoryOut.model_validate(category)


@router.post("/{category_id}/retire", response_model=CategoryOut)
async def retire_category(
    category_id: uuid.UUID,
    actor: Actor = Depends(require_role(UserRole.system_admin)),
    db: AsyncSession = Depends(get_db),
):
    category = await CategoryService.retire_category(db, actor.id, category_id)
    await db.commit()
    return CategoryOut.model_validate(category)
