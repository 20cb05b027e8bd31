import logging
from datetime import date
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from financeflow.database import commit_or_raise
from financeflow.dependencies import get_profile, get_session
from financeflow.errors import ConflictError
from financeflow.models.schemas import Template, TemplateCreate, TemplateUpdate, TemplateUse, Transaction, TransactionCreate
from financeflow.models.sql import CategoryDB, PaymentMethodDB, TemplateDB
from financeflow.services.transactions import TransactionService

router = APIRouter(tags=["templates"])
logger = logging.getLogger(__name__)

DUPLICATE_NAME = "A template with this name already exists."


async def _get_owned(session: AsyncSession, template_id: int, user_id: str) -> TemplateDB:
    stmt = (
        select(TemplateDB)
        .where((TemplateDB.id == template_id) & (TemplateDB.user_id == user_id))
        .execution_options(populate_existing=True)
    )
    template = (await session.execute(stmt)).scalar_one_or_none()
    if not template:
        raise HTTPException(status_code=404, detail="Template not found or access denied")
    return template


async def _name_taken(session: AsyncSession, user_id: str, name: str, exclude_id: int | None = None) -> bool:
    stmt = select(TemplateDB.id).where((TemplateDB.user_id == user_id) & (TemplateDB.name == name))
    if exclude_id is not None:
        stmt = stmt.where(TemplateDB.id != exclude_id)
    return (await session.execute(stmt.limit(1))).scalar_one_or_none() is not None


async def _check_refs(session: AsyncSession, user_id: str, category_id: int | None, payment_method_id: int | None):
    if category_id is not None:
        category = await session.get(CategoryDB, category_id)
        if not category or category.user_id != user_id:
            raise HTTPException(status_code=400, detail="Invalid category. Please select a valid category.")
    if payment_method_id is not None:
        payment_method = await session.get(PaymentMethodDB, payment_method_id)
        if not payment_method or payment_method.user_id != user_id:
            raise HTTPException(
                status_code=400, detail="Invalid payment method. Please select a valid payment method."
            )


@router.get("/templates", response_model=List[Template])
async def get_templates(
    favorites_only: bool = False,
    category_id: int | None = None,
    payment_method_id: int | None = None,
    profile=Depends(get_profile),
    session: AsyncSession = Depends(get_session),
):
    stmt = select(TemplateDB).where(TemplateDB.user_id == profile.id)
    if favorites_only:
        stmt = stmt.where(TemplateDB.is_favorite == True)  # noqa: E712
    if category_id is not None:
        stmt = stmt.where(TemplateDB.category_id == category_id)
    if payment_method_id is not None:
        stmt = stmt.where(TemplateDB.payment_method_id == payment_method_id)
    stmt = stmt.order_by(desc(TemplateDB.is_favorite), TemplateDB.name)

    result = await session.execute(stmt)
    return result.scalars().all()


@router.get("/templates/{template_id}", response_model=Template)
async def get_template(template_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)):
    return await _get_owned(session, template_id, profile.id)


@router.post("/templates", response_model=Template, status_code=201)
async def create_template(
    data: TemplateCreate, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    if await _name_taken(session, profile.id, data.name):
        raise ConflictError(DUPLICATE_NAME)
    await _check_refs(session, profile.id, data.category_id, data.payment_method_id)
    tags = await TransactionService(session, profile).load_tags(data.tag_ids)

    template = TemplateDB(
        user_id=profile.id,
        name=data.name,
        amount=data.amount,
        category_id=data.category_id,
        payment_method_id=data.payment_method_id,
        description=data.description or None,
        is_favorite=data.is_favorite,
        tags=tags,
    )
    session.add(template)
    await commit_or_raise(session, DUPLICATE_NAME)
    return await _get_owned(session, template.id, profile.id)


@router.patch("/templates/{template_id}", response_model=Template)
async def update_template(
    template_id: int,
    data: TemplateUpdate,
    profile=Depends(get_profile),
    session: AsyncSession = Depends(get_session),
):
    template = await _get_owned(session, template_id, profile.id)
    fields = data.model_dump(exclude_unset=True)

    if data.name is not None and data.name != template.name:
        if await _name_taken(session, profile.id, data.name, exclude_id=template_id):
            raise ConflictError(DUPLICATE_NAME)
        template.name = data.name

    await _check_refs(session, profile.id, fields.get("category_id"), fields.get("payment_method_id"))

    # Explicit nulls clear the field: a null amount makes the template variable-priced
    for field in ("amount", "category_id", "payment_method_id"):
        if field in fields:
            setattr(template, field, fields[field])
    if "description" in fields:
        template.description = data.description or None
    if data.is_favorite is not None:
        template.is_favorite = data.is_favorite
    if data.tag_ids is not None:
        template.tags = await TransactionService(session, profile).load_tags(data.tag_ids)

    await commit_or_raise(session, DUPLICATE_NAME)
    return await _get_owned(session, template_id, profile.id)


@router.delete("/templates/{template_id}")
async def delete_template(
    template_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    template = await _get_owned(session, template_id, profile.id)
    await session.delete(template)
    await commit_or_raise(session)
    return {"status": "deleted"}


@router.post("/templates/{template_id}/favorite")
async def toggle_favorite(
    template_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    template = await _get_owned(session, template_id, profile.id)
    template.is_favorite = not template.is_favorite
    await commit_or_raise(session)
    return {"id": template.id, "is_favorite": template.is_favorite}


@router.post("/templates/{template_id}/transactions", response_model=Transaction, status_code=201)
async def create_transaction_from_template(
    template_id: int,
    data: TemplateUse,
    profile=Depends(get_profile),
    session: AsyncSession = Depends(get_session),
):
    template = await _get_owned(session, template_id, profile.id)

    amount = data.amount if data.amount is not None else template.amount
    if amount is None:
        raise HTTPException(
            status_code=400, detail="This template has variable pricing. Please provide an amount."
        )
    if template.category_id is None:
        raise HTTPException(
            status_code=400,
            detail="This template is incomplete. Please add a category to the template before creating a transaction.",
        )

    tx_data = TransactionCreate(
        amount=amount,
        type=template.category.type,
        category_id=template.category_id,
        payment_method_id=template.payment_method_id,
        date=data.date or date.today(),
        description=data.description or template.description,
    )

    service = TransactionService(session, profile)
    new_tx = await service.create(tx_data, extra_tags=list(template.tags))
    await commit_or_raise(session)
    logger.info(f"Transaction {new_tx.id} created from template {template_id}")
    return await service.get(new_tx.id)
