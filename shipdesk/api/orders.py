"""Order API: the minimal order store the shipping desk works against."""

import uuid as uuid_mod
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from shipdesk.database import get_db
from shipdesk.models import Order, OrderItem, Product
from shipdesk.schemas import OrderCreate, OrderOut
from shipdesk.services.auth import get_current_user

router = APIRouter(prefix="/orders", tags=["orders"], dependencies=[Depends(get_current_user)])


def _generate_order_number() -> str:
    return f"ORD-{uuid_mod.uuid4().hex[:8].upper()}"


async def _load(db: AsyncSession, order_id: UUID) -> Order | None:
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.items))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


@router.get("/", response_model=list[OrderOut])
async def list_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    status: str | None = None,
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Order).options(selectinload(Order.items))
    if status:
        stmt = stmt.where(Order.status == status)
    stmt = stmt.order_by(Order.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    return result.scalars().all()


@router.post("/", response_model=OrderOut, status_code=201)
async def create_order(data: OrderCreate, db: AsyncSession = Depends(get_db)):
    order_number = data.order_number or _generate_order_number()
    existing = await db.execute(select(Order).where(Order.order_number == order_number))
    if existing.scalar_one_or_none():
        raise HTTPException(409, "Order with this number already exists")

    order = Order(
        order_number=order_number,
        customer_name=data.customer_name,
        customer_email=data.customer_email,
        customer_phone=data.customer_phone,
        shipping_address=data.shipping_address.model_dump(),
        meta=dict(data.metadata),
        notes=data.notes,
    )
    db.add(order)
    await db.flush()

    for item in data.items:
        # Link the variant by SKU so its measurements feed the package builder
        result = await db.execute(select(Product).where(Product.sku == item.sku))
        product = result.scalar_one_or_none()

        db.add(OrderItem(
            order_id=order.id,
            product_id=product.id if product else None,
            sku=item.sku,
            title=item.title or (product.title if product else ""),
            quantity=item.quantity,
            unit_price=item.unit_price,
        ))

    await db.commit()
    return await _load(db, order.id)


@router.get("/{order_id}", response_model=OrderOut)
async def get_order(order_id: UUID, db: AsyncSession = Depends(get_db)):
    order = await _load(db, order_id)
    if not order:
        raise HTTPException(404, "Order not found")
    return order
