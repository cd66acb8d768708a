"""Product API: variants and the shipping measurements packages are built from."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from shipdesk.database import get_db
from shipdesk.models import Product
from shipdesk.schemas import PackageOverrides, ProductCreate, ProductOut, ProductUpdate
from shipdesk.services.auth import get_current_user
from shipdesk.services.packages import LineItem, build_packages, describe_defaults

router = APIRouter(prefix="/products", tags=["products"], dependencies=[Depends(get_current_user)])

MEASUREMENT_COLUMNS = (Product.weight_g, Product.length_cm, Product.width_cm, Product.height_cm)


async def _get_product(db: AsyncSession, product_id: UUID) -> Product:
    product = await db.get(Product, product_id)
    if not product:
        raise HTTPException(404, "Product not found")
    return product


@router.get("/", response_model=list[ProductOut])
async def list_products(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    q: Optional[str] = None,
    unmeasured: bool = Query(False, description="Only variants that will ship with default measurements"),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Product)
    if q:
        stmt = stmt.where(Product.title.ilike(f"%{q}%") | Product.sku.ilike(f"%{q}%"))
    if unmeasured:
        stmt = stmt.where(or_(*(col.is_(None) | (col <= 0) for col in MEASUREMENT_COLUMNS)))
    stmt = stmt.order_by(Product.sku).offset(skip).limit(limit)
    result = await db.execute(stmt)
    return result.scalars().all()


@router.post("/", response_model=ProductOut, status_code=201)
async def create_product(data: ProductCreate, db: AsyncSession = Depends(get_db)):
    existing = await db.execute(select(Product).where(Product.sku == data.sku))
    if existing.scalar_one_or_none():
        raise HTTPException(409, "Product with this SKU already exists")
    product = Product(**data.model_dump())
    db.add(product)
    await db.commit()
    await db.refresh(product)
    return product


@router.patch("/{product_id}", response_model=ProductOut)
async def update_product(product_id: UUID, data: ProductUpdate, db: AsyncSession = Depends(get_db)):
    """Set or correct a variant's weight and dimensions."""
    product = await _get_product(db, product_id)
    for key, val in data.model_dump(exclude_unset=True).items():
        setattr(product, key, val)
    await db.commit()
    await db.refresh(product)
    return product


@router.post("/{product_id}/package-preview")
async def package_preview(
    product_id: UUID,
    overrides: Optional[PackageOverrides] = None,
    quantity: int = Query(1, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """The carrier packages ``quantity`` units of this variant would ship as."""
    product = await _get_product(db, product_id)
    dims = product.shipping_dimensions
    item = LineItem(
        title=product.title,
        quantity=quantity,
        weight_g=dims["weight"],
        length_cm=dims["length"],
        width_cm=dims["width"],
        height_cm=dims["height"],
    )
    package_overrides = overrides.model_dump(exclude_none=True) if overrides else None
    return {
        "sku": product.sku,
        "uses_own_measurements": item.measurements() is not None,
        "package_defaults_used": describe_defaults(package_overrides),
        "packages": [p.to_payload() for p in build_packages([item], package_overrides)],
    }
