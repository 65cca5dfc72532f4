import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pharmaflow.core.api_docs import error_responses
from pharmaflow.core.config import settings
from pharmaflow.core.deps import get_db
from pharmaflow.models.catalog import Category, Supplier
from pharmaflow.schemas.catalog import CategoryCreate, CategoryOut, SupplierCreate, SupplierOut

categories_router = APIRouter(prefix="/categories", tags=["catalog"])
suppliers_router = APIRouter(prefix="/suppliers", tags=["catalog"])


def _category_out(row: Category) -> CategoryOut:
    return CategoryOut(
        id=row.id,
        name=row.name,
        description=row.description,
        color=row.color,
        created_at=row.created_at,
    )


def _supplier_out(row: Supplier) -> SupplierOut:
    return SupplierOut(
        id=row.id,
        name=row.name,
        contact_person=row.contact_person,
        email=row.email,
        phone=row.phone,
        is_active=row.is_active,
        created_at=row.created_at,
    )


@categories_router.post(
    "",
    response_model=CategoryOut,
    status_code=201,
    summary="Create category",
    responses=error_responses(409, 422, 500),
)
def create_category(payload: CategoryCreate, db: Session = Depends(get_db)):
    existing = db.execute(
        select(Category.id).where(func.lower(Category.name) == payload.name.lower())
    ).scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=409, detail=f"Category '{payload.name}' already exists")

    category = Category(
        id=str(uuid.uuid4()),
        name=payload.name,
        description=payload.description,
        color=payload.color or settings.auto_category_color,
    )
    db.add(category)
    db.commit()
    db.refresh(category)
    return _category_out(category)


@categories_router.get(
    "",
    response_model=list[CategoryOut],
    summary="List categories",
    responses=error_responses(500),
)
def list_categories(db: Session = Depends(get_db)):
    rows = db.execute(select(Category).order_by(Category.name.asc())).scalars().all()
    return [_category_out(row) for row in rows]


@suppliers_router.post(
    "",
    response_model=SupplierOut,
    status_code=201,
    summary="Create supplier",
    responses=error_responses(409, 422, 500),
)
def create_supplier(payload: SupplierCreate, db: Session = Depends(get_db)):
    name = payload.name.strip()
    existing = db.execute(
        select(Supplier.id).where(func.lower(Supplier.name) == name.lower()).limit(1)
    ).scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=409, detail=f"Supplier '{name}' already exists")

    supplier = Supplier(
        id=str(uuid.uuid4()),
        name=name,
        contact_person=payload.contact_person,
        email=payload.email,
        phone=payload.phone,
        is_active=True,
    )
    db.add(supplier)
    db.commit()
    db.refresh(supplier)
    return _supplier_out(supplier)


@suppliers_router.get(
    "",
    response_model=list[SupplierOut],
    summary="List active suppliers",
    responses=error_responses(500),
)
def list_suppliers(db: Session = Depends(get_db)):
    rows = db.execute(
        select(Supplier).where(Supplier.is_active.is_(True)).order_by(Supplier.name.asc())
    ).scalars().all()
    return [_supplier_out(row) for row in rows]
