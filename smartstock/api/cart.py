from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.ext.asyncio import AsyncSession

from smartstock.database import get_db
from smartstock.errors import NotFoundError
from smartstock.schemas.cart import CartItemAdd, CartItemOut, CartItemUpdate, OrderOut
from smartstock.services import cart_service

router = APIRouter(prefix="/cart", tags=["Cart"])


@router.get("/{user_id}", response_model=list[CartItemOut])
async def get_cart(user_id: str, db: AsyncSession = Depends(get_db)):
    return await cart_service.get_cart(db, user_id)


@router.post("/{user_id}/items", response_model=CartItemOut, status_code=201)
async def add_item(user_id: str, data: CartItemAdd, db: AsyncSession = Depends(get_db)):
    try:
        return await cart_service.add_to_cart(db, user_id, data.product_id, data.quantity)
    except NotFoundError as e:
        raise HTTPException(404, str(e))


@router.put("/{user_id}/items/{product_id}", response_model=CartItemOut | None)
async def update_item(user_id: str, product_id: str, data: CartItemUpdate, db: AsyncSession = Depends(get_db)):
    try:
        return await cart_service.update_cart_quantity(db, user_id, product_id, data.quantity)
    except NotFoundError as e:
        raise HTTPException(404, str(e))


@router.delete("/{user_id}/items/{product_id}", status_code=204)
async def remove_item(user_id: str, product_id: str, db: AsyncSession = Depends(get_db)):
    try:
        await cart_service.remove_from_cart(db, user_id, product_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    return Response(status_code=204)


@router.post("/{user_id}/checkout", response_model=OrderOut)
async def checkout(user_id: str, db: AsyncSession = Depends(get_db)):
    """Place an order for everything in the cart. Safe to retry after a 503."""
    try:
        return await cart_service.place_order(db, user_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
