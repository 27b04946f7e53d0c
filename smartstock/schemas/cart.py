from pydantic import BaseModel, Field


class CartItemAdd(BaseModel):
    product_id: str
    quantity: int = Field(default=1, gt=0)


class CartItemUpdate(BaseModel):
    quantity: int = Field(ge=0)  # 0 removes the line


class CartItemOut(BaseModel):
    id: str
    user_id: str
    product_id: str
    quantity: int

    model_config = {"from_attributes": True}


class OrderLineOut(BaseModel):
    product_id: str
    quantity: int
    total_price: float


class OrderOut(BaseModel):
    order_id: str
    items: list[OrderLineOut]
    total_price: float
