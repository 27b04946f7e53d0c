"""External demand estimates for products with too little sales history.

An :class:`Estimator` turns an :class:`EstimationContext` into a number of
units expected over the horizon, or ``None`` when it has nothing usable. The
forecaster treats every answer as advisory.
"""

import logging
import re
from typing import Protocol

import httpx
from pydantic import BaseModel

from smartstock.config import settings
from smartstock.errors import EstimationError

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


class ComparableProduct(BaseModel):
    title: str
    price: float
    discount: float = 0.0
    sales_velocity: float = 0.0
    total_sold: int = 0


class EstimationContext(BaseModel):
    product_title: str
    categories: list[str] = []
    price: float
    discount: float = 0.0
    current_stock: int
    horizon_days: int
    comparables: list[ComparableProduct] = []


class Estimator(Protocol):
    async def estimate(self, context: EstimationContext) -> float | None: ...


def build_forecast_prompt(context: EstimationContext) -> str:
    categories = ", ".join(context.categories) or "Unknown"
    if context.comparables:
        comparable_lines = "\n".join(
            f"- {p.title}: Price ${p.price}, Sales velocity: {p.sales_velocity} units/day, Total sold: {p.total_sold}"
            for p in context.comparables
        )
    else:
        comparable_lines = "- No comparable products available."

    return (
        "As an AI inventory management assistant, help predict the demand for the next "
        f"{context.horizon_days} days for this product:\n\n"
        f"Product: {context.product_title}\n"
        f"Category: {categories}\n"
        f"Price: ${context.price} ({context.discount}% discount if applicable)\n"
        f"Current Stock: {context.current_stock}\n\n"
        "This product has limited historical sales data.\n\n"
        "Similar products in the same category have the following metrics:\n"
        f"{comparable_lines}\n\n"
        "Based on this information, predict the total demand for the next "
        f"{context.horizon_days} days.\n"
        "Provide just the numeric forecast value as your answer, with no additional text."
    )


def parse_estimate(text: str | None) -> float | None:
    """First number in a free-text reply, or None."""
    if not text:
        return None
    match = _NUMBER_RE.search(text)
    if not match:
        return None
    return float(match.group(0))


class GeminiEstimator:
    """Asks Gemini's ``generateContent`` endpoint for a demand figure."""

    def __init__(
        self,
        api_key: str,
        model: str = settings.GEMINI_MODEL,
        base_url: str = settings.GEMINI_API_URL,
        timeout: float = settings.ESTIMATOR_TIMEOUT_SECONDS,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def generate(self, prompt: str) -> str:
        url = f"{self.base_url}/{self.model}:generateContent"
        payload = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(url, json=payload, headers={"x-goog-api-key": self.api_key})
                resp.raise_for_status()
                body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise EstimationError(f"Gemini request failed: {e}") from e

        try:
            return body["candidates"][0]["content"]["parts"][0]["text"].strip()
        except (KeyError, IndexError, TypeError) as e:
            raise EstimationError("No forecast generated by AI") from e

    async def estimate(self, context: EstimationContext) -> float | None:
        reply = await self.generate(build_forecast_prompt(context))
        value = parse_estimate(reply)
        if value is None:
            logger.info("Estimator reply had no number for %s: %r", context.product_title, reply[:80])
        return value


def get_estimator() -> Estimator | None:
    if not settings.GEMINI_API_KEY:
        return None
    return GeminiEstimator(settings.GEMINI_API_KEY)
