"""
Rate Resolver - finds the price of a number inside a rate deck

Longest-prefix match over the deck's rates, first restricted to the number's
country and type, then over the whole deck as a fallback.
"""
import logging
import re
from datetime import datetime
from typing import Optional, List, Dict, Iterable
from sqlalchemy import select
from app.database.connection import AsyncSessionLocal
from app.models.number_rate import NumberRate, NumberRateDeck, RateDeckAssignment
from app.utils.dates import utc_now, as_utc

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s")


def normalize_for_matching(value: str) -> str:
    """Strip a leading + and all whitespace"""
    if not value:
        return ""
    return _WHITESPACE.sub("", value.strip().lstrip("+"))


def _is_effective(rate: NumberRate, as_of: datetime) -> bool:
    effective_date = as_utc(rate.effective_date)
    return effective_date is None or effective_date <= as_of


def _longest_prefix_match(normalized_number: str, rates: Iterable[NumberRate]) -> Optional[NumberRate]:
    """
    Most specific prefix wins. Equal-length prefixes (duplicates) fall back to
    the most recent effective date, then the smallest rate id, so the result
    never depends on the order rows came back from the store.
    """
    best = None
    best_key = None
    for rate in rates:
        normalized_prefix = normalize_for_matching(rate.prefix)
        if not normalized_prefix or not normalized_number.startswith(normalized_prefix):
            continue

        effective = as_utc(rate.effective_date)
        key = (
            len(normalized_prefix),
            effective.timestamp() if effective else float("-inf"),
        )
        if best is None or key > best_key or (key == best_key and str(rate.id) < str(best.id)):
            best = rate
            best_key = key
    return best


def find_best_rate(
    number: str,
    country: Optional[str],
    number_type: Optional[str],
    rates: List[NumberRate],
    as_of: Optional[datetime] = None
) -> Optional[NumberRate]:
    """
    Pick the best rate for a number from an in-memory list of rates.
    Pure: does not touch the database or mutate its inputs.
    """
    as_of = as_utc(as_of) or utc_now()
    normalized_number = normalize_for_matching(number)
    if not normalized_number:
        return None

    effective_rates = [rate for rate in rates if _is_effective(rate, as_of)]

    # Pass 1: same country (case-insensitive) and exact type
    country_key = (country or "").lower()
    country_type_rates = [
        rate for rate in effective_rates
        if (rate.country or "").lower() == country_key and rate.type == number_type
    ]
    best = _longest_prefix_match(normalized_number, country_type_rates)
    if best:
        return best

    # Pass 2: prefix only, across the whole deck
    return _longest_prefix_match(normalized_number, effective_rates)


def rate_to_dict(rate: NumberRate) -> Dict:
    return {
        "id": rate.id,
        "rate_deck_id": rate.rate_deck_id,
        "country": rate.country,
        "type": rate.type,
        "prefix": rate.prefix,
        "rate": rate.rate,
        "setup_fee": rate.setup_fee or 0,
        "description": rate.description,
    }


async def get_rates_for_deck(rate_deck_id: str) -> List[NumberRate]:
    """Load all rates of a deck"""
    async with AsyncSessionLocal() as session:
        stmt = select(NumberRate).where(NumberRate.rate_deck_id == rate_deck_id)
        result = await session.execute(stmt)
        return list(result.scalars().all())


async def resolve_rate(
    number: str,
    country: Optional[str],
    number_type: Optional[str],
    rate_deck_id: Optional[str]
) -> Optional[Dict]:
    """Resolve the effective rate of a number in a deck. Missing deck id resolves to None."""
    if not rate_deck_id:
        return None

    rates = await get_rates_for_deck(rate_deck_id)
    logger.info(f"📊 [RATE_MATCH] {len(rates)} rates in deck {rate_deck_id} for {number} ({country} {number_type})")

    best = find_best_rate(number, country, number_type, rates)
    if best is None:
        logger.info(f"📊 [RATE_MATCH] No matching rate for {number} in deck {rate_deck_id}")
        return None

    logger.info(f"📊 [RATE_MATCH] Matched prefix={best.prefix} rate={best.rate} setup_fee={best.setup_fee}")
    return rate_to_dict(best)


async def get_rate_deck_by_id(rate_deck_id: str) -> Optional[Dict]:
    async with AsyncSessionLocal() as session:
        deck = await session.get(NumberRateDeck, rate_deck_id)
        if not deck:
            return None
        return {
            "id": deck.id,
            "name": deck.name,
            "description": deck.description,
            "currency": deck.currency,
        }


async def get_user_rate_deck(user_id: str) -> Optional[Dict]:
    """The number rate deck currently assigned to a user, if any"""
    async with AsyncSessionLocal() as session:
        stmt = (
            select(NumberRateDeck)
            .join(RateDeckAssignment, RateDeckAssignment.rate_deck_id == NumberRateDeck.id)
            .where(
                RateDeckAssignment.user_id == user_id,
                RateDeckAssignment.rate_deck_type == "number",
                RateDeckAssignment.is_active == True
            )
            .order_by(RateDeckAssignment.created_at.desc())
            .limit(1)
        )
        result = await session.execute(stmt)
        deck = result.scalar_one_or_none()
        if not deck:
            return None
        return {
            "id": deck.id,
            "name": deck.name,
            "description": deck.description,
            "currency": deck.currency,
        }
