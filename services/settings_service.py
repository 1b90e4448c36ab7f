import logging

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from models.sql.setting import SettingModel
from services.landing_service import DEFAULT_CERTIFICATION_THRESHOLD, DEFAULT_PRICE_PER_KG
from utils.datetime_utils import iso_utc, utc_now

logger = logging.getLogger(__name__)

PRICE_PER_KG = "PRICE_PER_KG"
CERTIFICATION_THRESHOLD = "CERTIFICATION_THRESHOLD"
DEFAULT_MULTIPLIER = "DEFAULT_MULTIPLIER"
MONTHLY_BILLING_MINIMUM = "MONTHLY_BILLING_MINIMUM"
ADMIN_SECRET_CODE = "ADMIN_SECRET_CODE"
ADMIN_EMAIL = "ADMIN_EMAIL"

DEFAULT_SETTINGS = {
    PRICE_PER_KG: ("0.11", "Price per kg of plastic removal in EUR"),
    CERTIFICATION_THRESHOLD: ("10", "EUR threshold for certification"),
    DEFAULT_MULTIPLIER: ("1", "Default impact multiplier for new merchants"),
    MONTHLY_BILLING_MINIMUM: ("10", "Minimum EUR balance for a monthly merchant invoice"),
}

# Settings that feed divisions or billing and must stay strictly positive.
POSITIVE_NUMERIC_SETTINGS = {PRICE_PER_KG, CERTIFICATION_THRESHOLD, DEFAULT_MULTIPLIER}
NON_NEGATIVE_NUMERIC_SETTINGS = {MONTHLY_BILLING_MINIMUM}
# Never served by the public settings routes.
SECRET_SETTINGS = {ADMIN_SECRET_CODE}


def _parse_float(value: str | None, default: float) -> float:
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def serialize_setting(setting: SettingModel) -> dict:
    return {
        "key": setting.key,
        "value": setting.value,
        "description": setting.description,
        "updated_at": iso_utc(setting.updated_at),
    }


async def get_setting(sql_session: AsyncSession, key: str) -> SettingModel | None:
    return await sql_session.get(SettingModel, key)


async def get_setting_value(sql_session: AsyncSession, key: str, default: str | None = None) -> str | None:
    setting = await get_setting(sql_session, key)
    return setting.value if setting else default


async def get_price_per_kg(sql_session: AsyncSession) -> float:
    value = _parse_float(await get_setting_value(sql_session, PRICE_PER_KG), DEFAULT_PRICE_PER_KG)
    if value <= 0:
        logger.warning(f"Ignoring non-positive {PRICE_PER_KG}={value}, using {DEFAULT_PRICE_PER_KG}")
        return DEFAULT_PRICE_PER_KG
    return value


async def get_certification_threshold(sql_session: AsyncSession) -> float:
    value = _parse_float(
        await get_setting_value(sql_session, CERTIFICATION_THRESHOLD),
        DEFAULT_CERTIFICATION_THRESHOLD,
    )
    if value <= 0:
        return DEFAULT_CERTIFICATION_THRESHOLD
    return value


async def get_default_multiplier(sql_session: AsyncSession) -> float:
    value = _parse_float(await get_setting_value(sql_session, DEFAULT_MULTIPLIER), 1.0)
    return value if value > 0 else 1.0


async def get_monthly_billing_minimum(sql_session: AsyncSession) -> float:
    value = _parse_float(await get_setting_value(sql_session, MONTHLY_BILLING_MINIMUM), 10.0)
    return max(0.0, value)


async def get_all_settings(sql_session: AsyncSession, include_secrets: bool = False) -> dict[str, str]:
    result = await sql_session.execute(select(SettingModel))
    return {
        setting.key: setting.value
        for setting in result.scalars().all()
        if include_secrets or setting.key not in SECRET_SETTINGS
    }


def _validate_setting_value(key: str, value: str) -> None:
    if key in POSITIVE_NUMERIC_SETTINGS or key in NON_NEGATIVE_NUMERIC_SETTINGS:
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise HTTPException(status_code=400, detail=f"{key} must be a number.")
        if key in POSITIVE_NUMERIC_SETTINGS and number <= 0:
            raise HTTPException(status_code=400, detail=f"{key} must be greater than 0.")
        if number < 0:
            raise HTTPException(status_code=400, detail=f"{key} must not be negative.")


async def update_setting(
    sql_session: AsyncSession,
    key: str,
    value: str | None,
    description: str | None = None,
) -> SettingModel:
    normalized_key = (key or "").strip()
    if not normalized_key:
        raise HTTPException(status_code=400, detail="Key is required.")
    if value is None:
        raise HTTPException(status_code=400, detail="Value is required.")

    value = str(value).strip()
    _validate_setting_value(normalized_key, value)

    setting = await get_setting(sql_session, normalized_key)
    if setting is None:
        setting = SettingModel(key=normalized_key, value=value, description=description)
    else:
        setting.value = value
        if description is not None:
            setting.description = description
        setting.updated_at = utc_now()

    sql_session.add(setting)
    await sql_session.commit()
    await sql_session.refresh(setting)
    logger.info(f"Setting {normalized_key} updated")
    return setting


async def ensure_default_settings(sql_session: AsyncSession) -> int:
    created = 0
    for key, (value, description) in DEFAULT_SETTINGS.items():
        if await get_setting(sql_session, key) is None:
            sql_session.add(SettingModel(key=key, value=value, description=description))
            created += 1
    if created:
        await sql_session.commit()
        logger.info(f"Seeded {created} default settings")
    return created
