from fastapi import APIRouter

from api.v1.ledger.endpoints.admin import ADMIN_ROUTER
from api.v1.ledger.endpoints.auth import AUTH_ROUTER
from api.v1.ledger.endpoints.gift_codes import GIFT_CODES_ROUTER
from api.v1.ledger.endpoints.landing import LANDING_ROUTER
from api.v1.ledger.endpoints.merchants import MERCHANTS_ROUTER
from api.v1.ledger.endpoints.partners import PARTNERS_ROUTER
from api.v1.ledger.endpoints.settings import SETTINGS_ROUTER
from api.v1.ledger.endpoints.skus import SKUS_ROUTER
from api.v1.ledger.endpoints.transactions import TRANSACTIONS_ROUTER
from api.v1.ledger.endpoints.users import USERS_ROUTER
from api.v1.ledger.endpoints.wallet import WALLET_ROUTER


API_V1_LEDGER_ROUTER = APIRouter(prefix="/api")

API_V1_LEDGER_ROUTER.include_router(LANDING_ROUTER)
API_V1_LEDGER_ROUTER.include_router(AUTH_ROUTER)
API_V1_LEDGER_ROUTER.include_router(USERS_ROUTER)
API_V1_LEDGER_ROUTER.include_router(SKUS_ROUTER)
API_V1_LEDGER_ROUTER.include_router(SETTINGS_ROUTER)
API_V1_LEDGER_ROUTER.include_router(GIFT_CODES_ROUTER)
API_V1_LEDGER_ROUTER.include_router(TRANSACTIONS_ROUTER)
API_V1_LEDGER_ROUTER.include_router(WALLET_ROUTER)
API_V1_LEDGER_ROUTER.include_router(MERCHANTS_ROUTER)
API_V1_LEDGER_ROUTER.include_router(PARTNERS_ROUTER)
API_V1_LEDGER_ROUTER.include_router(ADMIN_ROUTER)
