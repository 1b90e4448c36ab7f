from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.lifespan import app_lifespan
from api.middlewares import RateLimitMiddleware
from api.v1.ledger.router import API_V1_LEDGER_ROUTER
from api.v1.system import SYSTEM_ROUTER
from utils.get_env import get_cors_origins_env


app = FastAPI(title="Impact Ledger API", lifespan=app_lifespan)

# Routers
app.include_router(API_V1_LEDGER_ROUTER)
app.include_router(SYSTEM_ROUTER)

# Middlewares
configured_origins = get_cors_origins_env()
origins = (
    [origin.strip() for origin in configured_origins.split(",") if origin.strip()]
    if configured_origins
    else ["*"]
)

# Rate limiting middleware (added first so it runs after CORS)
app.add_middleware(RateLimitMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    # Credentials cannot be combined with a wildcard origin.
    allow_credentials=origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
