import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from app.core.config import Settings, get_settings
from app.models.notification import Notification
from app.models.paion_balance import PaionBalance
from app.models.paion_transaction import PaionTransaction

DOCUMENT_MODELS = [
    PaionBalance,
    PaionTransaction,
    Notification,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(settings: Settings | None = None) -> AsyncIOMotorClient:
    """Connect, register document models and build indexes. The caller owns the returned client."""
    settings = settings or get_settings()
    kwargs = {}
    if _use_tls(settings.mongodb_uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
    database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    return client
