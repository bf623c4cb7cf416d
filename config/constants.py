from types import MappingProxyType

from pydantic import BaseModel, ConfigDict

# --- Redis Key Prefixes ---
REDIS_RATE_LIMIT_PREFIX = "rate_limit"

# --- Numbering Provider Protocol ---
PROVIDER_ACTION_GET_NUMBER = "getNumber"
PROVIDER_ACTION_GET_STATUS = "getStatus"
PROVIDER_ACTION_SET_STATUS = "setStatus"
PROVIDER_ACCESS_NUMBER = "ACCESS_NUMBER"
PROVIDER_STATUS_CANCEL = "8"

# --- Wallet ---
DEFAULT_CURRENCY = "INR"

# --- Credentials ---
API_KEY_VISIBLE_CHARS = 10

# --- Rental Statuses ---
STATUS_ACTIVE = "active"
STATUS_SUCCESS = "success"
STATUS_CANCELLED = "cancelled"
STATUS_EXPIRED = "expired"


class ServiceOffer(BaseModel):
    """A sellable provider country/service pair with its base price."""
    model_config = ConfigDict(frozen=True)

    code: str
    name: str
    country: str
    price: int
    flag: str


# ==============================================================================
# SERVICE CATALOG
# 'code' MUST EXACTLY match the provider's 'country' parameter.
# Prices are base prices in whole INR, before any partner markup.
# ==============================================================================
SERVICE_CATALOG = MappingProxyType({
    'philippines_51': ServiceOffer(code='51', name='WhatsApp Philippines', country='Philippines', price=52, flag='🇵🇭'),
    'india_115': ServiceOffer(code='115', name='WhatsApp Indian', country='India', price=103, flag='🇮🇳'),
    'vietnam_118': ServiceOffer(code='118', name='WhatsApp Vietnam', country='Vietnam', price=61, flag='🇻🇳'),
    'india_66': ServiceOffer(code='66', name='WhatsApp Indian', country='India', price=140, flag='🇮🇳'),
    'fire_premium_106': ServiceOffer(code='106', name='Fire Server Premium 1', country='India', price=79, flag='🇮🇳'),
    'southafrica_52': ServiceOffer(code='52', name='WhatsApp South Africa', country='South Africa', price=45, flag='🇿🇦'),
    'colombia_53': ServiceOffer(code='53', name='WhatsApp Colombia', country='Colombia', price=71, flag='🇨🇴'),
    'philippines2_117': ServiceOffer(code='117', name='WhatsApp Philippines 2', country='Philippines', price=64, flag='🇵🇭'),
    'indonesia_54': ServiceOffer(code='54', name='WhatsApp Indonesia', country='Indonesia', price=49, flag='🇮🇩'),
    'telegram_usa_123': ServiceOffer(code='123', name='Telegram USA', country='USA', price=65, flag='🇺🇸'),
    'telegram_usa2_124': ServiceOffer(code='124', name='Telegram USA 2', country='USA', price=92, flag='🇺🇸'),
})
