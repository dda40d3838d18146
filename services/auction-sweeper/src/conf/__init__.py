from decimal import Decimal

from pydantic import BaseModel

from models.auction import AuctionDefaults, EngineConfig
from models.entities.couchbase.auctions import FixedIncrement, PercentIncrement
from utils import env, log
from utils.env import EnvVarSpec

logger = log.get_logger(__name__)

#### Types ####

class SweeperConf(BaseModel):
    interval_seconds: int
    batch_size: int

#### Env Vars ####

## Logging ##

LOG_LEVEL = EnvVarSpec(id="LOG_LEVEL", default="INFO")

ENVIRONMENT = EnvVarSpec(id="ENVIRONMENT", default="development")

## Sweeper ##

SWEEP_INTERVAL_SECONDS = EnvVarSpec(
    id="SWEEP_INTERVAL_SECONDS",
    default="60",
    parse=int,
    type=(int, ...),
)

SWEEP_BATCH_SIZE = EnvVarSpec(
    id="SWEEP_BATCH_SIZE",
    default="100",
    parse=int,
    type=(int, ...),
)

## Auction defaults ##

AUCTION_SOFT_CLOSE_WINDOW_SECONDS = EnvVarSpec(
    id="AUCTION_SOFT_CLOSE_WINDOW_SECONDS",
    default="120",
    parse=int,
    type=(int, ...),
)

AUCTION_SOFT_CLOSE_EXTENSION_SECONDS = EnvVarSpec(
    id="AUCTION_SOFT_CLOSE_EXTENSION_SECONDS",
    default="120",
    parse=int,
    type=(int, ...),
)

# Unset means no cap on soft close extensions
AUCTION_MAX_SOFT_CLOSE_EXTENSIONS = EnvVarSpec(
    id="AUCTION_MAX_SOFT_CLOSE_EXTENSIONS",
    is_optional=True,
    parse=int,
    type=(int, ...),
)

AUCTION_INCREMENT_KIND = EnvVarSpec(
    id="AUCTION_INCREMENT_KIND",
    default="fixed",
    parse=lambda x: x.strip().lower(),
)

# Minor currency units for "fixed", a fraction (0.05 == 5%) for "percent"
AUCTION_INCREMENT_VALUE = EnvVarSpec(
    id="AUCTION_INCREMENT_VALUE",
    default="500",
    parse=Decimal,
    type=(Decimal, ...),
)

AUCTION_DEPOSIT_REQUIRED = EnvVarSpec(
    id="AUCTION_DEPOSIT_REQUIRED",
    default="true",
    parse=lambda x: x.lower() == "true",
    type=(bool, ...),
)

#### Validation ####
VALIDATED_ENV_VARS = [
    LOG_LEVEL,
    ENVIRONMENT,
    SWEEP_INTERVAL_SECONDS,
    SWEEP_BATCH_SIZE,
    AUCTION_SOFT_CLOSE_WINDOW_SECONDS,
    AUCTION_SOFT_CLOSE_EXTENSION_SECONDS,
    AUCTION_MAX_SOFT_CLOSE_EXTENSIONS,
    AUCTION_INCREMENT_KIND,
    AUCTION_INCREMENT_VALUE,
    AUCTION_DEPOSIT_REQUIRED,
]

def validate() -> bool:
    if not env.validate(VALIDATED_ENV_VARS):
        return False
    try:
        get_engine_config()
        get_sweeper_conf()
    except ValueError as e:
        logger.error(f"Invalid auction configuration: {e}")
        return False
    return True

#### Getters ####

def get_log_level() -> str:
    return env.parse(LOG_LEVEL)

def get_environment() -> str:
    return env.parse(ENVIRONMENT)

def get_sweeper_conf() -> SweeperConf:
    interval = env.parse(SWEEP_INTERVAL_SECONDS)
    batch_size = env.parse(SWEEP_BATCH_SIZE)
    if interval < 1:
        raise ValueError("SWEEP_INTERVAL_SECONDS must be at least 1")
    if batch_size < 1:
        raise ValueError("SWEEP_BATCH_SIZE must be at least 1")
    return SweeperConf(interval_seconds=interval, batch_size=batch_size)

def get_engine_config() -> EngineConfig:
    kind = env.parse(AUCTION_INCREMENT_KIND)
    value = env.parse(AUCTION_INCREMENT_VALUE)
    if kind == "fixed":
        if value != value.to_integral_value():
            raise ValueError("AUCTION_INCREMENT_VALUE must be a whole number of minor units for fixed increments")
        increment = FixedIncrement(value=int(value))
    elif kind == "percent":
        increment = PercentIncrement(value=value)
    else:
        raise ValueError(f"AUCTION_INCREMENT_KIND '{kind}' is invalid. Must be 'fixed' or 'percent'")

    return EngineConfig(
        defaults=AuctionDefaults(
            increment=increment,
            soft_close_window_seconds=env.parse(AUCTION_SOFT_CLOSE_WINDOW_SECONDS),
            soft_close_extension_seconds=env.parse(AUCTION_SOFT_CLOSE_EXTENSION_SECONDS),
            deposit_required=env.parse(AUCTION_DEPOSIT_REQUIRED),
        ),
        max_soft_close_extensions=env.parse(AUCTION_MAX_SOFT_CLOSE_EXTENSIONS),
    )
