import os
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from pydantic import ValidationError, create_model

from . import log

logger = log.get_logger(__name__)


@dataclass(frozen=True)
class EnvVarSpec:
    id: str
    default: Optional[str] = None
    parse: Optional[Callable[[str], Any]] = None
    # pydantic field definition the parsed value must satisfy
    type: tuple = (str, ...)
    is_optional: bool = False
    is_secret: bool = False


def parse(spec: EnvVarSpec) -> Any:
    """Read, parse and type-check one environment variable.

    Returns None for an unset optional variable; raises ``ValueError`` for a
    missing required one or a value that does not parse.
    """
    raw = os.environ.get(spec.id)
    if raw is None or raw == "":
        raw = spec.default
    if raw is None:
        if spec.is_optional:
            return None
        raise ValueError(f"{spec.id} is not set")

    try:
        value = spec.parse(raw) if spec.parse else raw
    except (TypeError, ValueError, ArithmeticError) as e:
        raise ValueError(f"{spec.id} could not be parsed: {e}") from e

    checker = create_model(spec.id, value=spec.type)
    try:
        return checker(value=value).value
    except ValidationError as e:
        raise ValueError(f"{spec.id} is invalid: {e.errors()[0]['msg']}") from e


def validate(specs: Iterable[EnvVarSpec]) -> bool:
    """Parse every spec, logging each problem. True when all are valid."""
    ok = True
    for spec in specs:
        try:
            value = parse(spec)
        except ValueError as e:
            logger.error(str(e))
            ok = False
            continue
        shown = "***" if spec.is_secret and value is not None else value
        logger.debug(f"{spec.id}={shown}")
    return ok
