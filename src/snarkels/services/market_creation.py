"""Market creation - validation and unsigned createMarket transactions.

Nothing is signed or broadcast here; the caller's wallet signs the returned
transaction.
"""

from __future__ import annotations

import time
from typing import Any

import structlog
from eth_abi import encode
from pydantic import AnyUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from web3 import Web3

from snarkels.chain.abi import CREATE_MARKET_SIGNATURE
from snarkels.exceptions import ValidationError
from snarkels.models import CreateMarketParams, ValidationResult

log = structlog.get_logger(__name__)

MAX_QUESTION_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 1000
MAX_MARKET_DURATION_SEC = 365 * 24 * 60 * 60
DEFAULT_CREATION_COST_WEI = 10**16  # 0.01 CELO

CREATE_MARKET_SELECTOR = Web3.keccak(text=CREATE_MARKET_SIGNATURE)[:4]
CREATE_MARKET_ARG_TYPES = ["string", "uint256", "string", "string", "string", "string"]

_url_adapter = TypeAdapter(AnyUrl)


def is_valid_url(value: str) -> bool:
    try:
        _url_adapter.validate_python(value)
    except PydanticValidationError:
        return False
    return True


def _as_params(params: CreateMarketParams | dict[str, Any]) -> CreateMarketParams:
    if isinstance(params, CreateMarketParams):
        return params
    return CreateMarketParams.model_validate(params)


_FIELD_LABELS = {
    "question": "Question",
    "endTime": "End time",
    "end_time": "End time",
    "description": "Description",
    "category": "Category",
    "image": "Image",
    "source": "Source",
}


def _type_error_message(err: dict[str, Any]) -> str:
    field = str(err["loc"][0]) if err.get("loc") else "input"
    return f"{_FIELD_LABELS.get(field, field)} is invalid: {err['msg']}"


def validate_market_params(
    params: CreateMarketParams | dict[str, Any], now: float | None = None
) -> ValidationResult:
    """Check creation inputs. Collects every problem instead of stopping at the first."""
    try:
        p = _as_params(params)
    except PydanticValidationError as e:
        return ValidationResult(is_valid=False, errors=[_type_error_message(err) for err in e.errors()])
    now = time.time() if now is None else now
    errors: list[str] = []

    if not p.question.strip():
        errors.append("Question is required")
    elif len(p.question) > MAX_QUESTION_LENGTH:
        errors.append(f"Question must be {MAX_QUESTION_LENGTH} characters or less")

    if not p.end_time:
        errors.append("End time is required")
    elif p.end_time <= now:
        errors.append("End time must be in the future")
    elif p.end_time > now + MAX_MARKET_DURATION_SEC:
        errors.append("End time cannot be more than 1 year in the future")

    if not p.description.strip():
        errors.append("Description is required")
    elif len(p.description) > MAX_DESCRIPTION_LENGTH:
        errors.append(f"Description must be {MAX_DESCRIPTION_LENGTH} characters or less")

    if not p.category.strip():
        errors.append("Category is required")

    if p.image and not is_valid_url(p.image):
        errors.append("Image must be a valid URL")

    if p.source and not is_valid_url(p.source):
        errors.append("Source must be a valid URL")

    return ValidationResult(is_valid=not errors, errors=errors)


def encode_create_market(p: CreateMarketParams) -> str:
    """ABI-encoded createMarket calldata as 0x hex."""
    payload = encode(
        CREATE_MARKET_ARG_TYPES,
        [p.question, int(p.end_time or 0), p.description, p.category, p.image, p.source],
    )
    return Web3.to_hex(CREATE_MARKET_SELECTOR + payload)


class MarketCreationService:
    """Builds createMarket transactions for the core contract."""

    def __init__(
        self,
        w3: Any,
        contract_address: str,
        creation_cost_wei: int = DEFAULT_CREATION_COST_WEI,
    ):
        self.w3 = w3
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.creation_cost_wei = creation_cost_wei

    def validate_market_params(self, params: CreateMarketParams | dict[str, Any]) -> ValidationResult:
        return validate_market_params(params)

    def create_market_transaction(self, params: CreateMarketParams | dict[str, Any]) -> dict[str, Any]:
        """Validate and return {to, data, value, functionName, args}. Raises ValidationError."""
        result = validate_market_params(params)
        if not result.is_valid:
            raise ValidationError("Validation failed", details=result.errors)
        p = _as_params(params)
        return {
            "to": self.contract_address,
            "data": encode_create_market(p),
            "value": str(self.creation_cost_wei),
            "functionName": "createMarket",
            "args": [p.question, str(p.end_time), p.description, p.category, p.image, p.source],
        }

    def estimate_gas(self, params: CreateMarketParams | dict[str, Any], from_address: str) -> int:
        tx = self.create_market_transaction(params)
        gas = self.w3.eth.estimate_gas(
            {
                "from": Web3.to_checksum_address(from_address),
                "to": tx["to"],
                "data": tx["data"],
                "value": int(tx["value"]),
            }
        )
        log.debug("gas_estimated", gas=gas, sender=from_address)
        return int(gas)

    def get_market_creation_cost(self) -> int:
        """Creation fee in wei."""
        return self.creation_cost_wei
