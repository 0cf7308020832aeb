"""Policy resolver — loads marketplace parameters from the config directory.

All fees, the default commission rate and the currency rounding rule live
in ``config/marketplace_policy.json``. Components never hard-code these
values; they ask the resolver. Amounts are stored as strings in JSON and
returned as Decimal.

Validation is fail-closed: a policy file with negative fees, a default
rate outside [0, 1], a non-positive quantum or an unknown rounding mode
is rejected at load time.
"""

from __future__ import annotations

import decimal
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any


POLICY_FILENAME = "marketplace_policy.json"

_ROUNDING_MODES = {
    "ROUND_HALF_UP": decimal.ROUND_HALF_UP,
    "ROUND_HALF_EVEN": decimal.ROUND_HALF_EVEN,
    "ROUND_HALF_DOWN": decimal.ROUND_HALF_DOWN,
    "ROUND_DOWN": decimal.ROUND_DOWN,
    "ROUND_UP": decimal.ROUND_UP,
}


def _to_decimal(value: Any, key: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Policy value {key} is not a number: {value!r}") from e


class PolicyResolver:
    """Typed access to marketplace policy parameters.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        params = resolver.checkout_params()
        fee = params["platform_fee"]
    """

    def __init__(self, policy: dict[str, Any]) -> None:
        self._policy = policy
        errors = self.validate()
        if errors:
            raise ValueError("Invalid marketplace policy: " + "; ".join(errors))

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        path = Path(config_dir) / POLICY_FILENAME
        with path.open("r", encoding="utf-8") as handle:
            return cls(json.load(handle))

    @classmethod
    def defaults(cls) -> PolicyResolver:
        """Resolver with the stock marketplace parameters."""
        return cls({
            "checkout": {
                "platform_fee": "20",
                "shipping_fee": "40",
                "free_shipping_threshold": "500",
            },
            "commission": {
                "default_rate": "0.10",
                "currency_quantum": "0.01",
                "rounding": "ROUND_HALF_UP",
            },
            "settlement": {"enforce_pending_cap": False},
        })

    def validate(self) -> list[str]:
        """Check policy invariants. Returns errors (empty = OK)."""
        errors: list[str] = []
        try:
            checkout = self.checkout_params()
            commission = self.commission_params()
        except (KeyError, ValueError) as e:
            return [f"Malformed policy: {e}"]

        for key in ("platform_fee", "shipping_fee", "free_shipping_threshold"):
            if checkout[key] < Decimal("0"):
                errors.append(f"checkout.{key} must be non-negative")
        rate = commission["default_rate"]
        if not (Decimal("0") <= rate <= Decimal("1")):
            errors.append("commission.default_rate must be in [0, 1]")
        if commission["currency_quantum"] <= Decimal("0"):
            errors.append("commission.currency_quantum must be positive")
        if self._policy["commission"].get("rounding") not in _ROUNDING_MODES:
            errors.append(
                "commission.rounding must be one of "
                + ", ".join(sorted(_ROUNDING_MODES))
            )
        return errors

    def checkout_params(self) -> dict[str, Decimal]:
        section = self._policy["checkout"]
        return {
            key: _to_decimal(section[key], f"checkout.{key}")
            for key in ("platform_fee", "shipping_fee", "free_shipping_threshold")
        }

    def commission_params(self) -> dict[str, Any]:
        section = self._policy["commission"]
        return {
            "default_rate": _to_decimal(section["default_rate"], "commission.default_rate"),
            "currency_quantum": _to_decimal(
                section["currency_quantum"], "commission.currency_quantum",
            ),
            "rounding": _ROUNDING_MODES.get(section.get("rounding", "ROUND_HALF_UP")),
        }

    def settlement_params(self) -> dict[str, Any]:
        section = self._policy.get("settlement", {})
        return {"enforce_pending_cap": bool(section.get("enforce_pending_cap", False))}

    def as_dict(self) -> dict[str, Any]:
        return json.loads(json.dumps(self._policy))
