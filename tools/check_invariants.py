#!/usr/bin/env python3
"""Marketplace invariant checks against the executable policy artifact."""

import decimal
import json
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
POLICY_FILENAME = "marketplace_policy.json"
ROUNDING_MODES = (
    "ROUND_HALF_UP",
    "ROUND_HALF_EVEN",
    "ROUND_HALF_DOWN",
    "ROUND_DOWN",
    "ROUND_UP",
)
SAMPLE_SUBTOTALS = ("0", "0.01", "0.05", "99.99", "333.33", "5000", "7500", "123456.78")


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def as_decimal(section: dict, key: str, label: str, errors: list[str]) -> Decimal | None:
    if key not in section:
        errors.append(f"{label}.{key} is missing")
        return None
    try:
        value = Decimal(str(section[key]))
    except InvalidOperation:
        errors.append(f"{label}.{key} is not a number: {section[key]!r}")
        return None
    if not value.is_finite():
        errors.append(f"{label}.{key} must be finite")
        return None
    return value


def check_commission_split(
    rate: Decimal, quantum: Decimal, rounding: str, errors: list[str],
) -> None:
    """Commission plus earnings must reproduce the subtotal exactly."""
    mode = getattr(decimal, rounding)
    for raw in SAMPLE_SUBTOTALS:
        subtotal = Decimal(raw)
        commission = min((subtotal * rate).quantize(quantum, rounding=mode), subtotal)
        earnings = subtotal - commission
        if commission + earnings != subtotal:
            errors.append(f"commission split of {subtotal} does not add up")
        if commission < 0 or earnings < 0:
            errors.append(f"commission split of {subtotal} produced a negative part")


def check(config_dir: Path | None = None) -> int:
    config_dir = Path(config_dir) if config_dir is not None else ROOT / "config"
    policy = load_json(config_dir / POLICY_FILENAME)
    errors: list[str] = []

    # --- Checkout fee invariants ---
    checkout = policy.get("checkout", {})
    for key in ("platform_fee", "shipping_fee", "free_shipping_threshold"):
        value = as_decimal(checkout, key, "checkout", errors)
        if value is not None and value < 0:
            errors.append(f"checkout.{key} must be >= 0, got {value}")

    # --- Commission invariants ---
    commission = policy.get("commission", {})
    rate = as_decimal(commission, "default_rate", "commission", errors)
    if rate is not None and not (Decimal("0") <= rate <= Decimal("1")):
        errors.append(f"commission.default_rate must be in [0, 1], got {rate}")
    quantum = as_decimal(commission, "currency_quantum", "commission", errors)
    if quantum is not None and not (Decimal("0") < quantum <= Decimal("1")):
        errors.append(f"commission.currency_quantum must be in (0, 1], got {quantum}")
    rounding = commission.get("rounding")
    if rounding not in ROUNDING_MODES:
        errors.append(f"commission.rounding must be one of {list(ROUNDING_MODES)}")

    if not errors and rate is not None and quantum is not None:
        check_commission_split(rate, quantum, rounding, errors)

    # --- Settlement invariants ---
    settlement = policy.get("settlement", {})
    cap = settlement.get("enforce_pending_cap", False)
    if not isinstance(cap, bool):
        errors.append("settlement.enforce_pending_cap must be a boolean")

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check(Path(sys.argv[1]) if len(sys.argv) > 1 else None))
