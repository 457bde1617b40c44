"""
Tariff definitions: a named rate bound to recurring windows, with the charge
and discharge policies that apply while it is in effect.
"""

from datetime import datetime, tzinfo
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from smartess.schedulers.window import RateWindow, RateWindowAbsolute


class DischargeDisabled(BaseModel):
    """Battery does not discharge during this rate."""
    model_config = ConfigDict(frozen=True)
    kind: Literal["disabled"] = "disabled"


class DischargeProportional(BaseModel):
    """Battery supplies a fixed fraction of the present system load."""
    model_config = ConfigDict(frozen=True)
    kind: Literal["proportional"] = "proportional"
    fraction: float = Field(ge=0.0)


class DischargeSpread(BaseModel):
    """Remaining usable capacity drains evenly until the next charge window."""
    model_config = ConfigDict(frozen=True)
    kind: Literal["spread"] = "spread"


DischargePolicy = Annotated[
    Union[DischargeDisabled, DischargeProportional, DischargeSpread],
    Field(discriminator="kind"),
]


class ChargeDisabled(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["disabled"] = "disabled"


class ChargeTargetCapacity(BaseModel):
    """Charger enabled, aiming for `fraction` of capacity.

    `fraction` and `unit_limit` are passed through to the actuator untouched.
    """
    model_config = ConfigDict(frozen=True)
    kind: Literal["target_capacity"] = "target_capacity"
    fraction: float = Field(ge=0.0, le=1.0, default=1.0)
    unit_limit: int = Field(ge=0, default=0)


ChargePolicy = Annotated[
    Union[ChargeDisabled, ChargeTargetCapacity],
    Field(discriminator="kind"),
]


def _legacy_discharge(value: Any) -> Any:
    # "None" | "Spread" | {"Capacity": 0.5}
    if isinstance(value, str):
        key = value.strip().lower()
        if key in ("none", "disabled"):
            return {"kind": "disabled"}
        if key == "spread":
            return {"kind": "spread"}
        if key == "proportional":
            raise ValueError("proportional discharge needs a fraction")
        return value
    if isinstance(value, dict) and "kind" not in value and "Capacity" in value:
        return {"kind": "proportional", "fraction": value["Capacity"]}
    return value


def _legacy_charge(value: Any) -> Any:
    # {"mode": "Disabled" | {"Capacity": 1.0}, "unit_limit": 0}
    if isinstance(value, str):
        key = value.strip().lower()
        if key in ("none", "disabled"):
            return {"kind": "disabled"}
        if key in ("enabled", "target_capacity"):
            return {"kind": "target_capacity"}
        return value
    if isinstance(value, dict) and "kind" not in value and "mode" in value:
        mode = value["mode"]
        if isinstance(mode, str) and mode.strip().lower() == "disabled":
            return {"kind": "disabled"}
        if isinstance(mode, dict) and "Capacity" in mode:
            return {
                "kind": "target_capacity",
                "fraction": mode["Capacity"],
                "unit_limit": value.get("unit_limit", 0),
            }
    return value


class Rate(BaseModel):
    """
    A named time-of-use tariff.

    `reserve` (kWh) is the capacity this rate withholds from discharge on behalf
    of its upcoming windows that fall before the next charge opportunity.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    unit_cost: float = 0.0
    windows: List[RateWindow] = Field(default_factory=list)
    discharge: DischargePolicy = Field(default_factory=DischargeDisabled)
    charge: ChargePolicy = Field(default_factory=ChargeDisabled)
    reserve: float = Field(ge=0.0, default=0.0)

    @field_validator("discharge", mode="before")
    @classmethod
    def _accept_legacy_discharge(cls, value: Any) -> Any:
        return _legacy_discharge(value)

    @field_validator("charge", mode="before")
    @classmethod
    def _accept_legacy_charge(cls, value: Any) -> Any:
        return _legacy_charge(value)

    @property
    def charge_enabled(self) -> bool:
        return not isinstance(self.charge, ChargeDisabled)

    @property
    def discharge_enabled(self) -> bool:
        return not isinstance(self.discharge, DischargeDisabled)

    def resolve(self, reference: datetime, tz: Optional[tzinfo] = None) -> List[RateWindowAbsolute]:
        """All windows of this rate resolved against `reference`, sorted by start."""
        occurrences = [o for w in self.windows for o in w.resolve(reference, tz)]
        occurrences.sort(key=lambda o: o.start)
        return occurrences

    def describe_discharge(self) -> str:
        if isinstance(self.discharge, DischargeProportional):
            return f"proportional({self.discharge.fraction:g})"
        return self.discharge.kind

    def describe_charge(self) -> str:
        if isinstance(self.charge, ChargeTargetCapacity):
            return f"target_capacity({self.charge.fraction:g})"
        return self.charge.kind
