"""
Job spec validation.

Pydantic models describing what add() and update() accept. Validation only:
the service stores copies of the caller's schedule/payload/delivery objects
so they round-trip through the store unmodified.
"""

import copy
import json
from typing import Annotated, Any, Literal, NoReturn, Optional, Union

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    model_validator,
)

from .errors import ValidationError
from .schedule import parse_at_ms, resolve_timezone, validate_cron_expr


PATCHABLE_FIELDS = (
    "name",
    "enabled",
    "schedule",
    "sessionTarget",
    "wakeMode",
    "payload",
    "delivery",
    "notify",
)


# =============================================================================
# Schedules
# =============================================================================


class EverySchedule(BaseModel):
    """Fixed-interval recurrence measured from the last completion."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    kind: Literal["every"]
    every_ms: int = Field(..., alias="everyMs", gt=0, strict=True)


class AtSchedule(BaseModel):
    """One-shot schedule, consumed after it fires."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    kind: Literal["at"]
    at: Optional[str] = None
    at_ms: Optional[int] = Field(default=None, alias="atMs", strict=True)

    @model_validator(mode="after")
    def _check_timestamp(self) -> "AtSchedule":
        if self.at is None and self.at_ms is None:
            raise ValueError("'at' schedule requires 'at' or 'atMs'")
        if self.at is not None and self.at_ms is not None:
            raise ValueError("'at' schedule accepts only one of 'at' and 'atMs'")
        try:
            parse_at_ms(self.model_dump(by_alias=True, exclude_none=True))
        except ValidationError as e:
            raise ValueError(str(e)) from e
        return self


class CronExprSchedule(BaseModel):
    """Cron-expression schedule evaluated in an IANA timezone."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["cron"]
    expr: str = Field(..., min_length=1)
    tz: Optional[str] = None

    @model_validator(mode="after")
    def _check_expr(self) -> "CronExprSchedule":
        try:
            validate_cron_expr(self.expr)
            resolve_timezone(self.tz)
        except ValidationError as e:
            raise ValueError(str(e)) from e
        return self


Schedule = Annotated[
    Union[EverySchedule, AtSchedule, CronExprSchedule],
    Field(discriminator="kind"),
]


# =============================================================================
# Delivery
# =============================================================================


class WebhookDelivery(BaseModel):
    """POST the run result to an HTTP(S) endpoint."""

    mode: Literal["webhook"]
    to: AnyHttpUrl


class SystemEventDelivery(BaseModel):
    """Enqueue the run result as a system event for the main session."""

    mode: Literal["systemEvent"]


class NoDelivery(BaseModel):
    """Discard the run result."""

    mode: Literal["none"]


Delivery = Annotated[
    Union[WebhookDelivery, SystemEventDelivery, NoDelivery],
    Field(discriminator="mode"),
]


# =============================================================================
# Payload and Job Specs
# =============================================================================


class Payload(BaseModel):
    """Opaque payload. Only a non-empty 'kind' tag is required."""

    model_config = ConfigDict(extra="allow")

    kind: str = Field(..., min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _check_json(cls, data: Any) -> Any:
        # Saved as-is by JobStore.save().
        try:
            json.dumps(data)
        except (TypeError, ValueError) as e:
            raise ValueError(f"payload must be JSON-serializable: {e}") from e
        return data


class JobCreate(BaseModel):
    """Spec accepted by CronService.add()."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str = Field(..., min_length=1)
    enabled: bool = True
    schedule: Schedule
    session_target: Literal["main", "isolated"] = Field(default="main", alias="sessionTarget")
    wake_mode: Literal["next-heartbeat", "now"] = Field(default="next-heartbeat", alias="wakeMode")
    payload: Payload
    delivery: Optional[Delivery] = None
    notify: bool = Field(default=False, strict=True)


class JobPatch(BaseModel):
    """Patch accepted by CronService.update(). Every field is optional."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: Optional[str] = Field(default=None, min_length=1)
    enabled: Optional[bool] = None
    schedule: Optional[Schedule] = None
    session_target: Optional[Literal["main", "isolated"]] = Field(default=None, alias="sessionTarget")
    wake_mode: Optional[Literal["next-heartbeat", "now"]] = Field(default=None, alias="wakeMode")
    payload: Optional[Payload] = None
    delivery: Optional[Delivery] = None
    notify: Optional[bool] = Field(default=None, strict=True)


def _raise_validation(error: PydanticValidationError, what: str) -> NoReturn:
    errors = [
        {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
        for err in error.errors(include_url=False)
    ]
    summary = "; ".join(f"{e['loc'] or what}: {e['msg']}" for e in errors)
    raise ValidationError(f"Invalid {what}: {summary}", errors=errors) from error


def validate_job_spec(spec: dict) -> dict:
    """
    Validate an add() spec.

    Returns:
        Normalized dict with every job field present (defaults applied);
        schedule, payload and delivery are deep copies of the caller's objects.

    Raises:
        ValidationError: If the job spec is malformed
    """
    if not isinstance(spec, dict):
        raise ValidationError(f"Job spec must be an object, got {type(spec).__name__}")

    try:
        model = JobCreate.model_validate(spec)
    except PydanticValidationError as e:
        _raise_validation(e, "job spec")

    return {
        "name": model.name,
        "enabled": model.enabled,
        "schedule": copy.deepcopy(spec["schedule"]),
        "sessionTarget": model.session_target,
        "wakeMode": model.wake_mode,
        "payload": copy.deepcopy(spec["payload"]),
        "delivery": copy.deepcopy(spec.get("delivery")),
        "notify": model.notify,
    }


def validate_job_patch(patch: dict) -> dict:
    """
    Validate an update() patch.

    Returns:
        Dict containing only the keys present in the patch. "delivery" may be
        None to clear a job's delivery.

    Raises:
        ValidationError: If the patch contains unknown or malformed fields
    """
    if not isinstance(patch, dict):
        raise ValidationError(f"Job patch must be an object, got {type(patch).__name__}")

    unknown = [key for key in patch if key not in PATCHABLE_FIELDS]
    if unknown:
        raise ValidationError(
            f"Fields cannot be patched: {', '.join(sorted(unknown))}",
            errors=[{"loc": key, "msg": "not patchable"} for key in unknown],
        )

    try:
        JobPatch.model_validate(patch)
    except PydanticValidationError as e:
        _raise_validation(e, "job patch")

    for key in ("name", "enabled", "schedule", "sessionTarget", "wakeMode", "payload", "notify"):
        if key in patch and patch[key] is None:
            raise ValidationError(f"Invalid job patch: {key} cannot be null")

    return copy.deepcopy(patch)
