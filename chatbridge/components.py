"""Platform-agnostic descriptions of interactive message components.

The agent emits these as JSON; channels that advertise component sending
translate them into their own UI primitives. Row order and the order of
components inside a row are significant and must survive the round trip.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

ButtonStyleName = Literal["primary", "secondary", "success", "danger"]


class Button(BaseModel):
    type: Literal["button"]
    custom_id: str = Field(min_length=1)
    label: str
    style: ButtonStyleName | None = None
    disabled: bool | None = None


class SelectOption(BaseModel):
    label: str
    value: str
    description: str | None = None


class StringSelect(BaseModel):
    type: Literal["string_select"]
    custom_id: str = Field(min_length=1)
    placeholder: str | None = None
    min_values: int | None = Field(default=None, ge=0)
    max_values: int | None = Field(default=None, ge=1)
    options: list[SelectOption]
    disabled: bool | None = None


Component = Annotated[Union[Button, StringSelect], Field(discriminator="type")]


class ActionRow(BaseModel):
    type: Literal["action_row"] = "action_row"
    components: list[Component]


MAX_ACTION_ROWS = 5

_ROWS_ADAPTER = TypeAdapter(list[ActionRow])


def parse_action_rows(raw: Any) -> list[ActionRow]:
    """Validate a JSON-like list of action rows.

    Raises:
        ValueError: if the payload does not describe valid action rows or
            has more than ``MAX_ACTION_ROWS`` of them.
    """
    try:
        rows = _ROWS_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        raise ValueError(f"Invalid action rows: {exc}") from exc
    if len(rows) > MAX_ACTION_ROWS:
        raise ValueError(f"At most {MAX_ACTION_ROWS} action rows are supported, got {len(rows)}")
    return rows
