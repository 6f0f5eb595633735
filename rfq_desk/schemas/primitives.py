from __future__ import annotations

from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# --- Numeric primitives ---
Money = Annotated[Decimal, Field(ge=0, max_digits=20, decimal_places=4)]
NonNegInt = Annotated[int, Field(ge=0)]


class WireModel(BaseModel):
    """
    Shapes exchanged verbatim with the quote store.
    camelCase on the wire, snake_case in Python.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
