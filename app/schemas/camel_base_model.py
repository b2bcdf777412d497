import uuid
from datetime import datetime, date
from enum import Enum
from pydantic import BaseModel, ConfigDict, field_serializer
from pydantic.alias_generators import to_camel


class CamelCaseBaseModel(BaseModel):
    """
    Base model speaking camelCase on the wire and snake_case in Python.

    - Input: camelCase or snake_case keys are both accepted.
    - Output: `model_dump(by_alias=True)` gives camelCase keys.
    - ORM rows can be validated directly (`from_attributes`).
    - UUIDs, Enums and datetimes are serialized to JSON-friendly strings.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    @field_serializer("*")
    def serialize_any(self, value):
        if isinstance(value, uuid.UUID):
            return str(value)

        if isinstance(value, Enum):
            return value.value

        # datetime is a date subclass
        if isinstance(value, (datetime, date)):
            return value.isoformat()

        if isinstance(value, (list, tuple, set)):
            return [self.serialize_any(item) for item in value]

        if isinstance(value, dict):
            return {key: self.serialize_any(val) for key, val in value.items()}

        return value
