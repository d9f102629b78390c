"""JSON list format: one object per record with tag, id, value, idref and records."""

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from gedcom_errors import StructuralError


class RecordModel(BaseModel):
    """A record in the JSON list format."""
    model_config = ConfigDict(extra="ignore")

    tag: str = Field(min_length=1, description="The record tag, eg INDI")
    id: str | None = Field(default=None, description="Identifier declared by the record")
    value: str | None = Field(default=None, description="Text value")
    idref: str | None = Field(default=None, description="Identifier of the record pointed to")
    records: list["RecordModel"] | None = Field(default=None, description="Sub-records in order")

    @model_validator(mode="after")
    def _value_or_idref(self) -> "RecordModel":
        if self.value is not None and self.idref is not None:
            raise ValueError("'value' and 'idref' are mutually exclusive")
        return self


RecordModel.model_rebuild()

RECORD_LIST = TypeAdapter(list[RecordModel])


def load_records(text: str | bytes) -> list[RecordModel]:
    """Validate a JSON document into record models."""
    try:
        return RECORD_LIST.validate_json(text)
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first["loc"])
        raise StructuralError(f"Invalid JSON GEDCOM at {where or 'top level'}: {first['msg']}") from e


def dump_records(records) -> str:
    """Render records (anything with to_dict()) as a JSON document."""
    models = [RecordModel.model_validate(r.to_dict()) for r in records]
    return RECORD_LIST.dump_json(models, exclude_none=True, indent=1).decode("utf-8")
