"""Request validation shared by the engine's entry points."""

from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import InvalidInputError

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def parse_request(schema: type[SchemaT], **values: Any) -> SchemaT:
    """Validate raw arguments against a request schema.

    Raises:
        InvalidInputError: with pydantic's messages, before anything is written
    """
    try:
        return schema(**values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise InvalidInputError(problems) from e
