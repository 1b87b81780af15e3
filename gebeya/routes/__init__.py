from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class RequestModel(BaseModel):
    """Request body accepting snake_case or the camelCase names the web client sends."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
