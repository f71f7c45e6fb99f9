from pydantic import BaseModel, ConfigDict

class OrmModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

class FrozenOrmModel(OrmModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)
