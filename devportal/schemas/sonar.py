from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SonarMeasure(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    metric: str
    value: Optional[str] = None
    best_value: bool = Field(False, alias="bestValue")


class SonarMeasuresResponse(BaseModel):
    measures: List[SonarMeasure] = Field(default_factory=list)
    status: str = ""
