from pydantic import BaseModel, Field

class PayoutActionIn(BaseModel):
    action: str = Field(default="freeze")
