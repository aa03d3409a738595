import uuid

from pydantic import BaseModel


class DelayRanking(BaseModel):
    user_id: uuid.UUID
    username: str
    full_name: str
    delay_count: int
    total_delay_time: int
    average_percentage: float
