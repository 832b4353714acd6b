# paygate/api/models/weather.py
from pydantic import BaseModel, Field
from typing import Optional


class WeatherData(BaseModel):
    """
    Weather report served to paying clients.
    """
    location: str
    temp: str
    condition: str
    accessMethod: str = Field(..., description="How access to this report was paid for.")


class WeatherResponse(BaseModel):
    """
    Response model for the protected weather endpoint.
    """
    message: str
    data: WeatherData
    paidTo: str = Field(..., description="Address the payment was made to.")
    customerId: Optional[str] = Field(None, description="Customer bound to the verified payment (if configured).")
