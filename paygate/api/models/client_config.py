# paygate/api/models/client_config.py
from pydantic import BaseModel, Field
from typing import Optional


class ClientConfigResponse(BaseModel):
    """
    Public configuration needed by the browser payment widget.

    Never carries secret keys.
    """
    clientId: Optional[str] = Field(None, description="Public client identifier for the wallet widget.")
    resourceUrl: str
    network: str
    payTo: str
    price: str
    paymentMessage: str = Field(..., description="Unsigned challenge message the client must sign.")
