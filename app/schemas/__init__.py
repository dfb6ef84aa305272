from app.schemas.integration import AuthorizeResponse, CallbackResponse, IntegrationView
from app.schemas.message import SendRequest, SendResponse

__all__ = ["AuthorizeResponse", "CallbackResponse", "IntegrationView", "SendRequest", "SendResponse"]
