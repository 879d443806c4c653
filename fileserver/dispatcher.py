import logging
from typing import Protocol

from .auth import AuthDecision, evaluate
from .config import ServerConfig
from .models import Request, ResponseSpec

logger = logging.getLogger(__name__)


class StaticResponder(Protocol):
    def handle(self, req: Request, root: str) -> ResponseSpec:
        ...


class RequestDispatcher:
    """Runs the credential gate, then hands allowed requests to the responder."""

    def __init__(self, config: ServerConfig, responder: StaticResponder) -> None:
        self.config = config
        self.responder = responder

    def dispatch(self, req: Request) -> ResponseSpec:
        decision = evaluate(req, self.config.username, self.config.password)
        if decision is AuthDecision.DENY:
            logger.debug("Credentials rejected for %s %s", req.method, req.target)
            return self.challenge()
        # The root goes through untouched; containment is the responder's job.
        return self.responder.handle(req, self.config.root)

    def challenge(self) -> ResponseSpec:
        return ResponseSpec(
            401,
            "Unauthorized",
            headers={"WWW-Authenticate": f'Basic realm="{self.config.realm}"'},
        )
