"""
Wiring of the attestation components for one application instance.
"""
from datetime import datetime
from typing import Callable, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from .attestation.companion import CompanionBackend, HttpCompanionBackend, InProcessCompanionBackend
from .attestation.methods import MethodRegistry
from .attestation.service import AttestationService
from .challenges.delivery import CodeDelivery, OutboxCodeDelivery
from .challenges.gateway import HttpOtpGateway, LocalOtpGateway, OtpGateway
from .challenges.issuer import ChallengeIssuer
from .challenges.validator import ChallengeValidator
from .config import Settings
from .core.security import utcnow
from .directory.service import PhysicianDirectory, get_physician_directory

class Runtime:
    """
    Holds the collaborators shared by all requests.

    Remote collaborators are used when their URL is configured; otherwise
    the in-process implementations are wired in.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: Settings,
        delivery: Optional[CodeDelivery] = None,
        directory: Optional[PhysicianDirectory] = None,
        otp_gateway: Optional[OtpGateway] = None,
        companion: Optional[CompanionBackend] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.delivery = delivery or OutboxCodeDelivery(sender=settings.mail_from)
        self.issuer = ChallengeIssuer(
            session_factory,
            self.delivery,
            ttl_minutes=settings.otp_ttl_minutes,
            delivery_timeout=settings.request_timeout_seconds,
            clock=clock
        )
        self.validator = ChallengeValidator(session_factory, max_attempts=settings.otp_max_attempts, clock=clock)
        self.directory = directory or get_physician_directory(session_factory, settings)

        if otp_gateway is None:
            if settings.otp_service_url:
                otp_gateway = HttpOtpGateway(settings.otp_service_url, timeout=settings.request_timeout_seconds)
            else:
                otp_gateway = LocalOtpGateway(self.issuer, self.validator)
        self.otp_gateway = otp_gateway

        if companion is None:
            if settings.companion_api_url:
                companion = HttpCompanionBackend(settings.companion_api_url, timeout=settings.request_timeout_seconds)
            else:
                companion = InProcessCompanionBackend()
        self.companion = companion

        self.methods = MethodRegistry(
            self.otp_gateway,
            self.companion,
            approval_timeout=settings.app_approval_timeout_seconds
        )
        self.attestations = AttestationService(
            session_factory,
            self.directory,
            self.methods,
            idle_minutes=settings.session_idle_minutes,
            clock=clock
        )

def get_runtime(request: Request) -> Runtime:
    """
    Runtime dependency - the instance stored on the application at startup.
    """
    return request.app.state.runtime
