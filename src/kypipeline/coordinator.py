"""Pipeline coordinator.

Orchestrates each inbound request: authenticate the actor, validate the
arguments, run the store operation in one unit of work, then trigger any
follow-up (a broadcast after approval). Holds only immutable collaborators;
every call is independent.

Provides:
- Announcement: Structured broadcast fields
- ApprovalOutcome: Result of an approve/unapprove request
- PipelineCoordinator: Entry points used by the HTTP layer and the CLI
"""

import hmac
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import structlog

from kypipeline.core.config import Config
from kypipeline.core.errors import (
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    KyPipelineError,
    ValidationError,
)
from kypipeline.core.llm import AnthropicPhotoAnalyzer, PhotoAnalyzer
from kypipeline.core.persistence.database import get_session
from kypipeline.core.safety.approval import ApprovalAction, delete_entry, parse_action, transition
from kypipeline.core.safety.identity import SessionIdentity, SessionVerifier, require_admin
from kypipeline.core.safety.risk import RiskAnalysis, analyze_photo
from kypipeline.core.safety.signature import verify_signature
from kypipeline.line.broadcast import BroadcastResult, LineBroadcaster
from kypipeline.line.formatters import WeatherSlot, build_broadcast_text
from kypipeline.line.webhook import parse_webhook_body, record_webhook_events

logger = structlog.get_logger()


@dataclass(frozen=True)
class Announcement:
    """Structured fields for an assembled broadcast message."""

    title: str
    url: Optional[str] = None
    note: Optional[str] = None
    work_detail: Optional[str] = None
    workers: Optional[int] = None
    third_party_level: Optional[str] = None
    weather_slots: Optional[Sequence[WeatherSlot]] = None
    ai_hazards: Optional[str] = None
    ai_countermeasures: Optional[str] = None
    ai_third_party: Optional[str] = None

    def render(self) -> str:
        return build_broadcast_text(
            self.title,
            url=self.url,
            note=self.note,
            work_detail=self.work_detail,
            workers=self.workers,
            third_party_level=self.third_party_level,
            weather_slots=self.weather_slots,
            ai_hazards=self.ai_hazards,
            ai_countermeasures=self.ai_countermeasures,
            ai_third_party=self.ai_third_party,
        )


@dataclass(frozen=True)
class ApprovalOutcome:
    """Result of an approve/unapprove request.

    Attributes:
        is_approved: Committed entry state
        changed: Whether the state actually flipped
        broadcast: Broadcast report when one was requested, else None
    """

    is_approved: bool
    changed: bool
    broadcast: Optional[dict[str, Any]] = None


class PipelineCoordinator:
    """Entry points of the approval and risk-assessment pipeline."""

    def __init__(
        self,
        config: Config,
        analyzer: Optional[PhotoAnalyzer] = None,
        broadcaster: Optional[LineBroadcaster] = None,
        sessions: Optional[SessionVerifier] = None,
    ):
        """Initialize coordinator.

        Args:
            config: Application configuration
            analyzer: Photo analyzer; built from config when an API key is set
            broadcaster: LINE broadcaster; built from config by default
            sessions: Bearer session verifier; built from config by default
        """
        self.config = config
        if analyzer is None and config.anthropic_api_key:
            analyzer = AnthropicPhotoAnalyzer(config.anthropic_api_key, model=config.vision_model)
        self.analyzer = analyzer
        self.broadcaster = broadcaster or LineBroadcaster.from_config(config)
        self.sessions = sessions or SessionVerifier.from_config(config)

        if not config.broadcast_auth_enabled:
            logger.warning(
                "broadcast_auth_disabled",
                reason="LINE_PUSH_SECRET not set; broadcast endpoint accepts unauthenticated callers",
            )

    def authenticate(self, authorization: Optional[str]) -> SessionIdentity:
        """Resolve an Authorization header to a session holder."""
        return self.sessions.verify(authorization)

    async def set_approval(
        self,
        identity: SessionIdentity,
        entry_id: str,
        project_id: str,
        action: ApprovalAction | str,
        actor_id: Optional[str] = None,
        note: Optional[str] = None,
        announcement: Optional[Announcement] = None,
    ) -> ApprovalOutcome:
        """Approve or unapprove an entry on behalf of a session holder.

        The actor recorded in the trail is the authenticated subject. A
        caller-supplied actor id must name that same subject.

        When an announcement is given and the entry ends up approved, one
        broadcast is sent after the transition commits. A broadcast failure
        is reported in the outcome; the committed approval stands.

        Raises:
            ValidationError: Bad ids/action, or announcement without title
            AuthorizationError: Actor mismatch or non-admin caller
            EntryNotFound: Entry absent from the project
            PersistenceError: Store failure
        """
        action = parse_action(action)
        if actor_id and actor_id != identity.user_id:
            raise AuthorizationError("actorId does not match the authenticated session")
        require_admin(self.config, identity)

        announce_text = None
        if announcement is not None and action is ApprovalAction.APPROVE:
            announce_text = announcement.render()
            if not announce_text:
                raise ValidationError("title required for broadcast")

        async with get_session() as session:
            result = await transition(
                session,
                entry_id,
                project_id,
                action,
                actor_id=identity.user_id,
                note=note,
            )

        report = None
        if announce_text and result.is_approved:
            report = await self._broadcast_report(announce_text)

        return ApprovalOutcome(is_approved=result.is_approved, changed=result.changed, broadcast=report)

    async def _broadcast_report(self, text: str) -> dict[str, Any]:
        try:
            sent = await self.broadcaster.broadcast(text)
        except KyPipelineError as e:
            logger.error("approval_broadcast_failed", kind=e.kind, error=e.message)
            return {"ok": False, "error": e.to_payload()["error"]}
        return {"ok": True, "status": sent.status}

    async def delete_entry(self, identity: SessionIdentity, entry_id: str) -> None:
        """Delete an unapproved entry on behalf of a session holder.

        Raises:
            AuthorizationError: Non-admin caller when an admin is configured
            EntryNotFound: Entry absent
            ApprovedEntryImmutable: Entry is approved; nothing deleted
        """
        require_admin(self.config, identity)
        async with get_session() as session:
            await delete_entry(session, entry_id)
        logger.info("ky_entry_delete_requested", ky_entry_id=entry_id, user_id=identity.user_id)

    async def analyze_photo(self, image_url: Optional[str]) -> RiskAnalysis:
        """Compute the photo risk factor.

        Raises:
            ConfigurationError: A photo was given but no analyzer is configured
            AnalysisUnavailable: Analyzer failed
        """
        if (image_url or "").strip() and self.analyzer is None:
            raise ConfigurationError("ANTHROPIC_API_KEY is not configured")
        return await analyze_photo(image_url, self.analyzer)

    def check_broadcast_secret(self, provided: Optional[str]) -> None:
        """Gate the broadcast endpoint on the optional shared secret.

        With no secret configured this is a no-op: broadcast auth is
        explicitly disabled (see the startup warning).

        Raises:
            AuthenticationError: Secret configured and header missing or wrong
        """
        secret = self.config.line_push_secret
        if not secret:
            return
        candidate = (provided or "").strip().encode("utf-8")
        if not hmac.compare_digest(candidate, secret.encode("utf-8")):
            logger.warning("broadcast_unauthorized")
            raise AuthenticationError("unauthorized")

    async def broadcast(
        self,
        text: Optional[str] = None,
        announcement: Optional[Announcement] = None,
    ) -> BroadcastResult:
        """Broadcast raw text, or a message assembled from an announcement.

        Raises:
            ValidationError: Resulting text is empty
            ConfigurationError: No channel access token
            GatewayError: Gateway rejected or unreachable
        """
        if text is None:
            if announcement is None or not (announcement.title or "").strip():
                raise ValidationError("title required")
            text = announcement.render()
        return await self.broadcaster.broadcast(text)

    async def ingest_webhook(self, raw_body: bytes, signature: Optional[str]) -> int:
        """Authenticate and record one webhook delivery.

        Returns:
            Number of events recorded

        Raises:
            ConfigurationError: No channel secret configured (fails closed)
            ValidationError: Missing signature or malformed JSON
            AuthenticationError: Signature does not match
        """
        secret = self.config.line_channel_secret
        if not secret:
            logger.error("webhook_refused", reason="LINE_CHANNEL_SECRET not set")
            raise ConfigurationError("LINE_CHANNEL_SECRET is not configured; refusing webhook")

        if not (signature or "").strip():
            raise ValidationError("missing signature")

        if not verify_signature(secret, raw_body, signature):
            logger.warning("webhook_signature_invalid", body_length=len(raw_body))
            raise AuthenticationError("invalid signature")

        events = parse_webhook_body(raw_body)
        async with get_session() as session:
            return await record_webhook_events(session, events)
