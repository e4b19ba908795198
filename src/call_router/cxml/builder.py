"""
CXML Response Builder

Renders a RoutingOutcome into the call-control document the telephony
platform executes. Cloudonix CXML is TwiML compatible, so documents are
built with the Twilio VoiceResponse builder, which escapes every text node
and attribute value.

Rendering is pure: the same outcome and attempt always yield the same
bytes, which is what lets idempotent replays be byte-identical.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import urlencode

from twilio.twiml.voice_response import VoiceResponse

from ..core.config import Settings
from ..core.exceptions import UnsupportedOutcomeError
from ..models.routing import (
    BusinessHoursOutcome,
    DialTarget,
    DirectExtensionOutcome,
    FallbackAction,
    FallbackOutcome,
    RingGroupOutcome,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResponseBuilderConfig:
    """Rendering options for call-control documents"""
    dial_action_url: str
    voice: str = "woman"
    language: str = "en-US"
    voicemail_url: Optional[str] = None
    voicemail_max_length: int = 120
    busy_message: str = "All agents are currently busy. Please try again later."
    voicemail_prompt: str = "No one is available to take your call. Please leave a message after the tone."
    goodbye_message: str = "Thank you for calling. Goodbye."

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResponseBuilderConfig":
        return cls(
            dial_action_url=settings.dial_action_url,
            voice=settings.say_voice,
            language=settings.say_language,
            voicemail_url=settings.voicemail_url,
            voicemail_max_length=settings.voicemail_max_length_seconds,
        )


class ResponseBuilder:
    """Outcome -> CXML document"""

    def __init__(self, config: ResponseBuilderConfig):
        self.config = config
        self._renderers: dict[type, Callable] = {
            FallbackOutcome: self._render_fallback,
            DirectExtensionOutcome: self._render_direct,
            RingGroupOutcome: self._render_ring_group,
            BusinessHoursOutcome: self._render_business_hours,
        }

    def render(self, outcome, attempt: int = 0) -> str:
        """
        Render the document for a ring attempt of an outcome.

        Args:
            outcome: RoutingOutcome variant
            attempt: Zero-based ring attempt; past the last attempt the
                outcome's fallback is rendered

        Raises:
            UnsupportedOutcomeError: No renderer exists for the outcome type
        """
        renderer = self._renderers.get(type(outcome))
        if renderer is None:
            kind = getattr(outcome, "kind", type(outcome).__name__)
            logger.critical(f"No renderer for routing outcome {kind!r}")
            raise UnsupportedOutcomeError(str(kind))
        return str(renderer(outcome, attempt))

    def render_hangup(self) -> str:
        response = VoiceResponse()
        response.hangup()
        return str(response)

    # ------------------------------------------------------------------
    # Variants
    # ------------------------------------------------------------------

    def _render_fallback(self, outcome: FallbackOutcome, attempt: int) -> VoiceResponse:
        response = VoiceResponse()

        if outcome.action == FallbackAction.VOICEMAIL:
            if self.config.voicemail_url:
                response.redirect(self.config.voicemail_url, method="POST")
                return response
            response.say(outcome.message or self.config.voicemail_prompt, **self._say_options())
            response.record(max_length=self.config.voicemail_max_length, play_beep=True)
            response.say(self.config.goodbye_message, **self._say_options())
            response.hangup()
            return response

        if outcome.action == FallbackAction.BUSY:
            response.say(outcome.message or self.config.busy_message, **self._say_options())
            response.hangup()
            return response

        if outcome.message:
            response.say(outcome.message, **self._say_options())
        response.hangup()
        return response

    def _render_direct(self, outcome: DirectExtensionOutcome, attempt: int) -> VoiceResponse:
        return self._render_attempts(outcome.attempts(), outcome.timeout, outcome.fallback, attempt)

    def _render_ring_group(self, outcome: RingGroupOutcome, attempt: int) -> VoiceResponse:
        return self._render_attempts(
            outcome.attempts(),
            outcome.timeout,
            outcome.fallback,
            attempt,
            cursor=outcome.cursor_after(attempt),
        )

    def _render_business_hours(self, outcome: BusinessHoursOutcome, attempt: int) -> VoiceResponse:
        renderer = self._renderers.get(type(outcome.target))
        if renderer is None:
            logger.critical(f"No renderer for business hours target {outcome.target!r}")
            raise UnsupportedOutcomeError(getattr(outcome.target, "kind", "unknown"))
        return renderer(outcome.target, attempt)

    def _render_attempts(
        self,
        attempts: list[list[DialTarget]],
        timeout: int,
        fallback: FallbackOutcome,
        attempt: int,
        cursor: Optional[int] = None,
    ) -> VoiceResponse:
        if attempt < 0 or attempt >= len(attempts):
            return self._render_fallback(fallback, attempt)

        response = VoiceResponse()
        dial = response.dial(
            timeout=timeout,
            action=self._action_url(attempt, cursor),
            method="POST",
            answer_on_bridge=True,
        )
        for target in attempts[attempt]:
            if target.uri.lower().startswith("sip:"):
                dial.sip(target.uri)
            else:
                dial.number(target.uri)
        return response

    def _action_url(self, attempt: int, cursor: Optional[int] = None) -> str:
        # Round-robin groups also carry the position just dialed, so a call
        # whose state was lost can resume after it
        query = {"attempt": attempt}
        if cursor is not None:
            query["cursor"] = cursor
        separator = "&" if "?" in self.config.dial_action_url else "?"
        return f"{self.config.dial_action_url}{separator}{urlencode(query)}"

    def _say_options(self) -> dict:
        return {"voice": self.config.voice, "language": self.config.language}
