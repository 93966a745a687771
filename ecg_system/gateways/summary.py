"""
AI Summary Gateway
Sends aggregated session statistics to a generative-AI endpoint and returns
a structured summary, falling back to a canned one on any failure
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence, Tuple

import requests

from ecg_system.errors import GatewayError
from ecg_system.models import SessionSummary
from ecg_system.sensors.ecg.processor import ECGProcessor

logger = logging.getLogger(__name__)

LANGUAGE_NAMES = {
    'en': 'English',
    'hi': 'Hindi (हिंदी)',
    'ta': 'Tamil (தமிழ்)',
    'te': 'Telugu (తెలుగు)',
    'ml': 'Malayalam (മലയാളം)',
    'kn': 'Kannada (ಕನ್ನಡ)',
    'bn': 'Bengali (বাংলা)',
    'gu': 'Gujarati (ગુજરાતી)',
    'mr': 'Marathi (मराठी)',
    'pa': 'Punjabi (ਪੰਜਾਬੀ)',
}

SYSTEM_INSTRUCTION = (
    'You are a helpful AI assistant specializing in ECG analysis. Always provide '
    'medically accurate information but include appropriate disclaimers. Format '
    'your response as a JSON object.'
)

REQUIRED_KEYS = ('summary', 'observations', 'suggestions')


@dataclass(frozen=True)
class AISummary:
    """Structured summary of one or more ECG sessions."""
    summary: str
    observations: str
    suggestions: Tuple[str, ...] = field(default_factory=tuple)
    is_fallback: bool = False

    def to_dict(self) -> dict:
        return {
            'summary': self.summary,
            'observations': self.observations,
            'suggestions': list(self.suggestions),
        }


FALLBACK_SUMMARY = AISummary(
    summary=(
        'Based on the available ECG data, the analysis shows normal sinus rhythm '
        'with heart rate within normal parameters.'
    ),
    observations=(
        'The ECG demonstrates regular cardiac rhythm with consistent intervals. '
        'Heart rate variability appears normal for the recorded duration.'
    ),
    suggestions=(
        'Maintain regular cardiovascular exercise for 30 minutes daily',
        'Follow a heart-healthy diet rich in omega-3 fatty acids and low in sodium',
        'Practice stress management techniques such as meditation or deep breathing exercises',
    ),
    is_fallback=True,
)


# ---------------------------------------------------------------------------
# Statistics text
# ---------------------------------------------------------------------------

def language_name(code: Optional[str]) -> str:
    """Display name for a language code; unknown codes map to English."""
    return LANGUAGE_NAMES.get((code or 'en').lower(), 'English')


def _session_block(session: SessionSummary, index: int) -> str:
    return (
        f"Session {index} ({session.started_at.date().isoformat()}):\n"
        f"- Heart Rate: {round(session.avg_bpm)} bpm "
        f"(Range: {round(session.min_bpm)}-{round(session.max_bpm)})\n"
        f"- Rhythm: {session.rhythm}\n"
        f"- Status: {session.status}\n"
        f"- Duration: {int(session.duration_seconds)}s\n"
        f"- Data Points: {session.sample_count} samples\n"
        f"- Quality: "
        f"{ECGProcessor.assess_quality(session.avg_bpm, session.duration_seconds, session.sample_count)}\n"
    )


def trend_analysis(sessions: Sequence[SessionSummary]) -> str:
    """Average heart-rate change between the earliest and latest session."""
    if len(sessions) < 2:
        return 'Trend analysis requires at least 2 ECG sessions for comparison.'

    ordered = sorted(sessions, key=lambda s: s.started_at)
    first, last = ordered[0], ordered[-1]

    if first.avg_bpm > 0:
        change = (last.avg_bpm - first.avg_bpm) / first.avg_bpm * 100.0
        change_text = f"{'+' if change >= 0 else ''}{change:.1f}%"
    else:
        change_text = 'n/a'

    return (
        "Overall Trends:\n"
        f"• Heart rate change: {change_text}\n"
        f"• Sessions analyzed: {len(sessions)}\n"
        f"• Time span: {first.started_at.date().isoformat()} to {last.started_at.date().isoformat()}\n"
    )


def build_statistics(sessions: Sequence[SessionSummary]) -> str:
    """
    Aggregate stored sessions into the plain-text statistics block sent to
    the model.

    Args:
        sessions: Session summaries in any order

    Returns:
        Multi-line statistics text
    """
    if not sessions:
        return 'No ECG data available'

    blocks = [_session_block(s, i + 1) for i, s in enumerate(sessions)]
    plural = 's' if len(sessions) > 1 else ''
    return (
        f"Patient ECG Analysis ({len(sessions)} session{plural}):\n\n"
        + "\n".join(blocks)
        + "\nHistorical Trends:\n"
        + trend_analysis(sessions)
    )


def build_prompt(statistics: str, target_language: str) -> str:
    language = language_name(target_language)
    return (
        f"Analyze the following ECG data for a patient: {statistics}.\n\n"
        f"IMPORTANT: Respond in {language} language. If the language is not English, "
        f"provide the response completely in that language.\n\n"
        "Provide a comprehensive analysis including:\n"
        "1. A concise summary of the ECG findings\n"
        "2. Any potential observations or areas of interest\n"
        "3. Three specific, actionable lifestyle suggestions for heart health\n\n"
        "Format your response as a JSON object with the keys "
        "\"summary\", \"observations\" and \"suggestions\" (a list of strings), "
        f"all written in {language}."
    )


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class SummaryGateway:
    """
    Client for the generative-AI summary endpoint

    summarize() never raises: timeouts, HTTP errors and malformed responses
    are logged and replaced by FALLBACK_SUMMARY. request_summary() is the
    raising variant.
    """

    def __init__(self, api_key: str, api_url: str, timeout: float = 30.0):
        """
        Args:
            api_key: Key sent in the x-goog-api-key header
            api_url: generateContent endpoint URL
            timeout: Seconds before the request is abandoned
        """
        self.api_key = api_key
        self.api_url = api_url
        self.timeout = timeout
        self.request_count = 0
        self.fallback_count = 0

        logger.info(f"AI summary gateway initialized (timeout {timeout:.0f}s)")

    @classmethod
    def from_settings(cls, settings) -> 'SummaryGateway':
        return cls(
            api_key=settings.gemini_api_key,
            api_url=settings.gemini_api_url,
            timeout=settings.ai_timeout,
        )

    def build_payload(self, statistics: str, target_language: str) -> dict:
        return {
            'contents': [{'parts': [{'text': build_prompt(statistics, target_language)}]}],
            'systemInstruction': {'parts': [{'text': SYSTEM_INSTRUCTION}]},
            'generationConfig': {
                'responseMimeType': 'application/json',
                'responseSchema': {
                    'type': 'OBJECT',
                    'properties': {
                        'summary': {'type': 'STRING'},
                        'observations': {'type': 'STRING'},
                        'suggestions': {'type': 'ARRAY', 'items': {'type': 'STRING'}},
                    },
                    'required': list(REQUIRED_KEYS),
                },
            },
        }

    def request_summary(self, statistics: str, target_language: str = 'en') -> AISummary:
        """
        Call the endpoint once.

        Raises:
            GatewayError: timeout, transport/HTTP failure or malformed response
        """
        if not self.api_key:
            raise GatewayError('AI summary endpoint not configured', code='not-configured')

        self.request_count += 1
        try:
            response = requests.post(
                self.api_url,
                headers={
                    'Content-Type': 'application/json',
                    'x-goog-api-key': self.api_key,
                },
                data=json.dumps(self.build_payload(statistics, target_language)),
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise GatewayError(
                f"AI summary request timed out after {self.timeout:.0f}s",
                code=GatewayError.TIMEOUT,
            ) from e
        except requests.exceptions.RequestException as e:
            raise GatewayError(f"AI summary request failed: {e}", code=GatewayError.HTTP_ERROR) from e

        if response.status_code != 200:
            raise GatewayError(
                f"API request failed with status: {response.status_code}",
                code=GatewayError.HTTP_ERROR,
            )

        return self.parse_response(response.text)

    @staticmethod
    def parse_response(body: str) -> AISummary:
        """
        Extract the JSON summary from a generateContent response body.

        Raises:
            GatewayError: code malformed-response
        """
        try:
            result = json.loads(body)
            text = result['candidates'][0]['content']['parts'][0]['text']
            data = json.loads(text)
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise GatewayError(
                f"Malformed AI response: {e}",
                code=GatewayError.MALFORMED_RESPONSE,
            ) from e

        if not isinstance(data, dict) or any(key not in data for key in REQUIRED_KEYS):
            raise GatewayError(
                'AI response missing required keys',
                code=GatewayError.MALFORMED_RESPONSE,
            )

        suggestions = data['suggestions']
        if isinstance(suggestions, str):
            suggestions = [suggestions]
        if not isinstance(suggestions, list):
            raise GatewayError(
                'AI response suggestions is not a list',
                code=GatewayError.MALFORMED_RESPONSE,
            )

        return AISummary(
            summary=str(data['summary']),
            observations=str(data['observations']),
            suggestions=tuple(str(s) for s in suggestions),
        )

    def summarize(self, statistics: str, target_language: str = 'en') -> AISummary:
        """
        Summarize session statistics, falling back to a canned summary.

        Args:
            statistics:      Text from build_statistics()
            target_language: Language code (see LANGUAGE_NAMES)

        Returns:
            AISummary (is_fallback=True when the canned summary was used)
        """
        try:
            summary = self.request_summary(statistics, target_language)
            logger.info(f"✓ AI summary received ({language_name(target_language)})")
            return summary
        except GatewayError as e:
            self.fallback_count += 1
            logger.warning(f"⚠ AI summary unavailable, using fallback: {e}")
            return FALLBACK_SUMMARY

    def summarize_sessions(self, sessions: Sequence[SessionSummary], target_language: str = 'en') -> AISummary:
        return self.summarize(build_statistics(sessions), target_language)

    def get_status(self) -> dict:
        return {
            'configured': bool(self.api_key),
            'requests': self.request_count,
            'fallbacks': self.fallback_count,
            'last_checked': datetime.now().isoformat(timespec='seconds'),
        }
