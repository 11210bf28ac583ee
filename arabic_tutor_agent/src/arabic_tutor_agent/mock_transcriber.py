"""
Mock Transcriber

Offline stand-in for a speech-to-text service. Picks a plausible transcription
of the expected phrase (sometimes correct, sometimes a typical mishearing) so
the scoring and feedback paths can be exercised without credentials.

Not a scoring oracle: the choice is random. Pass a seeded random.Random to pin
outputs in tests.
"""

import random
from dataclasses import dataclass
from typing import Dict, List, Optional

from arabic_tutor_agent.pronunciation import PhonemeAnalysis, PronunciationScorer


# Known phrases -> transcriptions a learner might produce.
# The duplicate correct entry for "مرحبا" doubles its chance of being picked.
KNOWN_VARIANTS: Dict[str, List[str]] = {
    "مرحبا": ["مرحبا", "مرحبا", "مرحباً", "مرحبة"],
    "شكرا": ["شكرا", "شكراً", "شكرة"],
    "كيف الحال": ["كيف الحال", "كيف الحالة", "كيف حالك"],
}

CONFIDENCE_FLOOR = 0.85
CONFIDENCE_SPAN = 0.1


@dataclass
class MockTranscription:
    transcribed: str
    confidence: float
    phonemes: PhonemeAnalysis


class MockTranscriber:
    """Generates randomized-but-plausible transcriptions."""

    def __init__(
        self,
        scorer: Optional[PronunciationScorer] = None,
        rng: Optional[random.Random] = None,
        variants: Optional[Dict[str, List[str]]] = None,
    ):
        self.scorer = scorer or PronunciationScorer()
        self.rng = rng or random.Random()
        self.variants = variants if variants is not None else KNOWN_VARIANTS

    def candidates(self, expected_text: str) -> List[str]:
        """Transcriptions the mock may return for a phrase."""
        return self.variants.get(expected_text) or [expected_text]

    def simulate(self, expected_text: str) -> MockTranscription:
        transcribed = self.rng.choice(self.candidates(expected_text))
        confidence = CONFIDENCE_FLOOR + self.rng.random() * CONFIDENCE_SPAN

        return MockTranscription(
            transcribed=transcribed,
            confidence=confidence,
            phonemes=self.scorer.phoneme_analysis(expected_text, transcribed),
        )
