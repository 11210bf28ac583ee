"""
Pronunciation Scoring

Scores how closely a transcribed utterance matches the phrase the learner was
asked to say, using normalized Levenshtein similarity over Unicode code points.

Algorithm:
- Exact match -> EXACT_MATCH_SCORE (0.95, "as good as we can detect")
- Otherwise similarity = (longest - edit_distance) / longest
- Floor at MIN_SCORE (0.3) so partial attempts never read as near-zero

The phoneme analysis is a coarse proxy derived from the same similarity. It is
advisory only and is not real phonetic analysis.
"""

import math
from dataclasses import dataclass, field, asdict
from typing import List, Tuple


def levenshtein_distance(a: str, b: str) -> int:
    """
    Classic dynamic-programming edit distance.

    Operates on code points, so Arabic letters and combining diacritics each
    count as one character.
    """
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i] + [0] * len(b)
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current[j] = min(
                previous[j] + 1,         # deletion
                current[j - 1] + 1,      # insertion
                previous[j - 1] + cost,  # substitution
            )
        previous = current
    return previous[len(b)]


@dataclass
class PhonemeAnalysis:
    """Approximate per-character breakdown of an attempt."""
    total_phonemes: int
    correct_phonemes: int
    problem_areas: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class PronunciationScorer:
    """
    Maps (transcribed, expected) pairs to a score in [MIN_SCORE, EXACT_MATCH_SCORE]
    and the score to one of five fixed feedback bands.
    """

    EXACT_MATCH_SCORE = 0.95
    MIN_SCORE = 0.3

    # (lower bound, message), checked top-down
    FEEDBACK_BANDS: Tuple[Tuple[float, str], ...] = (
        (0.9, "Excellent pronunciation! 🎉"),
        (0.8, "Very good! Small improvements possible. 👍"),
        (0.7, "Good effort! Keep practicing. 😊"),
        (0.6, "Not bad! Focus on clarity. 🤔"),
    )
    FALLBACK_FEEDBACK = "Keep trying! Listen to the pronunciation guide. 💪"

    def similarity(self, first: str, second: str) -> float:
        """Normalized similarity in [0, 1]; two empty strings are identical."""
        if first == second:
            return 1.0

        longest = max(len(first), len(second))
        if longest == 0:
            return 1.0

        distance = levenshtein_distance(first, second)
        return (longest - distance) / longest

    def score(self, transcribed: str, expected: str) -> float:
        """
        Score a transcription against the expected phrase.

        Args:
            transcribed: What the speech service heard
            expected: What the learner was asked to say

        Returns:
            0.95 for an exact match, otherwise the similarity clamped to [0.3, 0.95]
        """
        if transcribed == expected:
            return self.EXACT_MATCH_SCORE

        similarity = self.similarity(transcribed, expected)
        return min(self.EXACT_MATCH_SCORE, max(self.MIN_SCORE, similarity))

    def feedback(self, score: float) -> str:
        """Canonical feedback message for a score."""
        for threshold, message in self.FEEDBACK_BANDS:
            if score >= threshold:
                return message
        return self.FALLBACK_FEEDBACK

    def phoneme_analysis(self, expected: str, transcribed: str) -> PhonemeAnalysis:
        total = len(expected)
        correct = math.floor(total * self.similarity(expected, transcribed))
        return PhonemeAnalysis(
            total_phonemes=total,
            correct_phonemes=correct,
            problem_areas=["vowel_sounds"] if transcribed != expected else [],
        )
