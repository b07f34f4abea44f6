from __future__ import annotations

import re
from typing import Optional

from .scoring import TranscriptMetrics


FILLER_PATTERN = re.compile(
	r"\b(um+|uh+|erm|er|ah+|hmm+|like|you know|i mean|basically|actually|literally|kind of|sort of)\b",
	re.IGNORECASE,
)


def dedupe_transcript(text: str) -> str:
	"""Collapse repeated 1-3 word phrases and extra whitespace.

	Speech recognition sometimes emits the same phrase twice when interim and
	final results overlap.
	"""
	s = re.sub(r"\s+", " ", text or "").strip()
	if not s:
		return s
	patterns = [
		(r"\b(\w+\s+\w+\s+\w+)(?:\s+\1\b)+", r"\1"),
		(r"\b(\w+\s+\w+)(?:\s+\1\b)+", r"\1"),
		(r"\b(\w+)(?:\s+\1\b)+", r"\1"),
	]
	for pat, rep in patterns:
		s = re.sub(pat, rep, s, flags=re.IGNORECASE)
	return re.sub(r"\s+", " ", s).strip()


def count_words(text: str) -> int:
	return len(re.findall(r"[A-Za-z']+", text or ""))


def count_fillers(text: str) -> int:
	return len(FILLER_PATTERN.findall(text or ""))


def pace_feedback(words_per_minute: float) -> str:
	if words_per_minute <= 0:
		return "Pace unavailable"
	if words_per_minute < 100:
		return "A little slow, try to keep a steady flow"
	if words_per_minute > 160:
		return "A little fast, slow down so every word lands"
	return "Good pace"


def compute_metrics(text: str, duration_seconds: Optional[float] = None) -> TranscriptMetrics:
	words = count_words(text)
	wpm = 0.0
	if duration_seconds and duration_seconds > 0:
		wpm = round(words / (duration_seconds / 60), 1)
	return TranscriptMetrics(
		word_count=words,
		words_per_minute=wpm,
		filler_words=count_fillers(text),
		pace_feedback=pace_feedback(wpm),
	)
