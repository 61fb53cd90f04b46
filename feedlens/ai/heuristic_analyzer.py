"""
Heuristic Content Analyzer
==========================

Provider-free ``ContentAnalyzer`` built on keyword statistics. It lets the
whole pipeline run offline (development, tests, air-gapped installs) and acts
as the fallback when no hosted model is configured.
"""

import hashlib
import math
import re
from collections import Counter
from typing import Any, Dict, List

from .analyzer import ContentAnalyzer, DeepAnalysis, PreliminaryEvaluation, ScoreDimensions, Segment
from ..utils.logging import get_logger_for_component

STOP_WORDS = {
    'a', 'an', 'and', 'are', 'as', 'at', 'be', 'by', 'for', 'from',
    'has', 'he', 'in', 'is', 'it', 'its', 'of', 'on', 'that', 'the',
    'to', 'was', 'were', 'will', 'with', 'this', 'but', 'they', 'not',
    'have', 'had', 'what', 'said', 'each', 'which', 'she', 'do', 'how',
    'their', 'if', 'up', 'out', 'many', 'then', 'them', 'these', 'so',
    'can', 'our', 'you', 'your', 'all', 'more', 'also', 'than', 'into',
}

DOMAIN_KEYWORDS = {
    'technology': {'software', 'code', 'api', 'model', 'data', 'programming', 'cloud',
                   'python', 'rust', 'javascript', 'database', 'ai', 'llm', 'open', 'source'},
    'science': {'research', 'study', 'scientists', 'experiment', 'physics', 'biology',
                'climate', 'space', 'species', 'theory'},
    'business': {'market', 'company', 'revenue', 'startup', 'investors', 'funding',
                 'sales', 'growth', 'stock', 'economy'},
    'politics': {'government', 'election', 'policy', 'minister', 'law', 'congress',
                 'parliament', 'vote', 'president'},
}

_SENTENCE_SPLIT = re.compile(r'(?<=[.!?。！？])\s+')
_TAG_RE = re.compile(r'<[^>]+>')


def _clean(text: str) -> str:
    text = _TAG_RE.sub(' ', text or '')
    return re.sub(r'\s+', ' ', text).strip()


def _words(text: str) -> List[str]:
    tokens = re.findall(r'\w+', text.lower())
    return [t for t in tokens if len(t) > 2 and t not in STOP_WORDS and not t.isdigit()]


def _first_sentence(text: str, limit: int = 200) -> str:
    cleaned = _clean(text)
    if not cleaned:
        return ''
    sentence = _SENTENCE_SPLIT.split(cleaned, maxsplit=1)[0]
    return sentence[:limit]


class HeuristicAnalyzer(ContentAnalyzer):
    """Keyword and structure heuristics standing in for a hosted model."""

    name = "heuristic"

    def __init__(self):
        self.logger = get_logger_for_component("heuristic_analyzer")

    def _extract_text_features(self, text: str) -> Dict[str, Any]:
        words = _words(_clean(text))
        counts = Counter(words)
        return {
            'words': words,
            'word_counts': counts,
            'total_words': len(words),
            'diversity': len(counts) / len(words) if words else 0.0,
        }

    def _top_keywords(self, counts: Counter, n: int = 5) -> List[str]:
        return [word for word, _ in counts.most_common(n)]

    async def evaluate_preliminary(
        self, title: str, content: str, language: str, model: str
    ) -> PreliminaryEvaluation:
        features = self._extract_text_features(f"{title} {content}")
        total = features['total_words']

        value = 1
        if total >= 80:
            value += 1
        if total >= 250:
            value += 1
        if features['diversity'] >= 0.4:
            value += 1
        paragraphs = [p for p in re.split(r'\n\s*\n', content or '') if p.strip()]
        if len(paragraphs) >= 3 or '```' in (content or ''):
            value += 1

        keywords = self._top_keywords(features['word_counts'], 3)
        reason = ', '.join(keywords) if keywords else 'Uncategorized'

        return PreliminaryEvaluation(
            ignore=False,
            reason=reason,
            value=min(value, 5),
            summary=_first_sentence(content) or title,
            language=language,
        )

    def _domain(self, counts: Counter) -> str:
        best, best_hits = 'general', 0
        for domain, keywords in DOMAIN_KEYWORDS.items():
            hits = sum(counts[k] for k in keywords)
            if hits > best_hits:
                best, best_hits = domain, hits
        return best

    async def analyze(
        self, title: str, segments: List[Segment], language: str, model: str
    ) -> DeepAnalysis:
        full_text = '\n\n'.join(s.content for s in segments)
        features = self._extract_text_features(f"{title} {full_text}")
        counts = features['word_counts']
        keywords = set(self._top_keywords(counts, 10))

        scored = []
        for segment in segments:
            segment_words = _words(segment.content)
            if not segment_words:
                importance = 0.0
            else:
                importance = sum(1 for w in segment_words if w in keywords) / len(segment_words)
            scored.append((min(1.0, importance * 4), segment))

        main_points = []
        for importance, segment in sorted(scored, key=lambda s: s[0], reverse=True)[:5]:
            point = _first_sentence(segment.content)
            if point:
                main_points.append({
                    'point': point,
                    'explanation': f"{segment.type} segment {segment.id}",
                    'importance': max(1, min(5, round(importance * 5) or 1)),
                })

        key_quotes = [
            _clean(s.content.lstrip('> '))[:200] for s in segments if s.type == 'quote'
        ][:3]

        avg_importance = sum(i for i, _ in scored) / len(scored) if scored else 0.0
        code_segments = sum(1 for s in segments if s.type == 'code')
        depth = min(10.0, 5 + code_segments * 1.5 + min(2.0, features['total_words'] / 1000))
        quality = min(10.0, 5 + features['diversity'] * 5)
        dimensions = ScoreDimensions(
            depth=round(depth, 1),
            quality=round(quality, 1),
            practicality=round(depth * 0.7 + quality * 0.3, 1),
            novelty=round(quality * 0.5 + avg_importance * 10 * 0.5, 1),
        )

        summary_sentences = [p['point'] for p in main_points[:3]]
        return DeepAnalysis(
            one_line_summary=_first_sentence(full_text, 120) or title,
            summary=' '.join(summary_sentences) or title,
            main_points=main_points,
            key_quotes=key_quotes,
            domain=self._domain(counts),
            subcategory=next(iter(self._top_keywords(counts, 1)), ''),
            tags=self._top_keywords(counts, 5),
            score_dimensions=dimensions,
            model=model,
        )

    async def refine(self, analysis: DeepAnalysis, content: str, model: str) -> DeepAnalysis:
        seen = set()
        points = []
        for point in analysis.main_points:
            key = point['point'].lower()
            if key not in seen:
                seen.add(key)
                points.append(point)

        analysis.main_points = points
        analysis.tags = list(dict.fromkeys(t.lower() for t in analysis.tags if t))
        analysis.summary = analysis.summary.strip()
        analysis.reflection_rounds += 1
        return analysis

    async def embed(self, text: str, dimension: int) -> List[float]:
        """Hashed bag-of-words vector, L2-normalised."""
        vector = [0.0] * dimension
        for word, count in Counter(_words(_clean(text))).items():
            digest = hashlib.blake2b(word.encode('utf-8'), digest_size=8).digest()
            bucket = int.from_bytes(digest[:4], 'little') % dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign * (1 + math.log(count))

        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            return vector
        return [v / norm for v in vector]
