"""
Safety policy for the structure and narrative subsystems.

The structure subsystem works only with mechanical media measurements
(timings, counts, levels). Interpretive vocabulary such as emotion, quality
judgments or trait inference must never appear in its code or in any record
that crosses into scoring.

Enforcement has two layers:
- Module boundaries: structure-side modules import nothing from the
  narrative or conversion side (see STRUCTURE_FORBIDDEN_IMPORTS).
- An allow-listed schema validator at the single crossing point, the LLM
  output record (adgate.services.narrative.validate_llm_output).

The term scan below is the CI safety net over both.
"""

import ast
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Union


logger = logging.getLogger(__name__)


# =============================================================================
# Vocabulary
# =============================================================================

FORBIDDEN_TERMS = (
    # Emotion / sentiment
    'emotion',
    'sentiment',
    'mood',
    'feeling',
    'tone',
    # Face / person
    'face_detection',
    'facial_expression',
    'person_recognition',
    'face_recognition',
    # Object semantics
    'object_meaning',
    'product_inference',
    'scene_understanding',
    'object_detection',
    # Text meaning
    'ocr_content_analysis',
    'text_sentiment',
    'message_strength',
    'text_meaning',
    # Quality judgments
    'hook_strength',
    'engagement_score',
    'persuasiveness',
    'effectiveness_score',
    'quality_score',
    'appeal_score',
    # Trait inference
    'trait_inference',
    'personality_detection',
    'demographic_inference',
    'audience_inference',
    # Aesthetic scoring
    'beauty_score',
    'visual_appeal',
    'design_quality',
    'aesthetic_rating',
)

ALLOWED_MECHANICAL_TERMS = (
    'motionStartMs',
    'textAppearanceMs',
    'cutCount',
    'audioLevelLufs',
    'aspectRatio',
    'duration',
    'hasAudio',
    'frameRate',
    'firstFrameHash',
    'colorHistogram',
    'brightness',
    'contrast',
)

# Modules that make up the structure side, relative to the adgate package.
STRUCTURE_MODULES = (
    'services/scoring_gates.py',
    'services/extraction.py',
    'services/placement.py',
)

# Import prefixes a structure-side module may never use.
STRUCTURE_FORBIDDEN_IMPORTS = (
    'adgate.services.narrative',
    'adgate.services.recommendations',
    'adgate.services.meta_learning',
    'adgate.services.baseline',
)

CONTEXT_CHARS = 30


@dataclass(frozen=True)
class SafetyViolation:
    term: str
    context: str
    line: int


# =============================================================================
# Term Scanning
# =============================================================================

def check_forbidden_terms(text: str, case_sensitive: bool = False) -> List[SafetyViolation]:
    """
    Find every occurrence of a forbidden term in `text`.

    Matching is substring based, so compound identifiers such as
    `hook_strength_v2` are caught too.

    Returns:
        One SafetyViolation per occurrence with about 30 characters of
        surrounding context and the 1-based line number.
    """
    haystack = text if case_sensitive else text.lower()
    violations: List[SafetyViolation] = []

    for term in FORBIDDEN_TERMS:
        needle = term if case_sensitive else term.lower()
        index = haystack.find(needle)
        while index != -1:
            start = max(0, index - CONTEXT_CHARS)
            end = min(len(text), index + len(term) + CONTEXT_CHARS)
            violations.append(SafetyViolation(
                term=term,
                context=f"...{text[start:end]}...",
                line=text.count('\n', 0, index) + 1,
            ))
            index = haystack.find(needle, index + 1)

    return violations


def has_forbidden_terms(text: str) -> bool:
    lowered = text.lower()
    return any(term in lowered for term in FORBIDDEN_TERMS)


def is_allowed_feature(feature_name: str) -> bool:
    """A feature name is allowed unless it contains a forbidden term."""
    return not has_forbidden_terms(feature_name)


def scan_files(paths: Iterable[Union[str, Path]]) -> List[SafetyViolation]:
    """Run check_forbidden_terms over each file, prefixing context with the file name."""
    violations: List[SafetyViolation] = []
    for path in paths:
        path = Path(path)
        for violation in check_forbidden_terms(path.read_text(encoding='utf-8')):
            violations.append(SafetyViolation(
                term=violation.term,
                context=f"{path.name}: {violation.context}",
                line=violation.line,
            ))
    if violations:
        logger.warning("Forbidden terms found: %d occurrence(s)", len(violations))
    return violations


# =============================================================================
# Import Boundaries
# =============================================================================

def find_forbidden_imports(
    source: str,
    forbidden_prefixes: Optional[Iterable[str]] = None,
) -> List[str]:
    """
    Return the imported module names in `source` that start with a
    forbidden prefix.
    """
    prefixes = tuple(forbidden_prefixes or STRUCTURE_FORBIDDEN_IMPORTS)
    found: List[str] = []

    for node in ast.walk(ast.parse(source)):
        if isinstance(node, ast.Import):
            names = [alias.name for alias in node.names]
        elif isinstance(node, ast.ImportFrom) and node.module:
            names = [node.module]
        else:
            continue
        found.extend(name for name in names if name.startswith(prefixes))

    return found


def structure_module_paths() -> List[Path]:
    package_root = Path(__file__).resolve().parent.parent
    return [package_root / relative for relative in STRUCTURE_MODULES]
