"""Domain/subdomain score aggregation.

Pure and deterministic: the same answers in the same order always produce the
same report, which is what lets completion be re-run safely.
"""
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

UNKNOWN_DOMAIN = "Unknown Domain"
UNKNOWN_SUBDOMAIN = "Unknown Subdomain"


@dataclass
class ScoredAnswer:
    question_id: int
    score_obtained: int
    max_score: int


@dataclass
class ScoreReport:
    overall_percentage: int
    domain_scores: List[Dict[str, Any]] = field(default_factory=list)
    subdomain_scores: List[Dict[str, Any]] = field(default_factory=list)
    obtained_total: int = 0
    max_total: int = 0


def percentage(obtained: float, maximum: float) -> int:
    """round(100 * obtained / maximum) with halves rounded up; 0 when maximum is 0."""
    if not maximum:
        return 0
    value = math.floor(100 * obtained / maximum + 0.5)
    return max(0, min(100, value))


def aggregate(
    answers: Iterable[ScoredAnswer],
    questions_by_id: Mapping[int, Any],
    domain_names: Optional[Mapping[int, str]] = None,
    subdomains: Optional[Mapping[int, Tuple[str, int]]] = None,
) -> ScoreReport:
    """Reduce scored answers into overall, per-domain and per-subdomain buckets.

    ``questions_by_id`` maps question id to anything exposing ``domain_id`` and
    ``subdomain_id``. ``subdomains`` maps subdomain id to ``(name, domain_id)``.
    Answers whose question is unknown are ignored. Buckets appear in order of
    first contribution.
    """
    domain_names = domain_names or {}
    subdomains = subdomains or {}
    domain_buckets: Dict[int, Dict[str, Any]] = {}
    subdomain_buckets: Dict[int, Dict[str, Any]] = {}
    total_obtained = 0
    total_max = 0

    for answer in answers:
        question = questions_by_id.get(answer.question_id)
        if question is None:
            continue
        obtained = answer.score_obtained or 0
        maximum = answer.max_score or 0
        total_obtained += obtained
        total_max += maximum

        if question.domain_id:
            bucket = domain_buckets.get(question.domain_id)
            if bucket is None:
                bucket = {
                    "domain_id": question.domain_id,
                    "domain_name": domain_names.get(question.domain_id, UNKNOWN_DOMAIN),
                    "obtained_score": 0,
                    "max_score": 0,
                    "percentage": 0,
                }
                domain_buckets[question.domain_id] = bucket
            bucket["obtained_score"] += obtained
            bucket["max_score"] += maximum

        if question.subdomain_id:
            bucket = subdomain_buckets.get(question.subdomain_id)
            if bucket is None:
                name, parent_id = subdomains.get(question.subdomain_id, (UNKNOWN_SUBDOMAIN, None))
                bucket = {
                    "subdomain_id": question.subdomain_id,
                    "subdomain_name": name,
                    "domain_id": parent_id,
                    "obtained_score": 0,
                    "max_score": 0,
                    "percentage": 0,
                }
                subdomain_buckets[question.subdomain_id] = bucket
            bucket["obtained_score"] += obtained
            bucket["max_score"] += maximum

    for bucket in list(domain_buckets.values()) + list(subdomain_buckets.values()):
        bucket["percentage"] = percentage(bucket["obtained_score"], bucket["max_score"])

    return ScoreReport(
        overall_percentage=percentage(total_obtained, total_max),
        domain_scores=list(domain_buckets.values()),
        subdomain_scores=list(subdomain_buckets.values()),
        obtained_total=total_obtained,
        max_total=total_max,
    )
