"""Prompt context assembly for the clinical analysis workflow.

Search results are turned into text blocks that the analysis prompt
templates embed before the request is dispatched to an LLM vendor.
Keeping these builders in one place makes them easy to audit.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from langchain_core.messages import BaseMessage

    from clinical_rag.retrieval.models import SearchResult


class AnalysisType(str, Enum):
    LABORATORY = "laboratory"
    TCM = "tcm"
    CHRONOLOGY = "chronology"
    IFM = "ifm"
    TREATMENT_PLAN = "treatment_plan"


ANALYSIS_LABELS: dict[AnalysisType, str] = {
    AnalysisType.LABORATORY: "functional laboratory analysis",
    AnalysisType.TCM: "traditional Chinese medicine",
    AnalysisType.CHRONOLOGY: "health chronology",
    AnalysisType.IFM: "IFM matrix",
    AnalysisType.TREATMENT_PLAN: "treatment plan",
}

# Vocabulary appended to a query so it lands near the right literature.
QUERY_EXPANSIONS: dict[AnalysisType, str] = {
    AnalysisType.LABORATORY: "laboratory tests functional medicine reference ranges biomarkers",
    AnalysisType.TCM: "traditional chinese medicine diagnosis patterns tongue pulse acupuncture herbal",
    AnalysisType.CHRONOLOGY: "chronology timeline women's health menstrual cycle hormones",
    AnalysisType.IFM: "functional medicine IFM matrix body systems root causes interventions",
    AnalysisType.TREATMENT_PLAN: "treatment plan therapeutic prescription follow-up protocols",
}

BASE_QUERIES: dict[AnalysisType, list[str]] = {
    AnalysisType.LABORATORY: [
        "functional medicine lab interpretation",
        "functional reference ranges laboratory",
    ],
    AnalysisType.TCM: [
        "TCM patterns female gynecology",
        "menstrual irregularity chinese medicine",
        "liver qi stagnation PMS",
    ],
    AnalysisType.CHRONOLOGY: [
        "female hormonal chronology milestones",
        "life events impact on women's health",
    ],
    AnalysisType.IFM: [
        "IFM matrix functional medicine",
        "root causes of chronic disease",
    ],
    AnalysisType.TREATMENT_PLAN: [
        "functional medicine treatment plan",
        "integrative therapeutic protocol",
    ],
}

CONTEXT_HEADER = "RELEVANT SCIENTIFIC CONTEXT:"
CONTEXT_INSTRUCTION = (
    "Use this information to ground the analysis, adapting the "
    "recommendations to the patient's specific case."
)
SOURCE_DELIMITER = "\n---\n"
NO_CONTEXT_SUMMARY = (
    "No specific protocol was found in the knowledge base. Proceed with "
    "general functional medicine guidelines."
)


class PatientProfile(BaseModel):
    """The slice of patient data that steers retrieval."""

    name: str | None = None
    age: int | None = None
    menopausal_status: str | None = None
    main_symptoms: list[str] = Field(default_factory=list)


# ── 1. Context block ──────────────────────────────────────────────────


def build_context_block(results: Sequence[SearchResult]) -> str:
    """Concatenate ranked results into one labelled block.

    Returns ``""`` when there are no results so templates can drop the
    section entirely.
    """
    if not results:
        return ""
    sources = SOURCE_DELIMITER.join(
        f"[Source {i}: {r.source_label()}]\n{r.content}" for i, r in enumerate(results, 1)
    )
    return f"{CONTEXT_HEADER}\n{sources}\n\n{CONTEXT_INSTRUCTION}"


# ── 2. Query construction ─────────────────────────────────────────────


def expand_query(query: str, analysis_type: AnalysisType | str) -> str:
    """Append the analysis-specific vocabulary to *query*."""
    try:
        expansion = QUERY_EXPANSIONS[AnalysisType(analysis_type)]
    except ValueError:
        return query
    return f"{query} {expansion}"


def build_search_queries(
    analysis_type: AnalysisType,
    patient: PatientProfile | None = None,
    *,
    max_queries: int = 8,
) -> list[str]:
    """Derive retrieval queries from the patient profile and analysis type.

    Duplicates are dropped, order is kept, and at most *max_queries* are
    returned.
    """
    queries: list[str] = []
    if patient is not None:
        status = (patient.menopausal_status or "pre").lower()
        if (patient.age or 0) >= 40 and status == "pre":
            queries.append("perimenopause symptoms treatment")
        if status == "post":
            queries.append("menopause functional medicine")
        for symptom in patient.main_symptoms:
            queries.append(f"{symptom} integrative medicine treatment")
            if analysis_type is AnalysisType.TCM:
                queries.append(f"{symptom} TCM energetic pattern")
    queries.extend(BASE_QUERIES[analysis_type])
    return list(dict.fromkeys(q.strip() for q in queries if q.strip()))[:max_queries]


# ── 3. Context summary ────────────────────────────────────────────────


def _confidence_tag(result: SearchResult) -> str:
    return result.confidence.upper()


def build_context_summary(
    results: Sequence[SearchResult],
    analysis_type: AnalysisType,
    patient: PatientProfile | None = None,
    *,
    max_evidence: int = 5,
    excerpt_chars: int = 300,
) -> str:
    """Render the evidence section handed to an analysis prompt.

    Sources that contribute two or more results are called out as
    comprehensive sources with their average relevance.
    """
    if not results:
        return NO_CONTEXT_SUMMARY

    lines = [f"=== SCIENTIFIC CONTEXT FOR {ANALYSIS_LABELS[analysis_type].upper()} ==="]
    if patient is not None:
        lines.append(
            f"PATIENT PROFILE: {patient.name or 'N/A'}, {patient.age or 'N/A'} years, "
            f"status: {patient.menopausal_status or 'N/A'}"
        )

    by_source: dict[str, list[float]] = defaultdict(list)
    for r in results:
        by_source[r.source_label()].append(r.score)
    comprehensive = {name: scores for name, scores in by_source.items() if len(scores) >= 2}
    if comprehensive:
        lines.append("")
        lines.append("COMPREHENSIVE SOURCES:")
        for name, scores in comprehensive.items():
            avg = sum(scores) / len(scores)
            lines.append(f"- {name} ({len(scores)} relevant sections, average relevance {avg * 100:.1f}%)")

    lines.append("")
    lines.append("AVAILABLE EVIDENCE:")
    for i, r in enumerate(results[:max_evidence], 1):
        marker = " [COMPREHENSIVE SOURCE]" if r.source_label() in comprehensive else ""
        excerpt = r.content[:excerpt_chars]
        if len(r.content) > excerpt_chars:
            excerpt += "..."
        lines.append(f"{i}. [{_confidence_tag(r)}] {r.source_label()}{marker}:")
        lines.append(f"   {excerpt}")

    lines.append("")
    lines.append("=== INSTRUCTIONS ===")
    lines.append(
        "Ground your recommendations in this evidence, cite sources where "
        "applicable and adapt protocols to the patient's profile."
    )
    return "\n".join(lines)


# ── 4. Analysis prompt ────────────────────────────────────────────────


def build_analysis_prompt(
    system_prompt: str,
    user_prompt: str,
    context: str = "",
) -> list[BaseMessage]:
    """Build the message list sent to the chat model.

    *context* is appended to the user prompt when non-empty.
    """
    content = f"{user_prompt}\n\n{context}" if context else user_prompt
    return [
        SystemMessage(content=system_prompt),
        HumanMessage(content=content),
    ]
