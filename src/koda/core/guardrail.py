"""LLM-based topical relevance gate.

The evaluator model receives a single rendered prompt and must finish its
reply with a marker line::

    DECISION: ACCEPT
    DECISION: REJECT

The gate is a secondary safety net behind content moderation, so it
fails open: a reply without a marker or an evaluator error counts as
ACCEPT and is logged as an anomaly.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage

from koda.core.service.metrics import GUARDRAIL_VERDICTS_TOTAL
from koda.core.service.models import GuardrailVerdict
from koda.infra.telemetry import (
    ATTR_GUARDRAIL_ACCEPTED,
    ATTR_GUARDRAIL_ANOMALY,
    SPAN_GUARDRAIL,
    tracer,
)
from koda.infra.tokens import ROLE_ASSISTANT, ROLE_USER, role_of

logger = logging.getLogger(__name__)

DECISION_ACCEPT = "ACCEPT"
DECISION_REJECT = "REJECT"

_DECISION_LINE = re.compile(r"^DECISION:\s*(ACCEPT|REJECT)$")

NO_HISTORY = "No previous conversation."

GUARDRAIL_TEMPLATE = """You are a guardrail system that evaluates if user questions are acceptable based on specific criteria.

ACCEPTABLE QUESTION CRITERIA:
{acceptance_criteria}
{history_section}
CURRENT USER QUESTION:
{question}

EVALUATION INSTRUCTIONS:
1. Consider if the question matches the acceptance criteria{history_clause}.
2. Be objective and fair in your evaluation.
3. Evaluate strictly based on relevance to the criteria, not on how the question is phrased.
4. If the current question is a follow-up to previous acceptable questions, consider the context of the entire conversation.
5. Do not answer the question, only evaluate it.

First, provide a brief, objective analysis of the question against the criteria.
Then, on the last line, write exactly one of:
DECISION: ACCEPT
DECISION: REJECT"""  # noqa: E501

_HISTORY_SECTION = """
CONVERSATION HISTORY:
{history}
"""


def format_history(messages: Sequence[BaseMessage]) -> str:
    """Render user/assistant turns as ``ROLE: text`` lines."""
    lines = [
        f"{role_of(m).upper()}: {m.content}"
        for m in messages
        if role_of(m) in (ROLE_USER, ROLE_ASSISTANT)
    ]
    return "\n".join(lines) if lines else NO_HISTORY


def render_guardrail_prompt(
    question: str,
    history: Sequence[BaseMessage] | None,
    acceptance_criteria: str,
) -> str:
    """Render the evaluator prompt; ``history=None`` omits the section."""
    if history is None:
        history_section, history_clause = "", ""
    else:
        history_section = _HISTORY_SECTION.format(history=format_history(history))
        history_clause = ", taking into account the conversation history"
    return GUARDRAIL_TEMPLATE.format(
        acceptance_criteria=acceptance_criteria.strip(),
        history_section=history_section,
        history_clause=history_clause,
        question=question,
    )


def parse_decision(text: str) -> bool | None:
    """Return the decision of the last marker line, or ``None`` if absent."""
    for line in reversed(text.strip().splitlines()):
        match = _DECISION_LINE.match(line.strip())
        if match:
            return match.group(1) == DECISION_ACCEPT
    return None


class GuardrailGate:
    """Accept/reject gate for user questions."""

    def __init__(
        self,
        llm: BaseChatModel,
        acceptance_criteria: str,
        include_history: bool = True,
        enabled: bool = True,
    ) -> None:
        self._llm = llm
        self._acceptance_criteria = acceptance_criteria
        self._include_history = include_history
        self._enabled = enabled

    async def evaluate(
        self,
        question: str,
        history: Sequence[BaseMessage] = (),
        acceptance_criteria: str | None = None,
    ) -> GuardrailVerdict:
        """Classify *question* against the acceptance criteria.

        *history* holds the prior turns only, not the question itself.
        """
        if not self._enabled:
            return GuardrailVerdict(accepted=True)
        if not question or not question.strip():
            logger.debug("No user question found, allowing request to proceed")
            return GuardrailVerdict(accepted=True)

        with tracer.start_as_current_span(SPAN_GUARDRAIL) as span:
            verdict = await self._evaluate(
                question, history, acceptance_criteria or self._acceptance_criteria
            )
            span.set_attribute(ATTR_GUARDRAIL_ACCEPTED, verdict.accepted)
            span.set_attribute(ATTR_GUARDRAIL_ANOMALY, verdict.anomaly)

        if verdict.anomaly:
            GUARDRAIL_VERDICTS_TOTAL.labels(decision="fail_open").inc()
        else:
            GUARDRAIL_VERDICTS_TOTAL.labels(
                decision="accept" if verdict.accepted else "reject"
            ).inc()
        return verdict

    async def _evaluate(
        self,
        question: str,
        history: Sequence[BaseMessage],
        acceptance_criteria: str,
    ) -> GuardrailVerdict:
        prompt = render_guardrail_prompt(
            question,
            history if self._include_history else None,
            acceptance_criteria,
        )
        try:
            response = await self._llm.ainvoke(prompt)
        except Exception:
            logger.error("Error during guardrail check, allowing request", exc_info=True)
            return GuardrailVerdict(accepted=True, anomaly=True)

        rationale = str(response.content)
        decision = parse_decision(rationale)
        if decision is None:
            logger.warning(
                "Guardrail reply has no decision marker, allowing request: %r",
                rationale[-200:],
            )
            return GuardrailVerdict(accepted=True, rationale=rationale, anomaly=True)

        logger.debug(
            "Question %r %s guardrail check",
            question,
            "passed" if decision else "failed",
        )
        return GuardrailVerdict(accepted=decision, rationale=rationale)
