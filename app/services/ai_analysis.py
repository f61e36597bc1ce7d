"""
AI-powered explanations for reconciliation items using the Claude API.
Falls back to rule-based text when no API key is configured.
"""
import json
import logging
import re
from typing import Optional
from anthropic import AsyncAnthropic, AnthropicError

from app.config import settings
from app.services.records import AppTransaction, BankRecord, MatchAnalysis, MatchMethod

logger = logging.getLogger(__name__)


def _record_dict(record) -> Optional[dict]:
    if record is None:
        return None
    return {
        "id": record.id,
        "amount": str(record.amount),
        "description": record.description,
        "transaction_date": record.transaction_date.isoformat(),
    }


class AIAnalysisService:
    """Service for AI-powered reconciliation explanations."""

    def __init__(self, client: Optional[AsyncAnthropic] = None):
        self.client = client
        if self.client is None and settings.ANTHROPIC_API_KEY and settings.AI_ANALYSIS_ENABLED:
            self.client = AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)
        self.model = settings.CLAUDE_MODEL

    @property
    def is_available(self) -> bool:
        """Check if AI analysis is available."""
        return self.client is not None

    async def explain_item(
        self,
        bank: Optional[BankRecord],
        app: Optional[AppTransaction],
        analysis: Optional[MatchAnalysis],
        method: Optional[MatchMethod] = None,
    ) -> dict:
        """Explain why a pair matched, or why a record was left unmatched."""
        if not self.is_available:
            return self._fallback_explanation(bank, app, analysis, method)

        prompt = self._build_explanation_prompt(bank, app, analysis, method)
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=settings.AI_MAX_TOKENS,
                temperature=settings.AI_TEMPERATURE,
                messages=[{"role": "user", "content": prompt}]
            )
        except AnthropicError as e:
            logger.warning(f"Claude request failed, using rule-based explanation: {e}")
            return self._fallback_explanation(bank, app, analysis, method)

        return self._parse_explanation(response.content[0].text, bank, app, analysis, method)

    # === PROMPT BUILDERS ===

    def _build_explanation_prompt(
        self,
        bank: Optional[BankRecord],
        app: Optional[AppTransaction],
        analysis: Optional[MatchAnalysis],
        method: Optional[MatchMethod],
    ) -> str:
        signals = "Not available - only one side of the pair is known."
        if analysis is not None:
            signals = f"""- Amount Difference: {analysis.amount_difference}
- Date Difference: {analysis.date_difference_days} days
- Description Similarity: {analysis.description_similarity_score}
- Confidence: {analysis.confidence if analysis.confidence is not None else "not comparable"}
- Match Method: {method.value if method else "none"}"""

        return f"""You are a personal finance reconciliation assistant. Explain this reconciliation item to the account owner.

BANK STATEMENT TRANSACTION:
{json.dumps(_record_dict(bank), indent=2, default=str)}

LEDGER TRANSACTION:
{json.dumps(_record_dict(app), indent=2, default=str)}

MATCH SIGNALS:
{signals}

Provide a JSON response with this exact structure:
{{
  "explanation": "2-3 sentence explanation",
  "recommendation": "approve|review|create_transaction|ignore"
}}

Be specific about amounts and dates. If only one side is present, suggest why it may be missing from the other."""

    # === FALLBACKS ===

    def _fallback_explanation(
        self,
        bank: Optional[BankRecord],
        app: Optional[AppTransaction],
        analysis: Optional[MatchAnalysis],
        method: Optional[MatchMethod],
    ) -> dict:
        """Rule-based explanation when AI unavailable."""
        if bank and app and analysis:
            if analysis.confidence is None:
                explanation = (
                    f"The amounts differ by {analysis.amount_difference} and the dates by "
                    f"{analysis.date_difference_days} days, which is outside the matching tolerances."
                )
                recommendation = "review"
            else:
                explanation = (
                    f"Match confidence: {analysis.confidence}. Amount difference "
                    f"{analysis.amount_difference}, {analysis.date_difference_days} days apart, "
                    f"description similarity {analysis.description_similarity_score}."
                )
                recommendation = "approve" if method == MatchMethod.EXACT else "review"
        elif bank:
            explanation = (
                f"Bank transaction {bank.id} ({bank.amount} on {bank.transaction_date}) has no "
                "ledger transaction within the matching tolerances."
            )
            recommendation = "create_transaction"
        elif app:
            explanation = (
                f"Ledger transaction {app.id} ({app.amount} on {app.transaction_date}) does not "
                "appear on the bank statement."
            )
            recommendation = "review"
        else:
            explanation = "Nothing to explain - the item has no transactions attached."
            recommendation = "ignore"

        return {"explanation": explanation, "recommendation": recommendation, "ai_generated": False}

    # === PARSERS ===

    def _parse_explanation(self, ai_response: str, bank, app, analysis, method) -> dict:
        """Parse AI response for an item explanation."""
        parsed = self._extract_json(ai_response)
        if not parsed:
            fallback = self._fallback_explanation(bank, app, analysis, method)
            return {**fallback, "explanation": ai_response.strip() or fallback["explanation"]}

        return {
            "explanation": parsed.get("explanation", ai_response),
            "recommendation": parsed.get("recommendation", "review"),
            "ai_generated": True,
        }

    def _extract_json(self, text: str) -> dict:
        """Extract JSON from AI response text."""
        try:
            parsed = json.loads(text)
            return parsed if isinstance(parsed, dict) else {}
        except json.JSONDecodeError:
            pass

        # Try to find JSON in code blocks
        json_match = re.search(r'```(?:json)?\s*([\s\S]*?)\s*```', text)
        if json_match:
            try:
                return json.loads(json_match.group(1))
            except json.JSONDecodeError:
                pass

        # Try to find raw JSON object
        json_match = re.search(r'\{[\s\S]*\}', text)
        if json_match:
            try:
                return json.loads(json_match.group(0))
            except json.JSONDecodeError:
                pass

        return {}
