"""AI Agents package."""

from finledger.agents.ai_agents import (
    TransactionExtractionAgent,
    parse_json_response,
)

__all__ = [
    "TransactionExtractionAgent",
    "parse_json_response",
]
