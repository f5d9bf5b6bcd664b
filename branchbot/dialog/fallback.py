"""Keyword intent matcher used when no remote agent is configured."""
from dataclasses import dataclass

from dialog.base import DetectIntentRequest, DetectIntentResponse, IntentInfo, IntentResolver

KEYWORD_CONFIDENCE = 0.95
DEFAULT_CONFIDENCE = 0.5


@dataclass(frozen=True)
class IntentMatch:
    intent_name: str
    confidence: float
    fulfillment_text: str


@dataclass(frozen=True)
class IntentEntry:
    keyword: str
    intent_name: str
    fulfillment_text: str


# Scanned top to bottom, first hit wins. Reordering changes which intent
# multi-topic questions resolve to.
INTENT_TABLE = (
    IntentEntry(
        "balance",
        "account.balance",
        "I can help you check your account balance. For security purposes, please verify "
        "your identity first. Your current checking account balance is $5,432.10 and your "
        "savings account balance is $12,890.55. Is there anything else you'd like to know?",
    ),
    IntentEntry(
        "transaction",
        "account.transactions",
        "Here are your recent transactions:\n"
        "1. Amazon.com - $45.99 (Jan 29)\n"
        "2. Starbucks - $6.50 (Jan 29)\n"
        "3. Direct Deposit - +$2,500.00 (Jan 28)\n"
        "4. Electric Company - $125.00 (Jan 27)\n\n"
        "Would you like more details on any transaction?",
    ),
    IntentEntry(
        "hours",
        "branch.hours",
        "Our branch hours are:\n"
        "- Monday to Friday: 9:00 AM - 5:00 PM\n"
        "- Saturday: 9:00 AM - 1:00 PM\n"
        "- Sunday: Closed\n\n"
        "We also have 24/7 ATM access. Is there anything else I can help you with?",
    ),
    IntentEntry(
        "lost",
        "card.lost",
        "I'm sorry to hear about your lost card. For your security, I've temporarily "
        "blocked your card. To get a replacement:\n"
        "1. You can order a new card here and it will arrive in 5-7 business days\n"
        "2. Or visit any branch with a valid ID for same-day replacement\n\n"
        "Would you like me to order a replacement card now?",
    ),
    IntentEntry(
        "loan",
        "loan.information",
        "We offer several loan options:\n"
        "- Personal Loans: 6.99% APR, up to $50,000\n"
        "- Auto Loans: 4.49% APR, new & used vehicles\n"
        "- Home Equity: 5.25% APR, flexible terms\n"
        "- Mortgage: Starting at 6.125% APR\n\n"
        "Which type of loan would you like to learn more about?",
    ),
    IntentEntry(
        "agent",
        "escalate.human",
        "I understand you'd like to speak with a human agent. I'm connecting you now. "
        "Your estimated wait time is approximately 3 minutes. While you wait, is there "
        "anything I can help you with?",
    ),
    IntentEntry(
        "hello",
        "greeting",
        "Hello! Welcome to Retail Bank. I'm your virtual branch assistant. I can help you with:\n"
        "- Account balances and transactions\n"
        "- Branch information and hours\n"
        "- Card services\n"
        "- Loan inquiries\n\n"
        "How can I assist you today?",
    ),
    IntentEntry(
        "thank",
        "thanks",
        "You're welcome! Is there anything else I can help you with today?",
    ),
    IntentEntry(
        "bye",
        "goodbye",
        "Thank you for banking with us! Have a great day. If you need assistance in the "
        "future, I'm always here to help.",
    ),
)

DEFAULT_MATCH = IntentMatch(
    intent_name="fallback",
    confidence=DEFAULT_CONFIDENCE,
    fulfillment_text=(
        "I'm here to help with your banking needs. You can ask me about:\n"
        "- Account balances and transactions\n"
        "- Branch hours and locations\n"
        "- Lost or stolen cards\n"
        "- Loan information\n"
        "- Or request to speak with a human agent\n\n"
        "What would you like to know?"
    ),
)


def match_intent(text: str) -> IntentMatch:
    """Classify text by the first keyword it contains. Never raises."""
    lower = (text or "").lower()
    for entry in INTENT_TABLE:
        if entry.keyword in lower:
            return IntentMatch(
                intent_name=entry.intent_name,
                confidence=KEYWORD_CONFIDENCE,
                fulfillment_text=entry.fulfillment_text,
            )
    return DEFAULT_MATCH


def build_response(text: str) -> DetectIntentResponse:
    """Wrap a keyword match in the same shape a remote agent returns."""
    match = match_intent(text)
    return DetectIntentResponse(
        query_text=text,
        fulfillment_text=match.fulfillment_text,
        intent=IntentInfo(display_name=match.intent_name, confidence=match.confidence),
    )


class FallbackResolver(IntentResolver):
    """Local resolver backed by the keyword table."""

    async def detect_intent(self, request: DetectIntentRequest) -> DetectIntentResponse:
        return build_response(request.text or "")
