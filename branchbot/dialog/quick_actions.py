from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class QuickAction:
    id: str
    label: str
    query: str


QUICK_ACTIONS = (
    QuickAction("1", "Account Balance", "What is my account balance?"),
    QuickAction("2", "Recent Transactions", "Show my recent transactions"),
    QuickAction("3", "Branch Hours", "What are the branch hours?"),
    QuickAction("4", "Report Lost Card", "I need to report a lost card"),
    QuickAction("5", "Loan Information", "Tell me about loan options"),
    QuickAction("6", "Speak to Agent", "I want to speak to a human agent"),
)


def get_quick_action(action_id: str) -> Optional[QuickAction]:
    for action in QUICK_ACTIONS:
        if action.id == action_id:
            return action
    return None
