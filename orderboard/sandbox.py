# orderboard/sandbox.py
from datetime import date, timedelta
from typing import Any, Dict, Optional


def mock_orders(today: Optional[date] = None) -> Dict[str, Dict[str, Any]]:
    """Demo orders for sandbox mode, keyed by document id."""
    today = today or date.today()
    return {
        "mock-1": {
            "orderNumber": "2024/001",
            "clientName": "Testovní Klient A",
            "currentStage": "studio",
            "notes": "Toto je testovací zakázka v režimu sandbox.",
            "isCompleted": False,
            "isUrgent": True,
            "deliveryDate": today.isoformat(),
            "printType": ["DIGITAL"],
        },
        "mock-2": {
            "orderNumber": "2024/002",
            "clientName": "Ukázková Firma s.r.o.",
            "currentStage": "print",
            "notes": "Druhá testovací zakázka.",
            "isCompleted": False,
            "isUrgent": False,
            "deliveryDate": (today + timedelta(days=2)).isoformat(),
            "printType": ["OFFSET"],
        },
    }
