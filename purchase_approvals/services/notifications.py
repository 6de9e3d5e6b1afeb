import json

import httpx

from ..core.config import settings
from ..models.purchase_request import ApproverRecord, PurchaseRequest

# Lightweight approver notification: post an Adaptive Card to a Teams Incoming Webhook.
# Each approver's link carries their token, so the channel must be restricted to them.

ADAPTIVE_CARD_TEMPLATE = {
    "type": "message",
    "attachments": [{
        "contentType": "application/vnd.microsoft.card.adaptive",
        "content": {
            "$schema": "http://adaptivecards.io/schemas/adaptive-card.json",
            "type": "AdaptiveCard",
            "version": "1.4",
            "body": [
                {"type": "TextBlock", "weight": "Bolder", "size": "Medium", "text": "Purchase Approval Requested"},
                {"type": "FactSet", "facts": []}
            ],
            "actions": []
        }
    }]
}


async def post_approver_links_card(
    request: PurchaseRequest,
    approvers: list[ApproverRecord],
    link_for,
) -> dict:
    """
    Post one card listing the purchase request and an approval link per approver.

    Args:
        request: The newly created purchase request
        approvers: Its approver records (in approval order)
        link_for: Callable (request_id, approver_token) -> approval URL
    """
    if not settings.teams_webhook_url:
        return {"status": "skipped", "reason": "TEAMS_WEBHOOK_URL not set"}

    card = json.loads(json.dumps(ADAPTIVE_CARD_TEMPLATE))
    content = card["attachments"][0]["content"]
    facts = content["body"][1]["facts"]
    facts.extend([
        {"title": "title", "value": request.title},
        {"title": "amount", "value": f"{request.amount:.2f}"},
        {"title": "requester", "value": request.requester_email},
    ])

    content["actions"] = [
        {
            "type": "Action.OpenUrl",
            "title": f"Approve as {approver.approver_email}",
            "url": link_for(request.request_id, approver.approver_token),
        }
        for approver in sorted(approvers, key=lambda a: a.approval_order)
    ]

    async with httpx.AsyncClient(timeout=10) as client:
        r = await client.post(settings.teams_webhook_url, json=card)
        return {"status": "sent", "http_status": r.status_code}
