#!/usr/bin/env python3
"""
Walk one purchase request through the full three-approver flow.

Requires a running API with DEBUG_ENDPOINTS_ENABLED=true, since the
approval links and one-time codes are read from the mock mail and
debug endpoints instead of a real inbox.
"""
import sys

import httpx

# Configuration
API_BASE_URL = "http://127.0.0.1:8000"
REQUESTER = "requester@example.com"
APPROVERS = ["finance@example.com", "manager@example.com", "director@example.com"]


def create_request(client: httpx.Client) -> str:
    payload = {
        "title": "Team laptops",
        "description": "Three laptops for the new hires",
        "amount": 4200.00,
        "approver_emails": APPROVERS,
    }
    r = client.post("/purchase-requests", json=payload, headers={"X-Requester-Email": REQUESTER})
    r.raise_for_status()
    data = r.json()
    print(f"✓ Created {data['purchase_request_id']} ({data['status']})")
    return data["purchase_request_id"]


def approver_tokens(client: httpx.Client, request_id: str) -> dict[str, str]:
    r = client.get("/mock-mail")
    r.raise_for_status()
    return {
        mail["approver_email"]: mail["approver_token"]
        for mail in r.json()
        if mail["purchase_request_id"] == request_id
    }


def approve(client: httpx.Client, request_id: str, email: str, token: str, decision: str) -> None:
    r = client.get("/approvals/info", params={"purchase_request_id": request_id, "approver_token": token})
    r.raise_for_status()

    r = client.get("/debug/otp", params={"approver_token": token})
    r.raise_for_status()
    otp = r.json()["otp"]

    headers = {"X-Approver-Token": token}
    r = client.post(f"/approvals/{request_id}/validate-otp", json={"otp": otp}, headers=headers)
    r.raise_for_status()

    body = {"decision": decision, "signature_name": email.split("@")[0].title()}
    r = client.post(f"/approvals/{request_id}/decision", json=body, headers=headers)
    if r.status_code != 200:
        print(f"❌ {email}: {r.status_code} - {r.json().get('detail')}")
        return
    data = r.json()
    print(f"   {email}: {data['approval_status']} -> overall {data['overall_status']}")


def main():
    decisions = sys.argv[1:] or ["approve", "approve", "approve"]

    print("=" * 70)
    print("Purchase Approval Demo")
    print("=" * 70)
    print(f"API Endpoint: {API_BASE_URL}")
    print()

    with httpx.Client(base_url=API_BASE_URL, timeout=10) as client:
        request_id = create_request(client)
        tokens = approver_tokens(client, request_id)

        print("\nApprover decisions:")
        print("-" * 70)
        for email, decision in zip(APPROVERS, decisions):
            approve(client, request_id, email, tokens[email], decision)

        r = client.get(f"/purchase-requests/{request_id}", headers={"X-Requester-Email": REQUESTER})
        r.raise_for_status()
        print("-" * 70)
        print(f"\nFinal status: {r.json()['status']}")

    print("=" * 70)


if __name__ == "__main__":
    main()
