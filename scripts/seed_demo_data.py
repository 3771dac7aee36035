#!/usr/bin/env python3
"""
Demo Data Seeding Script for LeadCRM.

Creates a handful of leads and walks them through the pipeline:
- Logs calls, emails and demos so the scores move
- Advances stages, including a skip-ahead
- Converts one lead (with a contact) and loses another

Usage:
    python scripts/seed_demo_data.py

Requires:
    - Backend running at http://localhost:8000
    - An admin user (see scripts/create_admin.py)
"""
import asyncio
import os
import sys

import httpx

# Configuration
BASE_URL = os.environ.get("LEADCRM_URL", "http://localhost:8000")
DEMO_USER_EMAIL = os.environ.get("LEADCRM_ADMIN_EMAIL", "admin@example.com")
DEMO_USER_PASSWORD = os.environ.get("LEADCRM_ADMIN_PASSWORD", "Admin123!")

DEMO_LEADS = [
    {"first_name": "John", "last_name": "Smith", "email": "john.smith@techcorp.com",
     "company": "TechCorp Solutions", "job_title": "IT Director", "temperature": "hot",
     "priority": "high", "tags": ["enterprise", "it"]},
    {"first_name": "Sarah", "last_name": "Johnson", "email": "sarah.j@innovate.com",
     "company": "Innovate Inc", "job_title": "CEO", "temperature": "warm"},
    {"first_name": "Mike", "last_name": "Chen", "email": "mike.chen@startup.io",
     "company": "StartupIO", "job_title": "CTO", "temperature": "cold", "priority": "low"},
]


async def get_auth_token(client: httpx.AsyncClient) -> str:
    """Authenticate and return JWT token."""
    print("Authenticating...")
    response = await client.post(
        f"{BASE_URL}/api/v1/auth/login",
        json={"email": DEMO_USER_EMAIL, "password": DEMO_USER_PASSWORD}
    )
    if response.status_code != 200:
        print(f"Auth failed: {response.text}")
        sys.exit(1)

    data = response.json()
    print(f"Authenticated as {data['user']['email']}")
    return data["token"]


async def create_lead(client: httpx.AsyncClient, headers: dict, lead_data: dict) -> str:
    response = await client.post(f"{BASE_URL}/api/v1/leads", json=lead_data, headers=headers)
    if response.status_code != 201:
        print(f"  Failed to create {lead_data['email']}: {response.text}")
        return ""
    lead = response.json()["lead"]
    print(f"  Created lead: {lead['full_name']} ({lead['id']})")
    return lead["id"]


async def log_activity(
    client: httpx.AsyncClient, headers: dict, lead_id: str,
    activity_type: str, subject: str, outcome: str = "neutral"
) -> None:
    response = await client.post(
        f"{BASE_URL}/api/v1/leads/{lead_id}/activities",
        json={"activity_type": activity_type, "subject": subject, "outcome": outcome},
        headers=headers,
    )
    if response.status_code != 201:
        print(f"  Failed to log {activity_type}: {response.text}")
        return
    print(f"  Logged {activity_type} ({outcome}), score now {response.json()['score']}")


async def move_stage(client: httpx.AsyncClient, headers: dict, lead_id: str, stage: str) -> None:
    response = await client.post(
        f"{BASE_URL}/api/v1/leads/{lead_id}/stage",
        json={"status": stage},
        headers=headers,
    )
    if response.status_code != 200:
        print(f"  Failed to move to {stage}: {response.text}")
        return
    result = response.json()
    skipped = " (skipped ahead)" if result["skipped"] else ""
    print(f"  Moved {result['from_stage']} -> {result['to_stage']}{skipped}")


async def main():
    async with httpx.AsyncClient(timeout=30.0) as client:
        token = await get_auth_token(client)
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json"
        }

        print("\nCreating leads...")
        lead_ids = [await create_lead(client, headers, data) for data in DEMO_LEADS]
        john, sarah, mike = lead_ids

        if john:
            print("\nWorking John Smith through the pipeline...")
            await log_activity(client, headers, john, "call", "Initial discovery call", "positive")
            await move_stage(client, headers, john, "contacted")
            await log_activity(client, headers, john, "demo", "Product demo", "positive")
            await move_stage(client, headers, john, "proposal_sent")
            await move_stage(client, headers, john, "negotiation")
            response = await client.post(
                f"{BASE_URL}/api/v1/leads/{john}/convert",
                json={"conversion_type": "customer", "conversion_value": 25000, "create_contact": True},
                headers=headers,
            )
            if response.status_code == 200:
                contact = response.json().get("contact") or {}
                print(f"  Converted; contact {contact.get('id')}")
            else:
                print(f"  Conversion failed: {response.text}")

        if sarah:
            print("\nFollowing up with Sarah Johnson...")
            await log_activity(client, headers, sarah, "email", "Sent pricing overview")
            await move_stage(client, headers, sarah, "contacted")

        if mike:
            print("\nClosing out Mike Chen...")
            await log_activity(client, headers, mike, "call", "Not interested this year", "negative")
            await move_stage(client, headers, mike, "lost")

        print("\n" + "=" * 60)
        print("DEMO DATA SUMMARY")
        print("=" * 60)
        response = await client.get(f"{BASE_URL}/api/v1/leads", params={"limit": 100}, headers=headers)
        for lead in response.json().get("leads", []):
            print(f"  {lead['status']:14} score={lead['score']:3} {lead['full_name']}")


if __name__ == "__main__":
    asyncio.run(main())
