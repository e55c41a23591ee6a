#!/usr/bin/env python3
"""
Gmail OAuth Setup - Interactive wizard
Run this with the mailbridge server up, after setting GMAIL_CLIENT_ID and
GMAIL_CLIENT_SECRET in .env. Prints the refresh token to store as
GMAIL_REFRESH_TOKEN.
"""

import os
import sys
import webbrowser
from pathlib import Path
from urllib.parse import urlparse, parse_qs

import requests
from dotenv import load_dotenv

API_BASE = os.getenv("API_BASE", "http://127.0.0.1:8000")
REDIRECT_URI = f"{API_BASE}/gmail/oauth/callback"


def check_env_config() -> bool:
    """Check if Google client credentials are configured."""
    load_dotenv(Path(__file__).parent.parent / ".env")

    if not os.getenv("GMAIL_CLIENT_ID") or not os.getenv("GMAIL_CLIENT_SECRET"):
        print("GMAIL_CLIENT_ID and GMAIL_CLIENT_SECRET not found in .env")
        print("\nQuick setup:")
        print("1. Get credentials from: https://console.cloud.google.com/")
        print("   - Create project -> Enable Gmail API -> Create OAuth 2.0 Client ID")
        print(f"   - Add redirect URI: {REDIRECT_URI}")
        print("2. Add to .env:")
        print("   GMAIL_CLIENT_ID=your_id")
        print("   GMAIL_CLIENT_SECRET=your_secret")
        return False
    return True


def extract_code(value: str) -> str | None:
    """Accept either the bare code or the full callback URL."""
    value = value.strip()
    if value.startswith("http"):
        params = parse_qs(urlparse(value).query)
        return params.get("code", [None])[0]
    return value or None


def main():
    print("Gmail OAuth Setup\n")

    if not check_env_config():
        sys.exit(1)

    print("1. Checking server...")
    try:
        requests.get(f"{API_BASE}/health", timeout=2)
        print("   Server is running")
    except requests.RequestException:
        print(f"   Server not running at {API_BASE}")
        print("   Start it: uvicorn mailbridge.main:app --reload")
        sys.exit(1)

    print("2. Checking authorization status...")
    try:
        r = requests.get(f"{API_BASE}/gmail/oauth/status", timeout=2)
        if r.json().get("authorized"):
            print("   Already authorized!")
            return
        print("   Not authorized yet")
    except (requests.RequestException, ValueError):
        print("   Could not check status")

    print("3. Getting authorization URL...")
    try:
        r = requests.get(f"{API_BASE}/gmail/oauth/start",
                         params={"redirect_uri": REDIRECT_URI}, timeout=5)
        r.raise_for_status()
        auth_url = r.json()["authorization_url"]
    except (requests.RequestException, KeyError, ValueError) as e:
        print(f"   Error: {e}")
        print("   Make sure GMAIL_CLIENT_ID and GMAIL_CLIENT_SECRET are correct")
        sys.exit(1)

    print("4. Opening browser...")
    if not webbrowser.open(auth_url):
        print(f"   Please open manually: {auth_url}")

    print("\n5. After authorizing in browser, paste the callback URL or code:")
    code = extract_code(input("   > "))
    if not code:
        print("   No authorization code found")
        sys.exit(1)

    print("6. Completing authorization...")
    try:
        r = requests.get(f"{API_BASE}/gmail/oauth/callback",
                         params={"code": code, "redirect_uri": REDIRECT_URI}, timeout=10)
        r.raise_for_status()
        data = r.json()
    except (requests.RequestException, ValueError) as e:
        print(f"   Failed: {e}")
        sys.exit(1)

    print(f"   {data.get('message')}")
    print("\nAdd this line to .env so the server keeps access after a restart:")
    print(f"GMAIL_REFRESH_TOKEN={data.get('refresh_token')}")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nCancelled")
        sys.exit(1)
