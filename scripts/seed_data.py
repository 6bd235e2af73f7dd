#!/usr/bin/env python3
"""
Seed script — creates a small dataset for exercising the feed and explore.

Creates:
  • 10 users (password: Seed-pass-1)
  • A follow graph (each user follows 3 others)
  • 4 posts per user (40 total)
  • Some likes, saves and comments across posts

Run after docker compose up:
  python scripts/seed_data.py --api-url http://localhost:8000

Session tokens are printed so you can use them in curl commands.
"""
import argparse
import json
import random
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from http.cookies import SimpleCookie
from typing import Optional

PASSWORD = "Seed-pass-1"

BASE_USERS = [
    ("alice_photos", "Alice Chen"),
    ("bob_builder", "Bob Martinez"),
    ("carol_codes", "Carol Singh"),
    ("dave_designs", "Dave Kim"),
    ("eve_outdoors", "Eve Johnson"),
    ("frank_frames", "Frank Williams"),
    ("grace_grams", "Grace Li"),
    ("henry_hikes", "Henry Brown"),
    ("iris_ink", "Iris Davis"),
    ("jack_journeys", "Jack Wilson"),
]

SAMPLE_POSTS = [
    "Golden hour at the pier. No filter needed.",
    "First attempt at sourdough. The crumb could be better.",
    "Found this mural on the way to work.",
    "Trail run this morning, 12km and a lot of mud.",
    "New desk setup, finally cable-managed.",
    "Sunday market haul: peaches, basil and way too much bread.",
    "The view from the top was worth every step.",
    "Rainy day, good book, better coffee.",
    "My cat has claimed the new couch.",
    "Late night ramen after the concert.",
    "Spring is here and so are the cherry blossoms.",
    "Road trip playlist suggestions welcome.",
]

SAMPLE_COMMENTS = ["Love this!", "Where is this?", "So good", "Need to try this", "Wow"]


@dataclass
class ApiClient:
    base_url: str
    token: Optional[str] = None

    def _send(self, method: str, path: str, body: Optional[bytes], content_type: Optional[str]):
        headers = {}
        if content_type:
            headers["Content-Type"] = content_type
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        req = urllib.request.Request(
            f"{self.base_url}{path}", data=body, headers=headers, method=method
        )
        try:
            with urllib.request.urlopen(req, timeout=10) as resp:
                cookie = SimpleCookie(resp.headers.get("Set-Cookie", ""))
                if "token" in cookie:
                    self.token = cookie["token"].value
                return json.loads(resp.read())
        except urllib.error.HTTPError as e:
            print(f"  HTTP {e.code} on {method} {path}: {e.read().decode()}")
            return {}

    def post(self, path: str, data: Optional[dict] = None) -> dict:
        body = json.dumps(data).encode() if data is not None else None
        return self._send("POST", path, body, "application/json" if body else None)

    def post_form(self, path: str, data: dict) -> dict:
        body = urllib.parse.urlencode(data).encode()
        return self._send("POST", path, body, "application/x-www-form-urlencoded")

    def get(self, path: str) -> dict:
        return self._send("GET", path, None, None)


def wait_for_api(client: ApiClient, retries: int = 15) -> None:
    print(f"Waiting for API at {client.base_url} ...")
    for _ in range(retries):
        try:
            result = client.get("/health")
            if result.get("status") == "ok":
                print("  API is ready!\n")
                return
        except (urllib.error.URLError, ConnectionError):
            pass
        time.sleep(3)
    raise RuntimeError(f"API not reachable at {client.base_url} after {retries} retries")


def main(api_url: str) -> None:
    wait_for_api(ApiClient(api_url))

    # ── Create users ─────────────────────────────────────────────────────
    print("Creating users...")
    clients: dict[str, ApiClient] = {}
    for username, name in BASE_USERS:
        client = ApiClient(api_url)
        result = client.post("/api/users", {
            "name": name,
            "username": username,
            "email": f"{username}@example.com",
            "password": PASSWORD,
        })
        if not result:
            # Already seeded: log in instead
            result = client.post("/api/users/login", {"username": username, "password": PASSWORD})
        if client.token:
            clients[username] = client
            print(f"  ✓ {username} ({result['user']['id']})")
        else:
            print(f"  ✗ Failed to create {username}")

    if not clients:
        print("No users created — aborting")
        return
    usernames = list(clients)

    # ── Create follow graph ───────────────────────────────────────────────
    print("\nCreating follow relationships...")
    for username, client in clients.items():
        others = [u for u in usernames if u != username]
        for target in random.sample(others, k=min(3, len(others))):
            client.post(f"/api/users/{target}/follow")
    print("  ✓ Follow graph created")

    # ── Create posts ──────────────────────────────────────────────────────
    print("\nCreating posts...")
    post_ids: list[str] = []
    pool = SAMPLE_POSTS * 4
    random.shuffle(pool)
    for idx, client in enumerate(clients.values()):
        for description in pool[idx * 4:(idx + 1) * 4]:
            pid = client.post_form("/api/posts", {"description": description}).get("id")
            if pid:
                post_ids.append(pid)
    print(f"  ✓ {len(post_ids)} posts created")

    # ── Likes, saves, comments ────────────────────────────────────────────
    print("\nAdding likes, saves and comments...")
    likes = comments = 0
    for post_id in post_ids:
        for username in random.sample(usernames, k=random.randint(0, 4)):
            client = clients[username]
            if client.post(f"/api/posts/{post_id}/like"):
                likes += 1
            if random.random() < 0.3:
                client.post(f"/api/posts/{post_id}/save")
            if random.random() < 0.4:
                client.post(f"/api/posts/{post_id}/comment", {"text": random.choice(SAMPLE_COMMENTS)})
                comments += 1
    print(f"  ✓ {likes} likes, {comments} comments added")

    # ── Print summary ─────────────────────────────────────────────────────
    first = usernames[0]
    token = clients[first].token
    print("\n" + "=" * 60)
    print("Seed complete! Here are some commands to try:\n")
    print(f"# Get the feed for '{first}':")
    print(f"  curl -s -H 'Authorization: Bearer {token}' '{api_url}/api/feeds' | python3 -m json.tool\n")
    print("# Explore posts from suggested users:")
    print(f"  curl -s -H 'Authorization: Bearer {token}' '{api_url}/api/explore' | python3 -m json.tool\n")
    print("# Who to follow:")
    print(f"  curl -s -H 'Authorization: Bearer {token}' '{api_url}/api/users/me/user-suggestions'\n")
    print("# Check Jaeger traces: http://localhost:16686")
    print("# Check Prometheus metrics: http://localhost:8000/metrics")
    print("# Check MinIO: http://localhost:9001 (minioadmin/minioadmin)")
    print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the Social API")
    parser.add_argument("--api-url", default="http://localhost:8000", help="API base URL")
    args = parser.parse_args()
    main(args.api_url)
