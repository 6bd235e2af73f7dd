"""Request helpers shared by the API tests."""
from typing import Optional

PASSWORD = "Sup3rSecret!"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


async def follow(follower, target) -> dict:
    response = await follower.client.post(f"/api/users/{target.username}/follow")
    assert response.status_code == 201, response.text
    return response.json()


async def create_post(
    author, description: str = "hello", image: Optional[bytes] = None
) -> dict:
    files = {"image": ("photo.png", image, "image/png")} if image else None
    response = await author.client.post(
        "/api/posts", data={"description": description}, files=files
    )
    assert response.status_code == 201, response.text
    return response.json()


def ids(items: list[dict]) -> list[str]:
    return [item["id"] for item in items]
