import os
import sys
import uuid

import requests

base_url = os.getenv("STOCKLEDGER_BASE_URL", "http://localhost:8000").rstrip("/")
actor_id = os.getenv("STOCKLEDGER_ACTOR_ID", "smoke-probe")

headers = {"X-Actor-Id": actor_id}


def _post(path: str, payload: dict) -> dict:
    response = requests.post(f"{base_url}{path}", json=payload, headers=headers, timeout=15)
    response.raise_for_status()
    return response.json()


def main() -> int:
    suffix = uuid.uuid4().hex[:6].upper()
    location = _post("/locations", {"name": f"Smoke Warehouse {suffix}", "code": f"SMK-{suffix}"})
    variant_id = f"smoke-variant-{suffix.lower()}"

    _post(
        "/inventory/receive",
        {"variant_id": variant_id, "quantity": 5, "to_location_id": location["id"], "reference": "SMOKE"},
    )
    _post(
        "/inventory/reserve",
        {"variant_id": variant_id, "quantity": 2, "location_id": location["id"], "reference": "SMOKE"},
    )
    _post(
        "/inventory/release",
        {"variant_id": variant_id, "quantity": 2, "location_id": location["id"], "reference": "SMOKE"},
    )
    _post(
        "/inventory/adjust",
        {"variant_id": variant_id, "location_id": location["id"], "new_quantity": 0, "reference": "SMOKE"},
    )

    history_response = requests.get(
        f"{base_url}/inventory/{variant_id}/movements",
        params={"limit": 10},
        timeout=15,
    )
    history_response.raise_for_status()
    deactivate_response = requests.post(
        f"{base_url}/locations/{location['id']}/deactivate",
        headers=headers,
        timeout=15,
    )
    deactivate_response.raise_for_status()

    history = history_response.json()
    print(f"Location: {location['code']}")
    print(f"Movements recorded: {history['pagination']['total']}")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except requests.RequestException as exc:
        print(f"Inventory API probe failed: {exc}", file=sys.stderr)
        raise SystemExit(1)
