import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import httpx
import pytest

from services.clock import ManualClock
from services.entitlement_service import EntitlementService
from services.lifecycle_manager import LifecycleManager
from services.persistence_gateway import PersistenceGateway, SubscriptionCache
from services.subscription_api import SubscriptionApiClient
from services.tier_catalog import TierCatalog
from services.trial_registry import TrialRegistry
from services.usage_meter import UsageMeter
from services.usage_store import UsageStore

BASE_URL = "https://api.travel.test"
START = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeSubscriptionBackend:
    """In-memory stand-in for the travel backend's subscription endpoints."""

    def __init__(self, clock: ManualClock) -> None:
        self.clock = clock
        self.subscriptions: Dict[str, Dict[str, Any]] = {}
        self.usage: Dict[str, Dict[str, int]] = {}
        self.trials: Set[str] = set()
        self.calls: List[Tuple[str, str, Optional[Dict[str, Any]]]] = []
        self.payment_ok = True
        self.offline = False
        self.timeout = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        path = request.url.path
        self.calls.append((request.method, path, body))
        if self.timeout:
            raise httpx.ReadTimeout("timed out", request=request)
        if self.offline:
            return httpx.Response(503, json={"error": "service unavailable"})

        parts = [part for part in path.split("/") if part]
        now = self.clock.now()
        if request.method == "POST" and path == "/subscriptions/trial":
            self.trials.add(body["userId"])
            ends = now + timedelta(days=body["trialDays"])
            self.subscriptions[body["userId"]] = {
                "tier": body["tier"],
                "status": "trial",
                "trialEndDate": ends.isoformat(),
            }
            return httpx.Response(200, json={"success": True})
        if request.method == "POST" and path == "/subscriptions/payment":
            if self.payment_ok:
                return httpx.Response(200, json={"success": True, "paymentId": "pay_001"})
            return httpx.Response(200, json={"success": False, "error": "card declined"})
        if request.method == "POST" and path == "/subscriptions/upgrade":
            ends = now + timedelta(days=365)
            self.subscriptions[body["userId"]] = {"tier": body["tier"], "status": "active", "endDate": ends.isoformat()}
            return httpx.Response(200, json={"success": True})
        if request.method == "POST" and len(parts) == 3 and parts[2] == "cancel":
            self.subscriptions[parts[1]] = {"tier": "free", "status": "cancelled"}
            return httpx.Response(200, json={"success": True})
        if request.method == "PUT" and parts[0] == "users":
            self.subscriptions[parts[1]] = body
            return httpx.Response(200, json={"success": True})
        if request.method == "GET" and parts[0] == "users" and parts[-1] == "trial-history":
            return httpx.Response(200, json={"hasUsedTrial": parts[1] in self.trials})
        if request.method == "GET" and len(parts) == 3 and parts[2] == "usage":
            return httpx.Response(200, json=self.usage.get(parts[1], {}))
        if request.method == "GET" and len(parts) == 2:
            return httpx.Response(200, json=self.subscriptions.get(parts[1], {"tier": "free", "status": "none"}))
        return httpx.Response(404, json={"error": f"no route for {request.method} {path}"})

    def paths(self, method: str) -> List[str]:
        return [path for call_method, path, _ in self.calls if call_method == method]


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture()
def backend(clock: ManualClock) -> FakeSubscriptionBackend:
    return FakeSubscriptionBackend(clock)


@pytest.fixture()
def api(backend: FakeSubscriptionBackend) -> SubscriptionApiClient:
    return SubscriptionApiClient(base_url=BASE_URL, token="test-token", transport=httpx.MockTransport(backend.handler))


@pytest.fixture()
def catalog() -> TierCatalog:
    return TierCatalog()


@pytest.fixture()
def make_service(
    tmp_path: Path, clock: ManualClock, catalog: TierCatalog
) -> Callable[..., EntitlementService]:
    """Build an EntitlementService over temp files; ``api=None`` runs offline."""

    def _build(api: Optional[SubscriptionApiClient] = None, *, state_dir: Optional[Path] = None) -> EntitlementService:
        base = state_dir or tmp_path
        gateway = PersistenceGateway(cache=SubscriptionCache(base / "subscriptions.json"), clock=clock, api=api)
        lifecycle = LifecycleManager(
            catalog=catalog,
            clock=clock,
            gateway=gateway,
            trial_registry=TrialRegistry(base / "trial_registry.json"),
            api=api,
        )
        meter = UsageMeter(UsageStore(base / "usage.json"), clock)
        return EntitlementService(
            catalog=catalog,
            clock=clock,
            gateway=gateway,
            lifecycle=lifecycle,
            meter=meter,
            api=api,
        )

    return _build


@pytest.fixture()
def service(make_service: Callable[..., EntitlementService], api: SubscriptionApiClient) -> EntitlementService:
    return make_service(api)
