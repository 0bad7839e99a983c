# /flowchat/services/host_gateway.py

import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from flowchat.config import strings
from flowchat.config.settings import settings
from flowchat.errors import ActionNotPermitted, SdkError, SdkUnavailable
from flowchat.models.domain import PopupResult, RecordReceipt, UserIdentity
from flowchat.models.flow import Action
from flowchat.services.flow_registry import FlowRegistry, flow_registry
from flowchat.utils.metrics import host_actions_counter

# Gateway to the low-code host. Every mutating call checks the flow's action
# allow-list before any I/O. Host availability is probed once and cached for
# the lifetime of the process.

logger = logging.getLogger(__name__)


class HostPlatformSDK(Protocol):
    async def ping(self) -> bool: ...

    async def current_user(self) -> Dict[str, Any]: ...

    async def create_item(self, process_id: str, fields: Dict[str, Any]) -> Dict[str, Any]: ...

    async def list_dataset(self, dataset_id: str, view_id: str, filters: Dict[str, Any], limit: int) -> List[Dict[str, Any]]: ...

    async def open_popup(self, popup_ref: str, params: Dict[str, str]) -> Dict[str, Any]: ...


class KissflowRestSDK:
    """Kissflow REST client authenticated with an access key pair."""

    def __init__(
        self,
        domain: str,
        account_id: str,
        access_key_id: str,
        access_key_secret: str,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        domain = domain.replace("https://", "").replace("http://", "").rstrip("/")
        self.base_url = f"https://{domain}"
        self.account_id = account_id
        self.access_key_id = access_key_id
        self.access_key_secret = access_key_secret
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, read=30.0, connect=5.0)
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "X-Access-Key-Id": self.access_key_id,
            "X-Access-Key-Secret": self.access_key_secret,
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self.http_client.request(
                method, f"{self.base_url}{path}", headers=self._headers(), **kwargs
            )
        except httpx.HTTPError as e:
            raise SdkError(f"Kissflow request failed: {e}") from e

        if response.status_code >= 400:
            raise SdkError(f"Kissflow API error: {response.status_code} {response.text[:200]}")
        try:
            return response.json()
        except ValueError as e:
            raise SdkError("Kissflow returned a non-JSON response") from e

    async def ping(self) -> bool:
        await self.current_user()
        return True

    async def current_user(self) -> Dict[str, Any]:
        data = await self._request("GET", f"/user/2/{self.account_id}/me")
        return {
            "user_id": data.get("_id") or data.get("UserId") or data.get("userId"),
            "account_id": self.account_id,
            "display_name": data.get("Name") or data.get("name") or "",
            "email": data.get("Email") or data.get("email"),
        }

    async def create_item(self, process_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        # The batch endpoint takes a list of items
        data = await self._request(
            "POST", f"/process/2/{self.account_id}/{process_id}/batch", json=[fields]
        )
        item = data[0] if isinstance(data, list) and data else data
        if not isinstance(item, dict):
            raise SdkError("Kissflow create returned an unexpected payload")
        return item

    async def list_dataset(self, dataset_id: str, view_id: str, filters: Dict[str, Any], limit: int) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"page_number": 1, "page_size": limit}
        for field, value in filters.items():
            params[f"filter[{field}]"] = value
        data = await self._request(
            "GET", f"/dataset/2/{self.account_id}/{dataset_id}/view/{view_id}/list", params=params
        )
        if isinstance(data, dict):
            return list(data.get("Data") or data.get("data") or [])
        return list(data or [])

    async def open_popup(self, popup_ref: str, params: Dict[str, str]) -> Dict[str, Any]:
        # Popups are opened by the embedding page; the server hands back the instruction.
        return {"popup_ref": popup_ref, "params": dict(params)}

    async def aclose(self):
        await self.http_client.aclose()


class HostGateway:
    def __init__(self, sdk: Optional[HostPlatformSDK], registry: FlowRegistry):
        self.sdk = sdk
        self.registry = registry
        self._available: Optional[bool] = None

    def pin_availability(self, available: bool):
        """Fixes the host mode, e.g. after the startup probe."""
        self._available = available
        logger.info(f"Host platform mode pinned: {'host-integrated' if available else 'demo'}")

    async def is_available(self) -> bool:
        """Probes the host once; every later call returns the cached answer."""
        if self._available is not None:
            return self._available
        if self.sdk is None:
            self.pin_availability(False)
            return False
        try:
            available = bool(await self.sdk.ping())
        except SdkError as e:
            logger.warning(f"Host platform probe failed, running in demo mode: {e}")
            available = False
        self.pin_availability(available)
        return available

    async def _require_sdk(self) -> HostPlatformSDK:
        if not await self.is_available():
            raise SdkUnavailable("Host platform SDK is not available")
        return self.sdk

    def _require_action(self, flow_key: str, action: Action):
        if not self.registry.is_action_permitted(flow_key, action):
            host_actions_counter.labels(action=action.value, status="denied").inc()
            raise ActionNotPermitted(flow_key, action.value)

    async def get_identity(self) -> UserIdentity:
        sdk = await self._require_sdk()
        data = await sdk.current_user()
        if not data.get("user_id"):
            raise SdkError("User information not available")
        return UserIdentity(
            user_id=str(data["user_id"]),
            account_id=data.get("account_id"),
            display_name=data.get("display_name") or "",
            email=data.get("email"),
        )

    @staticmethod
    def demo_identity() -> UserIdentity:
        return UserIdentity(
            user_id=strings.DEMO_USER_ID,
            display_name=strings.DEMO_USER_NAME,
            email=strings.DEMO_USER_EMAIL,
            is_demo=True,
        )

    async def create_record(self, flow_key: str, fields: Dict[str, Any]) -> RecordReceipt:
        """
        Creates a workflow record for a flow.

        ActionNotPermitted is raised before any network call when the flow
        does not grant CREATE.
        """
        self._require_action(flow_key, Action.CREATE)
        flow = self.registry.resolve(flow_key)
        if not flow.host_process_ids:
            raise SdkError(f"No host process configured for {flow_key} flow")
        sdk = await self._require_sdk()

        mapping = flow.record_field_mapping
        payload = {mapping.get(name, name): value for name, value in fields.items()} if mapping else dict(fields)
        process_id = flow.host_process_ids[0]

        try:
            item = await sdk.create_item(process_id, payload)
        except SdkError:
            host_actions_counter.labels(action="CREATE", status="error").inc()
            raise

        record_id = item.get("_id") or item.get("id")
        if not record_id:
            host_actions_counter.labels(action="CREATE", status="error").inc()
            raise SdkError("Host accepted the record but returned no id")
        host_actions_counter.labels(action="CREATE", status="success").inc()
        logger.info(f"Created record {record_id} in {process_id} for {flow_key}")
        return RecordReceipt(
            record_id=str(record_id),
            activity_instance_id=item.get("_activity_instance_id") or item.get("activityInstanceId"),
            flow_key=flow_key,
            process_id=process_id,
        )

    async def query_dataset(
        self,
        dataset_ref: str,
        filters: Dict[str, Any],
        limit: int = 10,
        flow_key: Optional[str] = None,
        view_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Read-only dataset lookup. When a flow is given it must grant QUERY."""
        if flow_key is not None:
            self._require_action(flow_key, Action.QUERY)
            if view_id is None:
                flow = self.registry.resolve(flow_key)
                if flow.dataset and flow.dataset.dataset_id == dataset_ref:
                    view_id = flow.dataset.view_id
        sdk = await self._require_sdk()
        try:
            rows = await sdk.list_dataset(dataset_ref, view_id or "default", filters, limit)
        except SdkError:
            host_actions_counter.labels(action="QUERY", status="error").inc()
            raise
        host_actions_counter.labels(action="QUERY", status="success").inc()
        return rows[:limit]

    async def open_record_popup(self, popup_ref: Optional[str], params: Dict[str, str]) -> PopupResult:
        """Fire-and-forget navigation. Failures come back as a notice, never raised."""
        if not popup_ref:
            return PopupResult(opened=False, notice=strings.POPUP_FAILED_NOTICE)
        try:
            sdk = await self._require_sdk()
            instruction = await sdk.open_popup(popup_ref, params)
        except (SdkUnavailable, SdkError) as e:
            host_actions_counter.labels(action="READ", status="error").inc()
            logger.warning(f"Opening popup {popup_ref} failed: {e}")
            return PopupResult(opened=False, popup_ref=popup_ref, params=dict(params), notice=strings.POPUP_FAILED_NOTICE)
        host_actions_counter.labels(action="READ", status="success").inc()
        return PopupResult(
            opened=True,
            popup_ref=instruction.get("popup_ref", popup_ref),
            params=dict(instruction.get("params", params)),
        )

    async def aclose(self):
        closer = getattr(self.sdk, "aclose", None)
        if closer:
            await closer()


_gateway: Optional[HostGateway] = None


def _build_default_sdk() -> Optional[HostPlatformSDK]:
    if not settings.host_configured:
        return None
    return KissflowRestSDK(
        settings.kissflow_domain,
        settings.kissflow_account_id,
        settings.kissflow_access_key_id,
        settings.kissflow_access_key_secret,
    )


def get_host_gateway() -> HostGateway:
    """Process-wide gateway, created on first use."""
    global _gateway
    if _gateway is None:
        _gateway = HostGateway(_build_default_sdk(), flow_registry)
    return _gateway


def set_host_gateway(gateway: Optional[HostGateway]):
    """Injection point for tests; None resets to lazy creation."""
    global _gateway
    _gateway = gateway


