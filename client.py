"""
HTTP client for the BookCars API.

Wraps the calls the back-office and the storefront make. Pass a base URL,
or an existing httpx.Client (FastAPI's TestClient is one).
"""

import logging
from typing import Any, Dict, List, Optional, Union

import httpx

import config

logger = logging.getLogger(__name__)

API_PREFIX = "/api"


class ApiError(Exception):
    def __init__(self, status: int, detail: Any):
        super().__init__(f"{status}: {detail}")
        self.status = status
        self.detail = detail


class BookCarsClient:
    def __init__(self, base: Union[str, httpx.Client], timeout: float = 30.0):
        if isinstance(base, httpx.Client):
            self.http = base
            self._owned = False
        else:
            self.http = httpx.Client(base_url=base, timeout=timeout)
            self._owned = True
        self.user: Optional[Dict[str, Any]] = None

    def close(self) -> None:
        if self._owned:
            self.http.close()

    def __enter__(self) -> "BookCarsClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        response = self.http.request(method, f"{API_PREFIX}{path}", **kwargs)
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail")
            except ValueError:
                detail = response.text
            logger.warning(f"❌ {method} {path} failed with {response.status_code}: {detail}")
            raise ApiError(response.status_code, detail)
        return response

    def _json(self, method: str, path: str, **kwargs) -> Any:
        response = self._request(method, path, **kwargs)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # Auth

    def sign_in(self, email: str, password: str, stay_connected: bool = False, backend: bool = False) -> Dict[str, Any]:
        params = {"backend": "true"} if backend else None
        session = self._json(
            "POST", "/sign-in",
            json={"email": email, "password": password, "stay_connected": stay_connected},
            params=params,
        )
        self.http.headers[config.X_ACCESS_TOKEN] = session["access_token"]
        self.user = session
        return session

    def sign_out(self) -> None:
        """Tokens are stateless, signing out only forgets the local one."""
        self.http.headers.pop(config.X_ACCESS_TOKEN, None)
        self.user = None

    # Countries and locations

    def get_countries(self, page: int = 1, size: int = 30, keyword: str = "") -> Dict[str, Any]:
        return self._json("GET", f"/countries/{page}/{size}", params={"s": keyword})

    def create_country(self, name: str) -> Dict[str, Any]:
        return self._json("POST", "/create-country", json={"name": name})

    def get_locations(self, page: int = 1, size: int = 30, keyword: str = "") -> Dict[str, Any]:
        return self._json("GET", f"/locations/{page}/{size}", params={"s": keyword})

    # Cars

    def get_car(self, car_id: str) -> Dict[str, Any]:
        return self._json("GET", f"/car/{car_id}")

    def get_cars(self, filters: Dict[str, Any], page: int = 1, size: int = 30, keyword: str = "") -> Dict[str, Any]:
        return self._json("POST", f"/cars/{page}/{size}", json=filters, params={"s": keyword})

    def get_frontend_cars(self, filters: Dict[str, Any], page: int = 1, size: int = 30) -> Dict[str, Any]:
        return self._json("POST", f"/frontend-cars/{page}/{size}", json=filters)

    # Bookings

    def get_bookings(self, payload: Dict[str, Any], page: int = 1, size: int = 30) -> Dict[str, Any]:
        return self._json("POST", f"/bookings/{page}/{size}", json=payload)

    def get_booking(self, booking_id: str) -> Dict[str, Any]:
        return self._json("GET", f"/booking/{booking_id}")

    def create_booking(self, booking: Dict[str, Any], additional_driver: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._json("POST", "/create-booking", json={"booking": booking, "additional_driver": additional_driver})

    def update_booking(self, booking: Dict[str, Any], additional_driver: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._json("PUT", "/update-booking", json={"booking": booking, "additional_driver": additional_driver})

    def update_booking_status(self, ids: List[str], status: str) -> Dict[str, Any]:
        return self._json("POST", "/update-booking-status", json={"ids": ids, "status": status})

    def delete_bookings(self, ids: List[str]) -> Dict[str, Any]:
        return self._json("POST", "/delete-bookings", json=ids)

    def checkout(self, payload: Dict[str, Any]) -> str:
        return self._json("POST", "/checkout", json=payload)["booking_id"]

    def cancel_booking(self, booking_id: str) -> bool:
        """True when the cancellation request was recorded."""
        return self._request("POST", f"/cancel-booking/{booking_id}").status_code == 200

    # Back-office

    def get_dashboard(self, suppliers: List[str], statuses: List[str], filter: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._json("POST", "/dashboard", json={"suppliers": suppliers, "statuses": statuses, "filter": filter})

    def download_contract(self, booking_id: str, currency_symbol: str = "€") -> bytes:
        return self._request("GET", f"/contract/{booking_id}/{currency_symbol}").content
