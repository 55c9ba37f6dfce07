from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterable, Iterator, Optional

import requests

from nsm.domain.errors import StoreError
from nsm.domain.models import (
    BillOfMaterialLine,
    Brand,
    Category,
    ConsumedLine,
    FinancialRecord,
    PendingIntent,
    Product,
    RowId,
    Service,
    ServiceType,
    StockEntry,
    Unit,
)

log = logging.getLogger(__name__)

_BOM_SELECT = (
    "id,product_id,default_quantity,use_unit_system,"
    "product:products(id,name,unit,current_quantity,conversion_factor,last_unit_cost)"
)


def _float_or_none(v) -> Optional[float]:
    return float(v) if v is not None else None


def _factor_or_default(v) -> float:
    # A stored 0 stays 0 so validation can reject it.
    return float(v) if v is not None else 1.0


def _product(d: dict) -> Product:
    return Product(
        id=d["id"],
        name=str(d["name"]),
        unit=str(d.get("unit") or "un"),
        conversion_factor=_factor_or_default(d.get("conversion_factor")),
        current_quantity=float(d.get("current_quantity") or 0),
        min_quantity=float(d.get("min_quantity") or 0),
        last_unit_cost=_float_or_none(d.get("last_unit_cost")),
        code=d.get("code"),
        brand_id=d.get("brand_id"),
        category_id=d.get("category_id"),
        description=d.get("description"),
    )


def _date_range(start_iso: str | None, end_iso: str | None) -> list[tuple[str, str]]:
    params = []
    if start_iso:
        params.append(("date", f"gte.{start_iso}"))
    if end_iso:
        params.append(("date", f"lte.{end_iso}"))
    return params


class RestRepository:
    """Data store backed by a hosted PostgREST endpoint (e.g. Supabase).

    The service offers no multi-request transactions, so `transaction()` is a
    no-op and callers rely on the intent log. Stock counters are changed with
    compare-and-swap on `current_quantity`.
    """

    supports_transactions = False

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        access_token: str | None = None,
        timeout: float = 10.0,
        max_cas_attempts: int = 3,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token or api_key
        self.timeout = timeout
        self.max_cas_attempts = max_cas_attempts
        self.session = session or requests.Session()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        yield

    def _headers(self, prefer: str | None) -> dict:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _request(
        self,
        method: str,
        table: str,
        params: list[tuple[str, str]] | None = None,
        payload: object = None,
        prefer: str | None = "return=representation",
    ) -> list[dict]:
        url = f"{self.base_url}/rest/v1/{table}"
        try:
            r = self.session.request(
                method,
                url,
                params=params,
                json=payload,
                headers=self._headers(prefer),
                timeout=self.timeout,
            )
            r.raise_for_status()
        except requests.RequestException as e:
            raise StoreError(f"{method} {table} failed: {e}") from e

        if not r.text:
            return []
        try:
            data = r.json()
        except ValueError as e:
            raise StoreError(f"{method} {table} returned invalid JSON") from e
        if isinstance(data, dict):
            return [data]
        return list(data)

    def _insert(self, table: str, payload: dict) -> RowId:
        rows = self._request("POST", table, payload=payload)
        if not rows:
            raise StoreError(f"Insert into {table} returned no row")
        return rows[0]["id"]

    @staticmethod
    def _eq(column: str, value: object) -> tuple[str, str]:
        return column, f"eq.{value}"

    # ---------- Units / brands / categories ----------
    def add_unit(self, name: str, abbreviation: str, default_value: float) -> RowId:
        return self._insert("units", {"name": name, "abbreviation": abbreviation, "default_value": float(default_value)})

    def list_units(self) -> list[Unit]:
        rows = self._request("GET", "units", params=[("select", "*"), ("order", "name.asc")])
        return [Unit(id=r["id"], name=r["name"], abbreviation=r["abbreviation"], default_value=float(r.get("default_value") or 1)) for r in rows]

    def get_unit_by_abbreviation(self, abbreviation: str) -> Optional[Unit]:
        rows = self._request("GET", "units", params=[("select", "*"), self._eq("abbreviation", abbreviation)])
        if not rows:
            return None
        r = rows[0]
        return Unit(id=r["id"], name=r["name"], abbreviation=r["abbreviation"], default_value=float(r.get("default_value") or 1))

    def add_brand(self, name: str) -> RowId:
        return self._insert("brands", {"name": name})

    def list_brands(self) -> list[Brand]:
        rows = self._request("GET", "brands", params=[("select", "id,name"), ("order", "name.asc")])
        return [Brand(id=r["id"], name=r["name"]) for r in rows]

    def add_category(self, name: str, prefix: str, user_id: str | None = None) -> RowId:
        return self._insert("categories", {"name": name, "prefix": prefix, "user_id": user_id})

    def get_category(self, category_id: RowId) -> Optional[Category]:
        rows = self._request("GET", "categories", params=[("select", "*"), self._eq("id", category_id)])
        if not rows:
            return None
        r = rows[0]
        return Category(id=r["id"], name=r["name"], prefix=r["prefix"], user_id=r.get("user_id"))

    def list_categories(self) -> list[Category]:
        rows = self._request("GET", "categories", params=[("select", "*"), ("order", "name.asc")])
        return [Category(id=r["id"], name=r["name"], prefix=r["prefix"], user_id=r.get("user_id")) for r in rows]

    def upsert_categories(self, rows: Iterable[tuple[str, str]], user_id: str) -> int:
        payload = [{"name": name, "prefix": prefix, "user_id": user_id} for name, prefix in rows]
        if not payload:
            return 0
        written = self._request(
            "POST",
            "categories",
            params=[("on_conflict", "user_id,name")],
            payload=payload,
            prefer="resolution=merge-duplicates,return=representation",
        )
        return len(written)

    # ---------- Products ----------
    def add_product(self, values: dict) -> RowId:
        return self._insert("products", dict(values))

    def update_product(self, product_id: RowId, values: dict) -> bool:
        values = {k: v for k, v in values.items() if k not in ("current_quantity", "last_unit_cost")}
        rows = self._request("PATCH", "products", params=[self._eq("id", product_id)], payload=values)
        return bool(rows)

    def delete_product(self, product_id: RowId) -> bool:
        return bool(self._request("DELETE", "products", params=[self._eq("id", product_id)]))

    def get_product_by_id(self, product_id: RowId) -> Optional[Product]:
        rows = self._request("GET", "products", params=[("select", "*"), self._eq("id", product_id)])
        return _product(rows[0]) if rows else None

    def list_products(self) -> list[Product]:
        rows = self._request("GET", "products", params=[("select", "*"), ("order", "name.asc")])
        return [_product(r) for r in rows]

    def next_product_code(self, prefix: str) -> str:
        rows = self._request("GET", "products", params=[("select", "code"), ("code", f"like.{prefix}*")])
        codes = [str(r["code"]) for r in rows if r.get("code")]
        numbers = [int(c[len(prefix):]) for c in codes if c[len(prefix):].isdigit()]
        return f"{prefix}{(max(numbers) if numbers else 0) + 1:03d}"

    def _swap_quantity(
        self,
        product_id: RowId,
        compute: Callable[[float], Optional[float]],
        extra: dict | None = None,
    ) -> Optional[Product]:
        for attempt in range(1, self.max_cas_attempts + 1):
            current = self.get_product_by_id(product_id)
            if current is None:
                return None
            new_quantity = compute(current.current_quantity)
            if new_quantity is None:
                return None
            rows = self._request(
                "PATCH",
                "products",
                params=[
                    self._eq("id", product_id),
                    ("current_quantity", f"eq.{current.current_quantity!r}"),
                ],
                payload={"current_quantity": new_quantity, **(extra or {})},
            )
            if rows:
                return _product(rows[0])
            log.warning("stock_cas_conflict product_id=%s attempt=%s", product_id, attempt)
        raise StoreError(f"Product {product_id} changed concurrently {self.max_cas_attempts} times; update abandoned.")

    def add_product_stock(self, product_id: RowId, amount: float, last_unit_cost: float | None = None) -> Optional[Product]:
        extra = {"last_unit_cost": float(last_unit_cost)} if last_unit_cost is not None else None
        return self._swap_quantity(product_id, lambda q: q + float(amount), extra)

    def take_product_stock(self, product_id: RowId, amount: float) -> Optional[Product]:
        amount = float(amount)
        return self._swap_quantity(product_id, lambda q: q - amount if q >= amount else None)

    def release_product_stock(self, product_id: RowId, amount: float) -> Optional[Product]:
        return self._swap_quantity(product_id, lambda q: max(0.0, q - float(amount)))

    # ---------- Stock entries ----------
    def create_stock_entry(
        self,
        product_id: RowId,
        quantity: float,
        unit_price: float,
        cost: float,
        stock_increase: float,
        date_iso: str,
        notes: Optional[str],
        actor_user_id: Optional[str] = None,
    ) -> RowId:
        return self._insert(
            "stock_entries",
            {
                "product_id": product_id,
                "quantity": float(quantity),
                "unit_price": float(unit_price),
                "cost": float(cost),
                "stock_increase": float(stock_increase),
                "date": date_iso,
                "notes": notes,
                "actor_user_id": actor_user_id,
            },
        )

    @staticmethod
    def _entry(r: dict) -> StockEntry:
        product = r.get("product") or {}
        return StockEntry(
            id=r["id"],
            product_id=r["product_id"],
            quantity=float(r["quantity"]),
            unit_price=float(r["unit_price"]),
            cost=float(r["cost"]),
            stock_increase=float(r.get("stock_increase") or r["quantity"]),
            date=str(r["date"]),
            notes=r.get("notes"),
            product_name=product.get("name"),
        )

    def get_stock_entry(self, entry_id: RowId) -> Optional[StockEntry]:
        rows = self._request(
            "GET", "stock_entries", params=[("select", "*,product:products(id,name)"), self._eq("id", entry_id)]
        )
        return self._entry(rows[0]) if rows else None

    def list_stock_entries(
        self, product_id: RowId | None = None, start_iso: str | None = None, end_iso: str | None = None
    ) -> list[StockEntry]:
        params = [("select", "*,product:products(id,name)")]
        if product_id is not None:
            params.append(self._eq("product_id", product_id))
        params += _date_range(start_iso, end_iso)
        params.append(("order", "date.desc,id.desc"))
        return [self._entry(r) for r in self._request("GET", "stock_entries", params=params)]

    def delete_stock_entry(self, entry_id: RowId) -> bool:
        return bool(self._request("DELETE", "stock_entries", params=[self._eq("id", entry_id)]))

    # ---------- Service types / bill of materials ----------
    def create_service_type(self, name: str, price: float) -> RowId:
        return self._insert("service_types", {"name": name, "price": float(price)})

    def update_service_type(self, service_type_id: RowId, name: str, price: float) -> bool:
        rows = self._request(
            "PATCH", "service_types", params=[self._eq("id", service_type_id)], payload={"name": name, "price": float(price)}
        )
        return bool(rows)

    def delete_service_type(self, service_type_id: RowId) -> bool:
        return bool(self._request("DELETE", "service_types", params=[self._eq("id", service_type_id)]))

    def get_service_type(self, service_type_id: RowId) -> Optional[ServiceType]:
        rows = self._request("GET", "service_types", params=[("select", "id,name,price"), self._eq("id", service_type_id)])
        if not rows:
            return None
        r = rows[0]
        return ServiceType(id=r["id"], name=r["name"], price=float(r["price"]), products=tuple(self.bill_of_materials(r["id"])))

    def list_service_types(self) -> list[ServiceType]:
        rows = self._request("GET", "service_types", params=[("select", "id,name,price"), ("order", "name.asc")])
        return [
            ServiceType(id=r["id"], name=r["name"], price=float(r["price"]), products=tuple(self.bill_of_materials(r["id"])))
            for r in rows
        ]

    def replace_bill_of_materials(self, service_type_id: RowId, lines: Iterable[dict]) -> None:
        self._request("DELETE", "service_products", params=[self._eq("service_type_id", service_type_id)], prefer=None)
        payload = [
            {
                "service_type_id": service_type_id,
                "product_id": line["product_id"],
                "default_quantity": float(line["default_quantity"]),
                "use_unit_system": bool(line.get("use_unit_system")),
            }
            for line in lines
        ]
        if payload:
            self._request("POST", "service_products", payload=payload)

    def bill_of_materials(self, service_type_id: RowId) -> list[BillOfMaterialLine]:
        rows = self._request(
            "GET",
            "service_products",
            params=[("select", _BOM_SELECT), self._eq("service_type_id", service_type_id), ("order", "id.asc")],
        )
        lines = []
        for r in rows:
            p = r.get("product") or {}
            lines.append(
                BillOfMaterialLine(
                    id=r.get("id"),
                    product_id=r["product_id"],
                    default_quantity=float(r["default_quantity"]),
                    use_unit_system=bool(r.get("use_unit_system")),
                    product_name=str(p.get("name") or ""),
                    product_unit=str(p.get("unit") or ""),
                    current_quantity=float(p.get("current_quantity") or 0),
                    conversion_factor=_factor_or_default(p.get("conversion_factor")),
                    last_unit_cost=_float_or_none(p.get("last_unit_cost")),
                )
            )
        return lines

    # ---------- Services ----------
    def create_service(
        self,
        client_name: str,
        service_type_id: RowId,
        date_iso: str,
        notes: Optional[str],
        price: float,
        product_cost: float,
        actor_user_id: Optional[str] = None,
    ) -> RowId:
        return self._insert(
            "services",
            {
                "client_name": client_name,
                "service_type_id": service_type_id,
                "date": date_iso,
                "notes": notes,
                "price": float(price),
                "product_cost": float(product_cost),
                "actor_user_id": actor_user_id,
            },
        )

    @staticmethod
    def _service(r: dict) -> Service:
        service_type = r.get("service_type") or {}
        return Service(
            id=r["id"],
            client_name=str(r["client_name"]),
            service_type_id=r.get("service_type_id"),
            date=str(r["date"]),
            notes=r.get("notes"),
            price=float(r["price"]),
            product_cost=float(r.get("product_cost") or 0),
            service_type_name=service_type.get("name"),
            consumption_recorded=bool(r.get("consumption_recorded")),
        )

    def get_service(self, service_id: RowId) -> Optional[Service]:
        rows = self._request(
            "GET", "services", params=[("select", "*,service_type:service_types(id,name,price)"), self._eq("id", service_id)]
        )
        return self._service(rows[0]) if rows else None

    def list_services(
        self, service_type_id: RowId | None = None, start_iso: str | None = None, end_iso: str | None = None
    ) -> list[Service]:
        params = [("select", "*,service_type:service_types(id,name,price)")]
        if service_type_id is not None:
            params.append(self._eq("service_type_id", service_type_id))
        params += _date_range(start_iso, end_iso)
        params.append(("order", "date.desc,id.desc"))
        return [self._service(r) for r in self._request("GET", "services", params=params)]

    def delete_service(self, service_id: RowId) -> bool:
        return bool(self._request("DELETE", "services", params=[self._eq("id", service_id)]))

    def add_service_consumption(self, service_id: RowId, lines: Iterable[ConsumedLine]) -> None:
        payload = [
            {
                "service_id": service_id,
                "product_id": line.product_id,
                "quantity": float(line.quantity),
                "unit_cost": float(line.unit_cost),
            }
            for line in lines
        ]
        if payload:
            self._request("POST", "service_consumption", payload=payload)
        self._request(
            "PATCH", "services", params=[self._eq("id", service_id)], payload={"consumption_recorded": True}, prefer=None
        )

    def service_consumption(self, service_id: RowId) -> list[ConsumedLine]:
        rows = self._request(
            "GET",
            "service_consumption",
            params=[("select", "product_id,quantity,unit_cost"), self._eq("service_id", service_id), ("order", "id.asc")],
        )
        return [ConsumedLine(product_id=r["product_id"], quantity=float(r["quantity"]), unit_cost=float(r.get("unit_cost") or 0)) for r in rows]

    # ---------- Financial records ----------
    def create_financial_record(
        self,
        record_type: str,
        amount: float,
        description: Optional[str],
        reference_type: Optional[str],
        reference_id: Optional[RowId],
        date_iso: str,
    ) -> RowId:
        return self._insert(
            "financial_records",
            {
                "type": record_type,
                "amount": float(amount),
                "description": description,
                "reference_type": reference_type,
                "reference_id": reference_id,
                "date": date_iso,
            },
        )

    @staticmethod
    def _record(r: dict) -> FinancialRecord:
        return FinancialRecord(
            id=r["id"],
            type=str(r["type"]),
            amount=float(r["amount"]),
            description=r.get("description"),
            reference_type=r.get("reference_type"),
            reference_id=r.get("reference_id"),
            date=str(r["date"]),
        )

    def get_financial_record(self, record_id: RowId) -> Optional[FinancialRecord]:
        rows = self._request("GET", "financial_records", params=[("select", "*"), self._eq("id", record_id)])
        return self._record(rows[0]) if rows else None

    def list_financial_records(
        self, record_type: str | None = None, start_iso: str | None = None, end_iso: str | None = None
    ) -> list[FinancialRecord]:
        params = [("select", "*")]
        if record_type:
            params.append(self._eq("type", record_type))
        params += _date_range(start_iso, end_iso)
        params.append(("order", "date.desc,id.desc"))
        return [self._record(r) for r in self._request("GET", "financial_records", params=params)]

    def delete_financial_record(self, record_id: RowId) -> bool:
        return bool(self._request("DELETE", "financial_records", params=[self._eq("id", record_id)]))

    def delete_financial_records_for(self, reference_type: str, reference_id: RowId) -> int:
        rows = self._request(
            "DELETE",
            "financial_records",
            params=[self._eq("reference_type", reference_type), self._eq("reference_id", reference_id)],
        )
        return len(rows)

    # ---------- Intent log ----------
    def create_intent(self, operation: str, reference: Optional[str], payload: dict) -> RowId:
        return self._insert(
            "pending_intents",
            {"operation": operation, "reference": reference, "payload": payload, "completed_steps": []},
        )

    def update_intent_steps(self, intent_id: RowId, completed_steps: Iterable[str]) -> None:
        self._request(
            "PATCH", "pending_intents", params=[self._eq("id", intent_id)], payload={"completed_steps": list(completed_steps)}
        )

    def close_intent(self, intent_id: RowId) -> None:
        self._request(
            "PATCH",
            "pending_intents",
            params=[self._eq("id", intent_id)],
            payload={"applied": True, "closed_at": datetime.now(timezone.utc).isoformat(timespec="seconds")},
        )

    def list_pending_intents(self) -> list[PendingIntent]:
        rows = self._request(
            "GET", "pending_intents", params=[("select", "*"), ("applied", "eq.false"), ("order", "id.asc")]
        )
        return [
            PendingIntent(
                id=r["id"],
                operation=str(r["operation"]),
                reference=r.get("reference"),
                payload=dict(r.get("payload") or {}),
                completed_steps=tuple(r.get("completed_steps") or ()),
                created_at=str(r.get("created_at") or ""),
                applied=bool(r.get("applied")),
            )
            for r in rows
        ]
