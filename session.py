"""Operator session and store settings (employees, bank accounts, sync URL)."""
import logging
import re
import sqlite3
import time
from typing import Any, Dict, List, Optional

import store_db as db
from store_errors import PermissionDenied, ValidationError

logger = logging.getLogger(__name__)

UNKNOWN_EMPLOYEE = "Không xác định"
ROLES = ("admin", "staff")
_PIN_RE = re.compile(r"^\d{4}$")


class StoreSession:
    """Who is operating the till right now."""

    def __init__(self, settings: "SettingsManager"):
        self.settings = settings
        self.current: Optional[Dict[str, Any]] = None

    def login(self, employee_id: str, pin: str) -> Dict[str, Any]:
        for emp in self.settings.employees():
            if emp.get("id") == employee_id:
                if str(emp.get("pin") or "") != str(pin or ""):
                    break
                self.current = dict(emp)
                logger.info("Employee %s logged in", emp.get("name"))
                return dict(emp)
        raise PermissionDenied("Wrong employee or PIN")

    def logout(self):
        if self.current:
            logger.info("Employee %s logged out", self.current.get("name"))
        self.current = None

    @property
    def employee_name(self) -> str:
        if self.current and self.current.get("name"):
            return self.current["name"]
        return UNKNOWN_EMPLOYEE

    @property
    def is_admin(self) -> bool:
        return bool(self.current and self.current.get("role") == "admin")


class SettingsManager:
    def __init__(self, conn: sqlite3.Connection, settings: Dict[str, Any]):
        self.conn = conn
        self._settings = dict(settings)
        self._settings.setdefault("bankAccounts", [])
        self._settings.setdefault("employees", [])

    def _flush(self):
        db.save_blob(self.conn, db.SETTINGS_KEY, self._settings)

    def snapshot(self) -> Dict[str, Any]:
        out = dict(self._settings)
        out["bankAccounts"] = [dict(a) for a in self._settings["bankAccounts"]]
        out["employees"] = [dict(e) for e in self._settings["employees"]]
        return out

    @property
    def store_name(self) -> str:
        return self._settings.get("storeName") or ""

    @property
    def sync_url(self) -> str:
        return (self._settings.get("googleScriptUrl") or "").strip()

    def employees(self) -> List[Dict[str, Any]]:
        return [dict(e) for e in self._settings["employees"]]

    def bank_accounts(self) -> List[Dict[str, Any]]:
        return [dict(a) for a in self._settings["bankAccounts"]]

    def update(self, store_name: Optional[str] = None, sync_url: Optional[str] = None) -> Dict[str, Any]:
        if store_name is not None:
            self._settings["storeName"] = store_name.strip()
        if sync_url is not None:
            self._settings["googleScriptUrl"] = sync_url.strip()
        self._flush()
        return self.snapshot()

    def add_bank_account(self, bank_name: str, account_number: str, owner_name: str) -> Dict[str, Any]:
        if not (bank_name or "").strip() or not (account_number or "").strip():
            raise ValidationError("Bank name and account number are required")
        account = {
            "id": str(int(time.time() * 1000)),
            "bankName": bank_name.strip(),
            "accountNumber": account_number.strip(),
            "ownerName": (owner_name or "").strip(),
        }
        self._settings["bankAccounts"].append(account)
        self._flush()
        return dict(account)

    def remove_bank_account(self, account_id: str) -> bool:
        before = len(self._settings["bankAccounts"])
        self._settings["bankAccounts"] = [a for a in self._settings["bankAccounts"] if a.get("id") != account_id]
        if len(self._settings["bankAccounts"]) == before:
            return False
        self._flush()
        return True

    def add_employee(self, name: str, pin: str, role: str = "staff") -> Dict[str, Any]:
        if not (name or "").strip():
            raise ValidationError("Employee name is required")
        if not _PIN_RE.match(pin or ""):
            raise ValidationError("PIN must be exactly 4 digits")
        if role not in ROLES:
            raise ValidationError(f"Unknown role {role!r}")
        existing = {e.get("id") for e in self._settings["employees"]}
        emp_id = str(int(time.time() * 1000))
        while emp_id in existing:
            emp_id = str(int(emp_id) + 1)
        employee = {"id": emp_id, "name": name.strip(), "pin": pin, "role": role}
        self._settings["employees"].append(employee)
        self._flush()
        logger.info("Added %s employee %s", role, employee["name"])
        return dict(employee)

    def remove_employee(self, employee_id: str) -> bool:
        employees = self._settings["employees"]
        target = next((e for e in employees if e.get("id") == employee_id), None)
        if target is None:
            return False
        admins = [e for e in employees if e.get("role") == "admin"]
        if target.get("role") == "admin" and len(admins) <= 1:
            raise PermissionDenied("Cannot remove the last admin account")
        self._settings["employees"] = [e for e in employees if e.get("id") != employee_id]
        self._flush()
        logger.info("Removed employee %s", target.get("name"))
        return True
